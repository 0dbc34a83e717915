"""
Shared utilities for the dashboard data-freshness layer.

This package aggregates common building blocks consumed by every component:

- config: Layer configuration via pydantic-settings
- logging: Structured logging with consumer-stream correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and consumer-facing responses
- retry: Backoff delay calculation for stream reconnection
- test_helpers: Deterministic fakes for clocks, timers, streams and fetches

Any cross-component logic should live here to avoid import cycles. Do not
import from service_freshness into shared/.
"""
