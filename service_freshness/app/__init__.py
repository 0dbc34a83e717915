"""
Dashboard data-freshness layer.

Decides, for every piece of server-derived data the dashboard needs,
whether to serve a cached copy, serve a stale copy while refreshing in the
background, or block on a fetch, and keeps a push stream open to learn
when server-side data changed.

Structure:
- app.main: FreshnessLayer composition root.
- app.caching: Cache store, fetch coordinator, session persistence, keys.
- app.consumers: Generation guard and the race-safe CachedFetch view model.
- app.prefetch: Governor, debounced idle scheduling and adjacent-period plans.
- app.stream: Push stream state machine and the SSE transport.
- app.adapters: httpx client for the dashboard read endpoints.

Design notes:
- Module import must not perform I/O or create event-loop objects.
- Use the shared/ utilities for logging, metrics, config and errors.
"""
