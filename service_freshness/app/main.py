"""
Composition root for the dashboard data-freshness layer.

Wires cache, persistence, prefetch and the push stream into one owned
instance. There is no module-level singleton: every consumer receives the
layer (or its parts) explicitly.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional

import httpx

from shared.config import FreshnessConfig, get_config
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.retry import BackoffConfig

from service_freshness.app.adapters.dashboard_client import DashboardClient
from service_freshness.app.capabilities import (
    AsyncioScheduler,
    Clock,
    NetworkHints,
    PageState,
    Scheduler,
    system_clock,
)
from service_freshness.app.caching.data_cache import DataCache
from service_freshness.app.caching.keys import key_predicate
from service_freshness.app.caching.persistence import (
    InMemorySessionStorage,
    PersistenceAdapter,
    SessionStorage,
)
from service_freshness.app.caching.store import CacheStore
from service_freshness.app.prefetch.governor import PrefetchGovernor
from service_freshness.app.prefetch.planner import AdjacentPrefetcher
from service_freshness.app.prefetch.scheduler import PrefetchScheduler
from service_freshness.app.stream.client import StreamClient
from service_freshness.app.stream.events import OpenStream
from service_freshness.app.stream.sse_transport import make_sse_opener

INVALIDATED_NAMESPACES = ("dashboard", "tech")


def invalidation_predicate(payload: Any) -> Callable[[str], bool]:
    """Map a data-changed payload onto the cache keys it makes stale.

    ``{"date": "2024-05-01"}`` targets that day; ``{"keys": [...]}`` targets
    exact keys; anything else (e.g. a full sync summary) targets every
    server-derived dashboard and technician key.
    """
    if isinstance(payload, dict):
        keys = payload.get("keys")
        if isinstance(keys, list):
            wanted = set(str(k) for k in keys)
            return lambda key: key in wanted
        if payload.get("date"):
            return key_predicate(date=payload["date"])
    return lambda key: key.split(":", 1)[0] in INVALIDATED_NAMESPACES


class FreshnessLayer:
    """Owned instance of cache, prefetch governor and push stream."""

    def __init__(
        self,
        config: Optional[FreshnessConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        storage: Optional[SessionStorage] = None,
        scheduler: Optional[Scheduler] = None,
        page_state: Optional[PageState] = None,
        network: Optional[NetworkHints] = None,
        clock: Clock = system_clock,
        open_stream: Optional[OpenStream] = None,
        metrics: Optional[MetricsCollector] = None,
        on_stream_error: Optional[Callable[[BaseException], None]] = None,
    ):
        self.config = config or get_config()
        self.logger = get_logger("freshness.layer")
        self.clock = clock
        self.metrics = metrics or get_metrics_collector(enabled=self.config.enable_metrics)
        self.scheduler = scheduler or AsyncioScheduler(idle_delay=self.config.prefetch_idle_fallback_seconds)

        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(
            base_url=self.config.api_base_url,
            timeout=self.config.request_timeout_seconds,
        )

        self.persistence = PersistenceAdapter(
            storage if storage is not None else InMemorySessionStorage(),
            prefix=self.config.persist_prefix,
            namespaces=self.config.persist_namespaces,
            max_persisted=self.config.max_persisted,
            clock=clock,
            metrics=self.metrics,
        )
        self.cache = DataCache(
            store=CacheStore(self.config.max_entries),
            persistence=self.persistence,
            clock=clock,
            metrics=self.metrics,
        )
        self.api = DashboardClient(self.http, timeout=self.config.request_timeout_seconds)

        self.governor = PrefetchGovernor(
            self.cache,
            self.scheduler,
            page_state=page_state,
            network=network,
            clock=clock,
            max_inflight=self.config.prefetch_max_inflight,
            cooldown=self.config.prefetch_cooldown_seconds,
            release_delay=self.config.prefetch_release_delay_seconds,
            metrics=self.metrics,
        )
        self.prefetch_scheduler = PrefetchScheduler(
            self.scheduler,
            debounce=self.config.prefetch_debounce_seconds,
            idle_timeout=self.config.prefetch_idle_timeout_seconds,
        )
        self.prefetcher = AdjacentPrefetcher(self.governor, self.prefetch_scheduler, self.api,
                                             self.config.timezone)

        self.stream = StreamClient(
            open_stream or make_sse_opener(self.http, self.config.stream_url),
            self.scheduler,
            on_data_changed=self.handle_data_changed,
            on_error=on_stream_error,
            enabled=self.config.stream_enabled,
            backoff=BackoffConfig(
                base_delay=self.config.reconnect_base_delay_seconds,
                max_delay=self.config.reconnect_max_delay_seconds,
            ),
            data_changed_event=self.config.stream_data_changed_event,
            clock=clock,
            metrics=self.metrics,
        )

    def start(self) -> None:
        """Open the push stream (needs a running event loop for the SSE transport)."""
        self.stream.start()
        self.logger.info("Freshness layer started", stream_enabled=self.stream.enabled,
                         hydrated_entries=len(self.cache.store))

    def handle_data_changed(self, payload: Any) -> List[str]:
        removed = self.cache.invalidate_by_predicate(invalidation_predicate(payload))
        self.logger.info("Invalidated after data change", removed=len(removed))
        return removed

    async def aclose(self) -> None:
        """Tear down: stream, pending timers, outstanding fetches, owned HTTP client."""
        self.stream.disconnect()
        self.prefetcher.close()
        await self.cache.aclose()
        if self._owns_http:
            await self.http.aclose()
        self.logger.info("Freshness layer closed")


def create_freshness_layer(config: Optional[FreshnessConfig] = None, configure_logs: bool = False,
                           **overrides: Any) -> FreshnessLayer:
    """Build a layer from configuration; keyword overrides are passed to FreshnessLayer."""
    config = config or get_config()
    if configure_logs:
        configure_logging("freshness", config.log_level)
    return FreshnessLayer(config=config, **overrides)
