"""
Shared metrics configuration for the dashboard data-freshness layer.
"""

from typing import Dict, Any, Optional
import threading

from prometheus_client import Counter, Gauge, Info, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collector for the freshness layer.

    Each collector owns its registry unless one is passed in, so several
    independent caches (for example in tests) never register the same
    metric names twice.
    """

    def __init__(self, service_name: str = "freshness", registry: Optional[CollectorRegistry] = None,
                 enabled: bool = True):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self.enabled = enabled
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up metrics for every freshness component."""

        self._metrics["service_info"] = Info(
            "freshness_info",
            "Freshness layer information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        self._setup_cache_metrics()
        self._setup_prefetch_metrics()
        self._setup_stream_metrics()

    def _setup_cache_metrics(self):
        """Set up cache store and coordinator metrics."""
        self._metrics["cache_requests_total"] = Counter(
            "cache_requests_total",
            "Cache reads by outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["cache_evictions_total"] = Counter(
            "cache_evictions_total",
            "Entries removed from the cache",
            ["reason"],
            registry=self.registry
        )

        self._metrics["cache_fetch_failures_total"] = Counter(
            "cache_fetch_failures_total",
            "Fetch functions that rejected",
            ["mode"],
            registry=self.registry
        )

        self._metrics["cache_entries"] = Gauge(
            "cache_entries",
            "Entries currently held in memory",
            registry=self.registry
        )

        self._metrics["persistence_failures_total"] = Counter(
            "persistence_failures_total",
            "Swallowed session storage failures",
            ["operation"],
            registry=self.registry
        )

    def _setup_prefetch_metrics(self):
        """Set up prefetch governor metrics."""
        self._metrics["prefetch_attempts_total"] = Counter(
            "prefetch_attempts_total",
            "Prefetch attempts by gating decision",
            ["decision"],
            registry=self.registry
        )

        self._metrics["prefetch_inflight"] = Gauge(
            "prefetch_inflight",
            "Speculative fetches holding an in-flight slot",
            registry=self.registry
        )

    def _setup_stream_metrics(self):
        """Set up push stream metrics."""
        self._metrics["stream_state_transitions_total"] = Counter(
            "stream_state_transitions_total",
            "Stream connection state transitions",
            ["state"],
            registry=self.registry
        )

        self._metrics["stream_reconnects_total"] = Counter(
            "stream_reconnects_total",
            "Scheduled stream reconnect attempts",
            registry=self.registry
        )

        self._metrics["stream_events_total"] = Counter(
            "stream_events_total",
            "Stream events received",
            ["event"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def increment_counter(self, metric_name: str, amount: float = 1.0, **labels):
        """Increment a counter metric."""
        if not self.enabled or metric_name not in self._metrics:
            return
        metric = self._metrics[metric_name]
        with self._lock:
            if labels:
                metric.labels(**labels).inc(amount)
            else:
                metric.inc(amount)

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if not self.enabled or metric_name not in self._metrics:
            return
        metric = self._metrics[metric_name]
        with self._lock:
            if labels:
                metric.labels(**labels).set(value)
            else:
                metric.set(value)

    def sample(self, metric_name: str, **labels) -> Optional[float]:
        """Read back the current value of a counter or gauge sample."""
        return self.registry.get_sample_value(metric_name, labels)

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)


def get_metrics_collector(service_name: str = "freshness", registry: Optional[CollectorRegistry] = None,
                          enabled: bool = True) -> MetricsCollector:
    """Get a metrics collector for the layer."""
    return MetricsCollector(service_name, registry, enabled)
