"""
Prefetch governor: opportunistic cache warming that yields to the user.

Every attempt passes a series of hard vetoes. A vetoed attempt is dropped,
never queued or retried; the next navigation will ask again.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from service_freshness.app.capabilities import (
    AlwaysVisible,
    Clock,
    NetworkHints,
    PageState,
    Scheduler,
    Unconstrained,
    system_clock,
)
from service_freshness.app.caching.data_cache import DataCache, FetchFn
from service_freshness.app.caching.store import CachePolicy

MAX_INFLIGHT = 3
COOLDOWN_SECONDS = 30.0
RELEASE_DELAY_SECONDS = 0.2


class PrefetchDecision(str, Enum):
    STARTED = "started"
    SKIPPED_INFLIGHT_CAP = "skipped_inflight_cap"
    SKIPPED_HIDDEN = "skipped_hidden"
    SKIPPED_CONSTRAINED = "skipped_constrained"
    SKIPPED_COOLDOWN = "skipped_cooldown"
    SKIPPED_FRESH = "skipped_fresh"

    @property
    def started(self) -> bool:
        return self is PrefetchDecision.STARTED


class PrefetchGovernor:
    """Global in-flight cap plus per-key cooldown in front of DataCache.prefetch."""

    def __init__(
        self,
        cache: DataCache,
        scheduler: Scheduler,
        page_state: Optional[PageState] = None,
        network: Optional[NetworkHints] = None,
        clock: Clock = system_clock,
        max_inflight: int = MAX_INFLIGHT,
        cooldown: float = COOLDOWN_SECONDS,
        release_delay: float = RELEASE_DELAY_SECONDS,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.cache = cache
        self.scheduler = scheduler
        self.page_state = page_state or AlwaysVisible()
        self.network = network or Unconstrained()
        self.clock = clock
        self.max_inflight = max_inflight
        self.cooldown = cooldown
        self.release_delay = release_delay
        self.metrics = metrics
        self.logger = get_logger("freshness.prefetch")

        self._inflight = 0
        self._cooldowns: Dict[str, float] = {}

    @property
    def inflight(self) -> int:
        return self._inflight

    def environment_allows(self) -> Optional[PrefetchDecision]:
        """Veto reason from page/network probes, or None when prefetch is allowed."""
        if self.page_state.is_hidden():
            return PrefetchDecision.SKIPPED_HIDDEN
        if self.network.is_constrained():
            return PrefetchDecision.SKIPPED_CONSTRAINED
        return None

    def evaluate(self, key: str) -> PrefetchDecision:
        if self._inflight >= self.max_inflight:
            return PrefetchDecision.SKIPPED_INFLIGHT_CAP
        veto = self.environment_allows()
        if veto is not None:
            return veto
        last_attempt = self._cooldowns.get(key)
        if last_attempt is not None and self.clock() - last_attempt < self.cooldown:
            return PrefetchDecision.SKIPPED_COOLDOWN
        if self.cache.is_fresh(key):
            return PrefetchDecision.SKIPPED_FRESH
        return PrefetchDecision.STARTED

    def try_prefetch(self, key: str, fetch_fn: FetchFn, policy: Optional[CachePolicy] = None) -> PrefetchDecision:
        decision = self.evaluate(key)
        self._record(decision)
        if not decision.started:
            self.logger.debug("Prefetch skipped", key=key, reason=decision.value)
            return decision

        self._cooldowns[key] = self.clock()
        self._acquire()
        pending = self.cache.prefetch(key, fetch_fn, policy)
        if pending is None:
            self._schedule_release()
        else:
            pending.task.add_done_callback(lambda _task: self._schedule_release())

        self.logger.debug("Prefetch started", key=key, inflight=self._inflight,
                          launched=pending is not None)
        return decision

    def reset(self) -> None:
        """Forget cooldowns; in-flight slots are still released by their timers."""
        self._cooldowns.clear()

    def _acquire(self) -> None:
        self._inflight += 1
        self._update_gauge()

    def _schedule_release(self) -> None:
        self.scheduler.call_later(self.release_delay, self._release)

    def _release(self) -> None:
        self._inflight = max(0, self._inflight - 1)
        self._update_gauge()

    def _record(self, decision: PrefetchDecision) -> None:
        if self.metrics:
            self.metrics.increment_counter("prefetch_attempts_total", decision=decision.value)

    def _update_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("prefetch_inflight", self._inflight)
