"""
Fetch coordinator: stale-while-revalidate reads with single-flight fetches.

DataCache owns a CacheStore and is its only writer. Every read path funnels
through the pending-fetch check, so a key never has more than one network
fetch outstanding. Failed fetches are never cached; the next read retries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from service_freshness.app.capabilities import Clock, system_clock
from service_freshness.app.caching.keys import HIST_POLICY
from service_freshness.app.caching.persistence import PersistenceAdapter
from service_freshness.app.caching.store import CacheEntry, CachePolicy, CacheStore, PendingFetch

FetchFn = Callable[[], Awaitable[Any]]
Listener = Callable[[], None]


@dataclass(frozen=True)
class Envelope:
    """Fetch-function boundary type; the cache stores ``payload`` untouched."""

    payload: Any


@dataclass(frozen=True)
class FetchResult:
    data: Any
    seq: int
    is_stale: bool


def _unwrap(result: Any) -> Any:
    if isinstance(result, Envelope):
        return result.payload
    return result


class DataCache:
    """Race-safe LRU cache with soft/hard TTLs and request dedup."""

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        persistence: Optional[PersistenceAdapter] = None,
        clock: Clock = system_clock,
        metrics: Optional[MetricsCollector] = None,
        max_entries: int = 100,
        default_policy: CachePolicy = HIST_POLICY,
    ):
        self.store = store if store is not None else CacheStore(max_entries)
        self.persistence = persistence
        self.clock = clock
        self.metrics = metrics
        self.default_policy = default_policy
        self.logger = get_logger("freshness.cache")

        self._seq = 0
        self._listeners: List[Listener] = []
        self._tasks: Set["asyncio.Task[Any]"] = set()
        self._stats: Dict[str, int] = {
            "hit": 0,
            "stale": 0,
            "miss": 0,
            "inflight": 0,
            "prefetch": 0,
            "fetch_error": 0,
        }

        if self.persistence is not None:
            self.hydrate()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_or_fetch(self, key: str, fetch_fn: FetchFn, policy: Optional[CachePolicy] = None) -> FetchResult:
        """Return cached data or fetch it.

        Stale data is returned immediately with ``is_stale=True`` while one
        background revalidation runs. A miss awaits the single fetch for the
        key, whether this call started it or another caller did.
        """
        policy = policy or self.default_policy
        now = self.clock()
        entry = self.store.get(key)

        if entry is not None and entry.is_fresh(now):
            self.store.touch(key)
            self._count("hit")
            return FetchResult(entry.data, entry.seq, False)

        if entry is not None and entry.is_usable(now):
            self.store.touch(key)
            self._count("stale")
            if entry.pending is None:
                self._launch(key, fetch_fn, policy, background=True)
            return FetchResult(entry.data, entry.seq, True)

        if entry is not None and entry.pending is not None:
            self._count("inflight")
            pending = entry.pending
        else:
            self._count("miss")
            pending = self._launch(key, fetch_fn, policy, background=False)

        # shielded: a cancelled caller must not cancel the shared fetch
        data = await asyncio.shield(pending.task)
        latest = self.store.get(key)
        if latest is not None and latest.has_data:
            return FetchResult(latest.data, latest.seq, False)
        return FetchResult(data, 0, False)

    def prefetch(self, key: str, fetch_fn: FetchFn, policy: Optional[CachePolicy] = None) -> Optional[PendingFetch]:
        """Warm ``key`` without blocking; errors are logged and dropped.

        Returns the launched fetch handle, or None when the key is already
        fresh or a fetch is already pending.
        """
        policy = policy or self.default_policy
        entry = self.store.get(key)
        if entry is not None and entry.is_fresh(self.clock()):
            return None
        if entry is not None and entry.pending is not None:
            return None
        self._count("prefetch")
        return self._launch(key, fetch_fn, policy, background=True)

    def peek(self, key: str) -> Any:
        """Cached data unless hard-expired; no side effects."""
        entry = self.store.get_usable(key, self.clock())
        return entry.data if entry is not None else None

    def peek_stale(self, key: str) -> Any:
        """Cached data regardless of expiry, None only if never fetched."""
        entry = self.store.get(key)
        if entry is None or not entry.has_data:
            return None
        return entry.data

    def current(self, key: str) -> Optional[FetchResult]:
        """Latest resolved value for ``key`` with its staleness, regardless of expiry."""
        entry = self.store.get(key)
        if entry is None or not entry.has_data:
            return None
        return FetchResult(entry.data, entry.seq, not entry.is_fresh(self.clock()))

    def is_fresh(self, key: str) -> bool:
        entry = self.store.get(key)
        return entry is not None and entry.is_fresh(self.clock())

    def pending(self, key: str) -> Optional[PendingFetch]:
        entry = self.store.get(key)
        return entry.pending if entry is not None else None

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_by_keys(self, keys: Iterable[str]) -> List[str]:
        removed = [key for key in keys if self._remove(key)]
        if removed:
            self._after_invalidation(removed, reason="invalidate")
        return removed

    def invalidate_by_predicate(self, predicate: Callable[[str], bool]) -> List[str]:
        matching = [key for key in self.store.keys() if predicate(key)]
        removed = [key for key in matching if self._remove(key)]
        if removed:
            self._after_invalidation(removed, reason="invalidate")
        return removed

    def invalidate_matching(self, fragment: str) -> List[str]:
        """Invalidate every key containing ``fragment`` (e.g. ``date=2024-05-01``)."""
        return self.invalidate_by_predicate(lambda key: fragment in key)

    def clear(self) -> None:
        count = len(self.store)
        self.store.clear()
        if self.persistence is not None:
            self.persistence.clear()
        if self.metrics:
            self.metrics.increment_counter("cache_evictions_total", amount=count, reason="clear")
        self._update_size()
        self.logger.info("Cache cleared", entries=count)
        self._notify()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns the matching unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def hydrate(self) -> int:
        """Seed the store from session persistence; in-memory entries win."""
        if self.persistence is None:
            return 0
        loaded = 0
        for key, entry in sorted(self.persistence.hydrate().items(), key=lambda item: item[1].fetched_at or 0.0):
            if key in self.store:
                continue
            self.store.set(key, entry)
            self._seq = max(self._seq, entry.seq)
            loaded += 1
        self._evict()
        self._update_size()
        return loaded

    async def aclose(self) -> None:
        """Wait for outstanding fetches so nothing is left running."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def stats(self) -> Dict[str, int]:
        return {**self._stats, "entries": len(self.store)}

    @property
    def current_seq(self) -> int:
        return self._seq

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _launch(self, key: str, fetch_fn: FetchFn, policy: CachePolicy, background: bool) -> PendingFetch:
        task = asyncio.create_task(self._run_fetch(key, fetch_fn, policy))
        pending = PendingFetch(task=task, background=background)
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._on_fetch_done(key, done, background))

        entry = self.store.get(key)
        if entry is not None:
            entry.pending = pending
        else:
            self.store.set(key, CacheEntry(key=key, pending=pending))
        return pending

    def _owns_pending(self, key: str) -> Optional[CacheEntry]:
        """The entry whose pending marker belongs to the running task, if any."""
        entry = self.store.get(key)
        current = asyncio.current_task()
        if entry is None or entry.pending is None or entry.pending.task is not current:
            return None
        return entry

    async def _run_fetch(self, key: str, fetch_fn: FetchFn, policy: CachePolicy) -> Any:
        try:
            data = _unwrap(await fetch_fn())
        except BaseException:
            entry = self._owns_pending(key)
            if entry is not None:
                entry.pending = None
                if not entry.has_data:
                    self.store.delete(key)
            raise

        if self._owns_pending(key) is None:
            # invalidated or evicted while in flight; callers still get the data
            self.logger.debug("Discarding fetch result for removed key", key=key)
            return data

        self._seq += 1
        entry = CacheEntry.from_fetch(key, data, self.clock(), policy, self._seq)
        self.store.set(key, entry)
        self._evict()
        self._persist(key, entry)
        self._update_size()
        return data

    def _on_fetch_done(self, key: str, task: "asyncio.Task[Any]", background: bool) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        self._count("fetch_error")
        if self.metrics:
            self.metrics.increment_counter(
                "cache_fetch_failures_total", mode="background" if background else "foreground"
            )
        self.logger.warning(
            "Fetch failed",
            key=key,
            background=background,
            error=str(error),
            status_code=getattr(error, "status_code", None),
        )

    def _evict(self) -> None:
        evicted = self.store.evict_if_over_capacity()
        if not evicted:
            return
        if self.persistence is not None:
            for key in evicted:
                self.persistence.delete(key)
        if self.metrics:
            self.metrics.increment_counter("cache_evictions_total", amount=len(evicted), reason="lru")
        self.logger.debug("Evicted least recently used entries", keys=evicted)

    def _persist(self, key: str, entry: CacheEntry) -> None:
        if self.persistence is None or not self.persistence.should_persist(key):
            return
        if self.persistence.write(key, entry):
            self.persistence.evict_over_capacity()

    def _remove(self, key: str) -> bool:
        entry = self.store.delete(key)
        if entry is None:
            return False
        if self.persistence is not None:
            self.persistence.delete(key)
        return True

    def _after_invalidation(self, removed: List[str], reason: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_evictions_total", amount=len(removed), reason=reason)
        self._update_size()
        self.logger.info("Invalidated cache entries", count=len(removed), keys=removed)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                self.logger.error("Cache listener failed", error=str(e), exc_info=True)

    def _count(self, outcome: str) -> None:
        self._stats[outcome] += 1
        if self.metrics and outcome in ("hit", "stale", "miss", "inflight"):
            self.metrics.increment_counter("cache_requests_total", outcome=outcome)

    def _update_size(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("cache_entries", len(self.store))
