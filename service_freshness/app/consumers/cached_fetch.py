"""
Race-safe view model over DataCache for one on-screen resource.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional, Set, TypeVar

from shared.errors import ErrorResponse, to_error_response
from shared.logging import get_logger

from service_freshness.app.caching.data_cache import DataCache, FetchFn, FetchResult
from service_freshness.app.caching.store import CachePolicy
from service_freshness.app.consumers.generation import GenerationGuard

T = TypeVar("T")


class CachedFetch:
    """Loading/refreshing/error state for whatever key is currently viewed.

    ``is_loading`` is only true when there is nothing at all to show;
    ``is_refreshing`` is true while something (possibly stale) is shown and
    a newer value is on its way. External invalidations of the viewed key
    trigger a reload.
    """

    def __init__(
        self,
        cache: DataCache,
        key: str,
        fetch_fn: FetchFn,
        policy: Optional[CachePolicy] = None,
        enabled: bool = True,
        name: Optional[str] = None,
    ):
        self.cache = cache
        self.key = key
        self.fetch_fn = fetch_fn
        self.policy = policy
        self.enabled = enabled
        self.guard = GenerationGuard(name or key)
        self.logger = get_logger("freshness.consumer")

        self.data: Any = cache.peek(key) if enabled else None
        self.seq: int = 0
        self.is_stale = False
        self.is_loading = False
        self.is_refreshing = False
        self.error: Optional[ErrorResponse] = None

        self._suppress_reload = False
        self._reloads: Set["asyncio.Task[Any]"] = set()
        self._unsubscribe = cache.subscribe(self._on_cache_change) if enabled else None

    async def load(self) -> bool:
        """Resolve the current key; returns True when the outcome was applied."""
        if not self.enabled or not self.key:
            return False

        key, fetch_fn, policy = self.key, self.fetch_fn, self.policy
        shown = self.cache.peek(key)
        if shown is None:
            shown = self.cache.peek_stale(key)
        if shown is not None:
            self.data = shown
            self.is_loading = False
            self.is_refreshing = True
        else:
            self.is_loading = True
        self.error = None

        async def request() -> FetchResult:
            return await self.cache.get_or_fetch(key, fetch_fn, policy)

        applied = await self.guard.run(request, self._apply, self._fail)
        if applied and self.is_stale:
            self._spawn(self._follow_revalidation(key, self.guard.current))
        return applied

    def set_key(self, key: str, fetch_fn: FetchFn, policy: Optional[CachePolicy] = None) -> "asyncio.Task[bool]":
        """Switch the viewed resource and start loading it."""
        self.key = key
        self.fetch_fn = fetch_fn
        self.policy = policy
        return self._spawn_reload()

    async def refetch(self) -> bool:
        """Drop the cached value for the viewed key and load it again."""
        self._suppress_reload = True
        try:
            self.cache.invalidate_by_keys([self.key])
        finally:
            self._suppress_reload = False
        return await self.load()

    def close(self) -> None:
        """Unmount: stop listening and ignore every outstanding completion."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.guard.invalidate()
        for task in list(self._reloads):
            task.cancel()
        self._reloads.clear()

    async def wait_idle(self) -> None:
        """Await reloads started by invalidations or key switches."""
        while self._reloads:
            await asyncio.gather(*list(self._reloads), return_exceptions=True)

    def _apply(self, result: FetchResult) -> None:
        self.data = result.data
        self.seq = result.seq
        self.is_stale = result.is_stale
        self.is_loading = False
        # a stale result means a background revalidation is still running
        self.is_refreshing = result.is_stale

    async def _follow_revalidation(self, key: str, token: int) -> None:
        """Apply the background revalidation of ``key`` if ``token`` is still current."""
        pending = self.cache.pending(key)
        if pending is not None:
            try:
                await asyncio.shield(pending.task)
            except Exception as e:
                self.logger.debug("Revalidation failed, keeping stale value", key=key, error=str(e))
        self.guard.apply_if_current(token, self._apply_revalidated, key)

    def _apply_revalidated(self, key: str) -> None:
        result = self.cache.current(key)
        if result is None:
            self.is_refreshing = False
            return
        self._apply(result)
        self.is_refreshing = False

    def _fail(self, error: BaseException) -> None:
        self.error = to_error_response(error)
        self.is_loading = False
        self.is_refreshing = False
        self.logger.warning("Load failed", key=self.key, code=self.error.code,
                            status_code=self.error.status_code)

    def _spawn_reload(self) -> "asyncio.Task[bool]":
        return self._spawn(self.load())

    def _spawn(self, coro: Awaitable[T]) -> "asyncio.Task[T]":
        task = asyncio.ensure_future(coro)
        self._reloads.add(task)
        task.add_done_callback(self._reloads.discard)
        return task

    def _on_cache_change(self) -> None:
        if self._suppress_reload or not self.enabled:
            return
        if self.cache.peek(self.key) is None:
            self._spawn_reload()
