"""
Generation guard: last-request-wins for one logical consumer stream.

The cache dedupes identical keys; the guard handles the other race, where
the key being viewed changes faster than the network answers. Each request
captures a generation number and its completion is applied only if no newer
request was issued in the meantime.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, TypeVar

from shared.logging import get_logger, reset_stream_context, set_stream_context

T = TypeVar("T")


class GenerationGuard:
    """Monotonic per-stream counter."""

    def __init__(self, name: str = "default"):
        self.name = name
        self._current = 0
        self.logger = get_logger("freshness.generation")

    @property
    def current(self) -> int:
        return self._current

    def issue(self) -> int:
        """Start a new request; every earlier token becomes stale."""
        self._current += 1
        return self._current

    def invalidate(self) -> None:
        """Make every outstanding token stale without issuing a new request (unmount)."""
        self._current += 1

    def is_current(self, token: int) -> bool:
        return token == self._current

    def apply_if_current(self, token: int, fn: Callable[..., Any], *args: Any) -> bool:
        if not self.is_current(token):
            self.logger.debug("Discarding superseded completion", stream=self.name,
                              token=token, current=self._current)
            return False
        fn(*args)
        return True

    async def run(
        self,
        request: Callable[[], Awaitable[T]],
        on_result: Callable[[T], Any],
        on_error: Optional[Callable[[BaseException], Any]] = None,
    ) -> bool:
        """Issue ``request`` under a fresh generation.

        Returns True when the outcome (result or error) was applied. Errors
        of superseded requests are dropped; errors of the current request
        without an ``on_error`` handler propagate.
        """
        token = self.issue()
        context = set_stream_context(self.name)
        try:
            try:
                result = await request()
            except Exception as error:
                if not self.is_current(token):
                    self.logger.debug("Discarding superseded failure", stream=self.name, token=token)
                    return False
                if on_error is None:
                    raise
                on_error(error)
                return True
            return self.apply_if_current(token, on_result, result)
        finally:
            reset_stream_context(context)
