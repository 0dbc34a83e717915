"""
Small capability interfaces the freshness core depends on.

Timers, idle scheduling, page visibility and network hints are environment
specific. The core only talks to these protocols; the defaults here are
always available and impose no constraint.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

Clock = Callable[[], float]


def system_clock() -> float:
    """Wall-clock seconds; persisted timestamps must survive a restart."""
    return time.time()


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Timer capability used for debounce, idle windows, slot release and backoff."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def run_when_idle(self, callback: Callable[[], None], timeout: float) -> TimerHandle: ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop.

    asyncio has no idle-callback primitive, so an idle window is a short
    fixed delay, never longer than the caller's timeout.
    """

    def __init__(self, idle_delay: float = 0.2, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.idle_delay = idle_delay
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(max(0.0, delay), callback)

    def run_when_idle(self, callback: Callable[[], None], timeout: float) -> asyncio.TimerHandle:
        return self.call_later(min(self.idle_delay, max(0.0, timeout)), callback)


class PageState(Protocol):
    def is_hidden(self) -> bool: ...


class AlwaysVisible:
    """Fallback page-visibility probe: the page is never hidden."""

    def is_hidden(self) -> bool:
        return False


class StaticPageState:
    """Mutable visibility flag, driven by whoever owns the UI shell."""

    def __init__(self, hidden: bool = False):
        self.hidden = hidden

    def is_hidden(self) -> bool:
        return self.hidden


class NetworkHints(Protocol):
    def is_constrained(self) -> bool: ...


class Unconstrained:
    """Fallback network probe: no data-saver, no slow connection class."""

    def is_constrained(self) -> bool:
        return False


SLOW_CONNECTION_TYPES = frozenset({"slow-2g", "2g"})


@dataclass
class NetworkInfo:
    """Snapshot of connection hints as reported by the host.

    Missing values mean the host could not tell, which counts as no constraint.
    """

    save_data: Optional[bool] = None
    effective_type: Optional[str] = None

    def is_constrained(self) -> bool:
        if self.save_data:
            return True
        return (self.effective_type or "").lower() in SLOW_CONNECTION_TYPES
