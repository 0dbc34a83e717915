"""
Test helpers and fakes for the dashboard data-freshness layer.

Deterministic stand-ins for the clock, timers, the push stream transport
and fetch functions, so freshness, backoff and gating rules can be tested
without real time passing.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now

    def set(self, value: float) -> None:
        self.now = value


@dataclass
class FakeTimer:
    """Timer created by FakeScheduler."""
    delay: float
    callback: Callable[[], None]
    idle: bool = False
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Records timers instead of arming them; tests fire them explicitly."""

    def __init__(self):
        self.timers: List[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay=delay, callback=callback)
        self.timers.append(timer)
        return timer

    def run_when_idle(self, callback: Callable[[], None], timeout: float) -> FakeTimer:
        timer = FakeTimer(delay=timeout, callback=callback, idle=True)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    @property
    def delays(self) -> List[float]:
        return [t.delay for t in self.timers if not t.idle]

    def fire(self, timer: FakeTimer) -> None:
        if timer.cancelled or timer.fired:
            return
        timer.fired = True
        timer.callback()

    def fire_next(self) -> Optional[FakeTimer]:
        for timer in self.timers:
            if not timer.cancelled and not timer.fired:
                self.fire(timer)
                return timer
        return None

    def fire_all(self) -> int:
        """Fire every active timer, including ones armed while firing."""
        fired = 0
        while self.fire_next() is not None:
            fired += 1
        return fired


class FakeStreamHandle:
    """Scriptable StreamHandle; tests drive open/event/error by hand."""

    def __init__(self, fail_on_start: Optional[BaseException] = None):
        self.on_open = None
        self.on_event = None
        self.on_error = None
        self.started = False
        self.closed = False
        self.fail_on_start = fail_on_start

    def start(self) -> None:
        if self.fail_on_start is not None:
            raise self.fail_on_start
        self.started = True

    def close(self) -> None:
        self.closed = True

    def open(self) -> None:
        self.on_open()

    def emit(self, name: str, raw: str) -> None:
        self.on_event(name, raw)

    def fail(self, error: Optional[BaseException] = None, terminal: bool = True) -> None:
        self.on_error(error or ConnectionError("stream dropped"), terminal)


class FakeStreamFactory:
    """``open_stream`` callable that hands out FakeStreamHandles in order."""

    def __init__(self):
        self.handles: List[FakeStreamHandle] = []
        self.fail_next: List[BaseException] = []

    def __call__(self) -> FakeStreamHandle:
        handle = FakeStreamHandle(fail_on_start=self.fail_next.pop(0) if self.fail_next else None)
        self.handles.append(handle)
        return handle

    @property
    def latest(self) -> FakeStreamHandle:
        return self.handles[-1]


@dataclass
class CountingFetch:
    """Async fetch function counting invocations; can be held open or made to fail."""
    payload: Any = None
    error: Optional[BaseException] = None
    calls: int = 0
    gate: Optional[asyncio.Event] = None
    results: List[Any] = field(default_factory=list)

    def hold(self) -> "CountingFetch":
        self.gate = asyncio.Event()
        return self

    def release(self) -> None:
        if self.gate is not None:
            self.gate.set()

    async def __call__(self) -> Any:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.results:
            return self.results.pop(0)
        return self.payload


class ControlledFetch:
    """Fetch function whose individual invocations are resolved by the test."""

    def __init__(self):
        self.futures: List[asyncio.Future] = []

    async def __call__(self) -> Any:
        future = asyncio.get_running_loop().create_future()
        self.futures.append(future)
        return await future

    @property
    def calls(self) -> int:
        return len(self.futures)

    def resolve(self, index: int, value: Any) -> None:
        self.futures[index].set_result(value)

    def reject(self, index: int, error: BaseException) -> None:
        self.futures[index].set_exception(error)


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def dashboard_payload(count: int = 5, **extra: Any) -> Dict[str, Any]:
    """Minimal daily dashboard payload."""
    return {"count": count, **extra}
