"""
Debounced, idle-time scheduling for prefetch jobs.
"""

from __future__ import annotations

from typing import Callable, Optional

from shared.logging import get_logger

from service_freshness.app.capabilities import Scheduler, TimerHandle

DEBOUNCE_SECONDS = 0.4
IDLE_TIMEOUT_SECONDS = 3.0


class PrefetchScheduler:
    """Runs the latest job after a quiet period, inside an idle window.

    A new ``schedule`` supersedes the pending one; both the debounce timer
    and the idle handle are cancelled.
    """

    def __init__(self, scheduler: Scheduler, debounce: float = DEBOUNCE_SECONDS,
                 idle_timeout: float = IDLE_TIMEOUT_SECONDS):
        self.scheduler = scheduler
        self.debounce = debounce
        self.idle_timeout = idle_timeout
        self.logger = get_logger("freshness.prefetch.scheduler")

        self._timer: Optional[TimerHandle] = None
        self._idle: Optional[TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._timer is not None or self._idle is not None

    def schedule(self, job: Callable[[], None]) -> None:
        self.cancel()
        self._timer = self.scheduler.call_later(self.debounce, lambda: self._on_quiet(job))

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._idle is not None:
            self._idle.cancel()
            self._idle = None

    def _on_quiet(self, job: Callable[[], None]) -> None:
        self._timer = None
        self._idle = self.scheduler.run_when_idle(lambda: self._run(job), self.idle_timeout)

    def _run(self, job: Callable[[], None]) -> None:
        self._idle = None
        try:
            job()
        except Exception as e:
            self.logger.error("Prefetch job failed", error=str(e), exc_info=True)
