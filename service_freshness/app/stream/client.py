"""
Resilient push-event client.

Maintains a connecting / connected / disconnected state machine on top of an
opaque stream handle, reconnects with exponential backoff after terminal
failures, and dispatches typed events to the owning consumer.
"""

from __future__ import annotations

import json
from typing import Any, Callable, List, Optional

from shared.errors import MalformedEventError, StreamConnectionError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import BackoffConfig, calculate_delay

from service_freshness.app.capabilities import Clock, Scheduler, TimerHandle, system_clock
from service_freshness.app.stream.events import (
    CONNECTED_EVENT,
    DEFAULT_DATA_CHANGED_EVENT,
    MESSAGE_EVENT,
    ConnectionState,
    OpenStream,
    StreamEvent,
    StreamHandle,
)

StateListener = Callable[[ConnectionState], None]


class StreamClient:
    """Owns at most one stream handle and at most one reconnect timer."""

    def __init__(
        self,
        open_stream: OpenStream,
        scheduler: Scheduler,
        on_connected: Optional[Callable[[Any], None]] = None,
        on_data_changed: Optional[Callable[[Any], None]] = None,
        on_message: Optional[Callable[[Any], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        enabled: bool = True,
        backoff: Optional[BackoffConfig] = None,
        data_changed_event: str = DEFAULT_DATA_CHANGED_EVENT,
        clock: Clock = system_clock,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.open_stream = open_stream
        self.scheduler = scheduler
        self.on_connected = on_connected
        self.on_data_changed = on_data_changed
        self.on_message = on_message
        self.on_error = on_error
        self.backoff = backoff or BackoffConfig()
        self.data_changed_event = data_changed_event
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("freshness.stream")

        self._enabled = enabled
        self._state = ConnectionState.CONNECTING if enabled else ConnectionState.DISCONNECTED
        self._handle: Optional[StreamHandle] = None
        self._reconnect_timer: Optional[TimerHandle] = None
        self._failures = 0
        self._last_delay: Optional[float] = None
        self._listeners: List[StateListener] = []
        self.last_event: Optional[StreamEvent] = None

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def last_reconnect_delay(self) -> Optional[float]:
        return self._last_delay

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None

    def start(self) -> None:
        """Open the stream unless disabled or already open."""
        if not self._enabled:
            self._set_state(ConnectionState.DISCONNECTED)
            return
        if self._handle is not None:
            return
        self._connect()

    def set_enabled(self, enabled: bool) -> None:
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if enabled:
            self._failures = 0
            self._connect()
        else:
            self._teardown()
            self.logger.info("Stream disabled")

    def disconnect(self) -> None:
        """Unmount: close everything, no reconnect."""
        self._teardown()
        self.logger.info("Stream disconnected by owner")

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _connect(self) -> None:
        self._cancel_reconnect()
        self._close_handle()
        self._set_state(ConnectionState.CONNECTING)

        try:
            handle = self.open_stream()
            handle.on_open = lambda: self._handle_open(handle)
            handle.on_event = lambda name, raw: self._handle_event(handle, name, raw)
            handle.on_error = lambda error, terminal: self._handle_error(handle, error, terminal)
            self._handle = handle
            handle.start()
        except Exception as e:
            self.logger.error("Failed to open stream", error=str(e))
            self._report_error(StreamConnectionError(f"Failed to open stream: {e}", terminal=True))
            self._fail_terminal()

    def _teardown(self) -> None:
        self._cancel_reconnect()
        self._close_handle()
        self._set_state(ConnectionState.DISCONNECTED)

    def _close_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except Exception as e:
            self.logger.warning("Error closing stream handle", error=str(e))

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _fail_terminal(self) -> None:
        self._close_handle()
        self._set_state(ConnectionState.DISCONNECTED)
        if not self._enabled:
            return

        self._failures += 1
        delay = calculate_delay(self._failures, self.backoff)
        self._last_delay = delay
        self._cancel_reconnect()
        self._reconnect_timer = self.scheduler.call_later(delay, self._reconnect)
        if self.metrics:
            self.metrics.increment_counter("stream_reconnects_total")
        self.logger.info("Stream reconnect scheduled", attempt=self._failures, delay=delay)

    def _reconnect(self) -> None:
        self._reconnect_timer = None
        if self._enabled:
            self._connect()

    # ------------------------------------------------------------------
    # Handle callbacks
    # ------------------------------------------------------------------

    def _handle_open(self, handle: StreamHandle) -> None:
        if handle is not self._handle:
            return
        self._failures = 0
        self._set_state(ConnectionState.CONNECTED)

    def _handle_error(self, handle: StreamHandle, error: BaseException, terminal: bool) -> None:
        if handle is not self._handle:
            return
        self.logger.warning("Stream error", error=str(error), terminal=terminal)
        self._report_error(error)
        if terminal:
            self._fail_terminal()
        else:
            self._set_state(ConnectionState.CONNECTING)

    def _handle_event(self, handle: StreamHandle, name: str, raw: str) -> None:
        if handle is not self._handle:
            return
        if self.metrics:
            self.metrics.increment_counter("stream_events_total", event=name)

        try:
            data = json.loads(raw) if raw else None
        except ValueError:
            self.logger.warning("Malformed stream event", event_name=name)
            self._report_error(MalformedEventError(name, raw))
            return

        if name == CONNECTED_EVENT:
            self._failures = 0
            self._set_state(ConnectionState.CONNECTED)
            self._safe_call(self.on_connected, data)
        elif name == self.data_changed_event:
            self.last_event = StreamEvent(name, data, self.clock())
            self.logger.info("Data changed event received")
            self._safe_call(self.on_data_changed, data)
        elif name == MESSAGE_EVENT:
            self.last_event = StreamEvent(name, data, self.clock())
            self._safe_call(self.on_message, data)
        else:
            self.logger.debug("Ignoring unhandled stream event", event_name=name)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous, self._state = self._state, state
        if self.metrics:
            self.metrics.increment_counter("stream_state_transitions_total", state=state.value)
        self.logger.info("Stream state changed", previous=previous.value, state=state.value)
        for listener in list(self._listeners):
            self._safe_call(listener, state)

    def _report_error(self, error: BaseException) -> None:
        self._safe_call(self.on_error, error)

    def _safe_call(self, callback: Optional[Callable[[Any], None]], arg: Any) -> None:
        if callback is None:
            return
        try:
            callback(arg)
        except Exception as e:
            self.logger.error("Stream callback failed", error=str(e), exc_info=True)
