"""
Stream connection state, events and the transport handle contract.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol


class ConnectionState(str, Enum):
    """Push stream connection states."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


CONNECTED_EVENT = "connected"
MESSAGE_EVENT = "message"
DEFAULT_DATA_CHANGED_EVENT = "sync-completed"


@dataclass(frozen=True)
class StreamEvent:
    """Last event seen by the client, as exposed to consumers."""
    type: str
    data: Any
    timestamp: float


OpenCallback = Callable[[], None]
EventCallback = Callable[[str, str], None]
ErrorCallback = Callable[[BaseException, bool], None]


class StreamHandle(Protocol):
    """One underlying stream connection.

    The owner assigns the callbacks, then calls ``start``. ``on_error``
    receives the failure and whether it is terminal (the transport gave up)
    or transient (the transport is retrying by itself).
    """

    on_open: Optional[OpenCallback]
    on_event: Optional[EventCallback]
    on_error: Optional[ErrorCallback]

    def start(self) -> None: ...

    def close(self) -> None: ...


OpenStream = Callable[[], StreamHandle]
