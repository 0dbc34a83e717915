"""
Push stream package: connection state machine and SSE transport.
"""

from .client import StreamClient
from .events import ConnectionState, StreamEvent
from .sse_transport import SSEStreamHandle, make_sse_opener

__all__ = ["ConnectionState", "SSEStreamHandle", "StreamClient", "StreamEvent", "make_sse_opener"]
