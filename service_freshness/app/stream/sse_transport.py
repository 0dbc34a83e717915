"""
Server-Sent Events stream handle over httpx.

Behaves like a browser EventSource: a dropped or server-closed connection
is retried by the handle itself (reported as a transient error), while a
connection that cannot be opened, or answers with a non-200 status, is
terminal and left to the StreamClient's backoff.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Iterator, List, Optional, Tuple

import httpx

from shared.errors import StreamConnectionError
from shared.logging import get_logger

from service_freshness.app.stream.events import (
    MESSAGE_EVENT,
    ErrorCallback,
    EventCallback,
    OpenCallback,
    OpenStream,
)

DEFAULT_RETRY_SECONDS = 3.0


class SSEParser:
    """Incremental parser for the text/event-stream format."""

    def __init__(self):
        self._event: Optional[str] = None
        self._data: List[str] = []
        self.retry_ms: Optional[int] = None
        self.last_event_id: Optional[str] = None

    def feed_line(self, line: str) -> Optional[Tuple[str, str]]:
        """Consume one line; returns ``(event, data)`` when an event completes."""
        line = line.rstrip("\r\n")
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None  # comment / heartbeat

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            self.last_event_id = value
        elif field == "retry" and value.isdigit():
            self.retry_ms = int(value)
        return None

    def feed(self, lines: Iterator[str]) -> List[Tuple[str, str]]:
        events = []
        for line in lines:
            event = self.feed_line(line)
            if event is not None:
                events.append(event)
        return events

    def _dispatch(self) -> Optional[Tuple[str, str]]:
        event, self._event = self._event, None
        data, self._data = self._data, []
        if not data:
            return None
        return (event or MESSAGE_EVENT, "\n".join(data))


class SSEStreamHandle:
    """One EventSource-like connection on a shared httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient, url: str, headers: Optional[Dict[str, str]] = None,
                 default_retry: float = DEFAULT_RETRY_SECONDS):
        self.client = client
        self.url = url
        self.headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache", **(headers or {})}
        self.default_retry = default_retry
        self.logger = get_logger("freshness.stream.sse")

        self.on_open: Optional[OpenCallback] = None
        self.on_event: Optional[EventCallback] = None
        self.on_error: Optional[ErrorCallback] = None

        self._parser = SSEParser()
        self._task: Optional["asyncio.Task[None]"] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(self._run())

    def close(self) -> None:
        self._closed = True
        task = self._task
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # called from a callback; _run sees _closed and unwinds the stream context itself
            return
        task.cancel()

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self) -> None:
        while not self._closed:
            opened = await self._consume_once()
            if not opened or self._closed:
                return
            delay = self._retry_delay()
            self.logger.info("SSE connection dropped, retrying", delay=delay)
            await asyncio.sleep(delay)

    async def _consume_once(self) -> bool:
        """Run one connection; False means a terminal failure was reported."""
        headers = dict(self.headers)
        if self._parser.last_event_id:
            headers["Last-Event-ID"] = self._parser.last_event_id

        opened = False
        try:
            async with self.client.stream("GET", self.url, headers=headers, timeout=None) as response:
                if response.status_code != 200:
                    self._emit_error(
                        StreamConnectionError(f"Stream endpoint returned HTTP {response.status_code}",
                                              terminal=True,
                                              details={"status_code": response.status_code}),
                        terminal=True,
                    )
                    return False

                opened = True
                self._emit_open()
                async for line in response.aiter_lines():
                    if self._closed:
                        return True
                    event = self._parser.feed_line(line)
                    if event is not None:
                        self._emit_event(*event)
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            if not opened:
                self._emit_error(StreamConnectionError(f"Failed to connect: {e}", terminal=True), terminal=True)
                return False
            self._emit_error(StreamConnectionError(f"Stream interrupted: {e}", terminal=False), terminal=False)
            return True

        if not self._closed:
            self._emit_error(StreamConnectionError("Stream closed by server", terminal=False), terminal=False)
        return True

    def _retry_delay(self) -> float:
        if self._parser.retry_ms is not None:
            return self._parser.retry_ms / 1000.0
        return self.default_retry

    def _emit_open(self) -> None:
        if self.on_open and not self._closed:
            self.on_open()

    def _emit_event(self, name: str, data: str) -> None:
        if self.on_event and not self._closed:
            self.on_event(name, data)

    def _emit_error(self, error: BaseException, terminal: bool) -> None:
        if terminal:
            self._closed = True
        if self.on_error:
            self.on_error(error, terminal)


def make_sse_opener(client: httpx.AsyncClient, url: str, headers: Optional[Dict[str, str]] = None,
                    default_retry: float = DEFAULT_RETRY_SECONDS) -> OpenStream:
    """Build the ``open_stream`` callable a StreamClient expects."""

    def open_stream() -> SSEStreamHandle:
        return SSEStreamHandle(client, url, headers=headers, default_retry=default_retry)

    return open_stream
