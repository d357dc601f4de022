"""Per-viewer Server-Sent Events stream.

Each hub event becomes one SSE frame whose ``data`` line is the event body
as JSON, zlib-compressed and base64-encoded::

    event: payload
    data: eJyrVkrOz8lJTS...

Event types and bodies:

- ``status``    ``{connected, timestamp}``
- ``payload``   ``{data, timestamp}``
- ``error``     ``{message, timestamp}``
- ``heartbeat`` ``{timestamp}``, every 30s, independent of hub activity
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import zlib
from collections import deque
from typing import TYPE_CHECKING, Any, assert_never

from starlette.responses import StreamingResponse

from gridscout._internal.async_utils import now_ms
from gridscout.models.events import ConnectedEvent, DisconnectedEvent, ErrorEvent, PayloadEvent

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from starlette.types import Receive, Scope, Send

    from gridscout.feed.hub import FanoutHub
    from gridscout.models.events import HubEvent

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 30.0
MAX_PENDING = 64

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_frame(event: str, body: dict[str, Any]) -> str:
    """Frame *body* as a compressed SSE event."""
    raw = json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    data = base64.b64encode(zlib.compress(raw)).decode("ascii")
    return f"event: {event}\ndata: {data}\n\n"


def decode_frame(frame: str) -> tuple[str, dict[str, Any]]:
    """Inverse of :func:`encode_frame`."""
    event = ""
    data = ""
    for line in frame.strip("\n").split("\n"):
        if line.startswith("event: "):
            event = line[len("event: ") :]
        elif line.startswith("data: "):
            data = line[len("data: ") :]
    body: dict[str, Any] = json.loads(zlib.decompress(base64.b64decode(data)))
    return event, body


def event_to_frame(event: HubEvent) -> str:
    match event:
        case PayloadEvent(payload=payload, timestamp=ts):
            return encode_frame("payload", {"data": payload.to_wire(), "timestamp": ts})
        case ConnectedEvent(timestamp=ts):
            return encode_frame("status", {"connected": True, "timestamp": ts})
        case DisconnectedEvent(timestamp=ts):
            return encode_frame("status", {"connected": False, "timestamp": ts})
        case ErrorEvent(message=message, timestamp=ts):
            return encode_frame("error", {"message": message, "timestamp": ts})
        case _:
            assert_never(event)


class ViewerStream:
    """One viewer's subscription to the hub, exposed as an async iterator of frames.

    :meth:`open` subscribes and starts the heartbeat; :meth:`close` (safe to
    call any number of times) stops the heartbeat and unsubscribes exactly
    once.  Iterating :meth:`frames` closes the stream when the consumer goes
    away.

    At most *max_pending* frames are buffered for a slow viewer.  When the
    buffer is full the oldest ``payload`` frame is dropped (each payload
    supersedes the previous one); status, error and heartbeat frames are
    only dropped when nothing else is left to drop.
    """

    def __init__(
        self,
        hub: FanoutHub,
        *,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        max_pending: int = MAX_PENDING,
    ) -> None:
        self._hub = hub
        self._heartbeat_interval = heartbeat_interval
        self._max_pending = max(1, max_pending)
        self._buffer: deque[tuple[str, str]] = deque()
        self._ready = asyncio.Event()
        self._unsubscribe: Callable[[], None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._opened = False
        self._closed = False
        self._sent = 0
        self._dropped = 0

    @property
    def is_closed(self) -> bool:
        return self._closed

    def open(self) -> None:
        if self._opened:
            return
        self._opened = True
        self._unsubscribe = self._hub.subscribe(self._on_event)
        self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat())

    def _on_event(self, event: HubEvent) -> None:
        if self._closed:
            return
        kind = "payload" if isinstance(event, PayloadEvent) else "control"
        self._push(kind, event_to_frame(event))

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            self._push("control", encode_frame("heartbeat", {"timestamp": now_ms()}))

    def _push(self, kind: str, frame: str) -> None:
        if len(self._buffer) >= self._max_pending:
            self._drop_oldest()
        self._buffer.append((kind, frame))
        self._ready.set()

    def _drop_oldest(self) -> None:
        for item in self._buffer:
            if item[0] == "payload":
                self._buffer.remove(item)
                break
        else:
            self._buffer.popleft()
        self._dropped += 1
        if self._dropped == 1 or self._dropped % 100 == 0:
            logger.warning("Slow viewer, %d frames dropped so far", self._dropped)

    def pending(self) -> list[str]:
        """Drain and return frames buffered so far without waiting."""
        frames = [frame for _, frame in self._buffer]
        self._buffer.clear()
        return frames

    async def frames(self) -> AsyncIterator[str]:
        try:
            while True:
                if not self._buffer:
                    if self._closed:
                        return
                    self._ready.clear()
                    await self._ready.wait()
                    continue
                _, frame = self._buffer.popleft()
                self._sent += 1
                yield frame
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._ready.set()
        logger.debug(
            "Viewer stream closed after %d frames (%d dropped)", self._sent, self._dropped
        )


class ViewerStreamResponse(StreamingResponse):
    """Streaming response that always tears down its :class:`ViewerStream`."""

    def __init__(self, stream: ViewerStream) -> None:
        super().__init__(stream.frames(), headers=SSE_HEADERS)
        self.stream = stream

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.stream.close()
