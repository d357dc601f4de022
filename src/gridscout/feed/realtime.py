"""WebSocket client for the live timing SignalR feed.

Implements the classic SignalR 1.5 client flow:

1. ``GET /signalr/negotiate`` → ``ConnectionToken`` + session cookie
2. Open ``wss://…/signalr/connect`` with the token, hub list and cookie
3. After a short grace period send ``{H, M: "Subscribe", A: [[streams]], I}``
4. Receive frames:

   - ``{"R": {stream: value, ...}, "I": "1"}`` — initial state per stream
   - ``{"M": [{"H": hub, "M": "feed", "A": [stream, partial, ts]}]}`` — updates
   - anything else (``{}`` keep-alives, ``{"C": ..., "S": 1}`` control) is ignored

Every ``(stream, partial)`` in a frame is shallow-merged into a
:class:`~gridscout.feed.cache.StreamCache` before one update notification.

Reconnects with exponential backoff (1s base → 30s max) for a bounded
number of attempts, then gives up until :meth:`RealtimeClient.reconnect`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx
import websockets.asyncio.client as ws_client
from websockets.exceptions import ConnectionClosedOK

from gridscout._internal.async_utils import cancel_task
from gridscout.api.errors import FeedConnectionError, FrameParseError, NegotiationError
from gridscout.feed.cache import SUBSCRIBED_STREAMS, StreamCache
from gridscout.models.events import ConnectedEvent, DisconnectedEvent, ErrorEvent

if TYPE_CHECKING:
    from collections.abc import Callable

    from gridscout.models.events import HubEvent

logger = logging.getLogger(__name__)

_BACKOFF_BASE = 1.0
_BACKOFF_MAX = 30.0
_BACKOFF_FACTOR = 2.0
_MAX_ATTEMPTS = 10

_SUBSCRIBE_GRACE = 0.25

_USER_AGENT = "BestHTTP"
_UPSTREAM_HEADERS = {"User-Agent": _USER_AGENT, "Accept-Encoding": "gzip,identity"}


class ConnectionState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    GIVEN_UP = "given_up"


# -- Helpers ----------------------------------------------------------------


def parse_cookies(set_cookie: list[str]) -> str:
    """Reduce ``Set-Cookie`` header values to a ``Cookie`` request header.

    >>> parse_cookies(["a=1; Path=/; HttpOnly", "b=2; Secure"])
    'a=1; b=2'
    """
    pairs = [value.split(";", 1)[0].strip() for value in set_cookie]
    return "; ".join(p for p in pairs if p)


def parse_frame(raw: str | bytes, hub: str = "Streaming") -> list[tuple[str, Any]]:
    """Extract ``(stream, partial)`` pairs from one inbound frame.

    Returns an empty list for frames that carry no stream data.  Raises
    :class:`FrameParseError` if *raw* is not a JSON object.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FrameParseError(f"Frame is not UTF-8 ({len(raw)} bytes)") from exc
    try:
        message = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FrameParseError(f"Frame is not JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise FrameParseError(f"Expected a JSON object, got {type(message).__name__}")

    updates: list[tuple[str, Any]] = []

    initial = message.get("R")
    if isinstance(initial, dict):
        updates.extend(initial.items())

    feed = message.get("M")
    if isinstance(feed, list):
        for item in feed:
            if not isinstance(item, dict):
                continue
            if str(item.get("H", "")).lower() != hub.lower() or item.get("M") != "feed":
                continue
            args = item.get("A")
            if isinstance(args, list) and len(args) >= 2 and isinstance(args[0], str):
                updates.append((args[0], args[1]))

    return updates


def backoff_delay(
    attempt: int, *, base: float = _BACKOFF_BASE, maximum: float = _BACKOFF_MAX
) -> float:
    """Delay before reconnect *attempt* (1-based): base, 2×base, 4×base, … capped."""
    return min(base * _BACKOFF_FACTOR ** (attempt - 1), maximum)


# -- Client -----------------------------------------------------------------


class RealtimeClient:
    """Owns the single live timing socket and the stream cache it feeds.

    The owner wires three callbacks with :meth:`attach`:

    - *on_update* receives the new :class:`StreamCache` after each frame
      that changed at least one stream;
    - *on_event* receives connectivity events (connected / disconnected /
      error);
    - *should_reconnect* is consulted after a failure; reconnects are only
      scheduled while it returns ``True``.
    """

    def __init__(
        self,
        base_url: str,
        ws_url: str,
        *,
        hub: str = "Streaming",
        streams: tuple[str, ...] = SUBSCRIBED_STREAMS,
        client_protocol: str = "1.5",
        subscribe_grace: float = _SUBSCRIBE_GRACE,
        backoff_base: float = _BACKOFF_BASE,
        backoff_max: float = _BACKOFF_MAX,
        max_attempts: int = _MAX_ATTEMPTS,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._ws_url = ws_url.rstrip("/")
        self._hub = hub
        self._streams = streams
        self._client_protocol = client_protocol
        self._subscribe_grace = subscribe_grace
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._max_attempts = max_attempts
        self._http = http
        self._owns_http = http is None

        self._on_update: Callable[[StreamCache], None] = lambda cache: None
        self._on_event: Callable[[HubEvent], None] = lambda event: None
        self._should_reconnect: Callable[[], bool] = lambda: True

        self._state = ConnectionState.IDLE
        self._cache = StreamCache()
        self._ws: Any = None
        self._session_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._attempts = 0
        self._generation = 0
        self._next_invoke_id = 1
        self._frame_count = 0

    def attach(
        self,
        *,
        on_update: Callable[[StreamCache], None],
        on_event: Callable[[HubEvent], None],
        should_reconnect: Callable[[], bool],
    ) -> None:
        self._on_update = on_update
        self._on_event = on_event
        self._should_reconnect = should_reconnect

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def cache(self) -> StreamCache:
        return self._cache

    @property
    def attempts(self) -> int:
        """Reconnect attempts since the last successful open."""
        return self._attempts

    @property
    def frame_count(self) -> int:
        """Frames that changed at least one stream."""
        return self._frame_count

    # -- URLs ---------------------------------------------------------------

    @property
    def connection_data(self) -> str:
        return json.dumps([{"name": self._hub}], separators=(",", ":"))

    def negotiate_url(self) -> str:
        query = urlencode(
            {"connectionData": self.connection_data, "clientProtocol": self._client_protocol}
        )
        return f"{self._base_url}/signalr/negotiate?{query}"

    def connect_url(self, token: str) -> str:
        query = urlencode(
            {
                "clientProtocol": self._client_protocol,
                "transport": "webSockets",
                "connectionToken": token,
                "connectionData": self.connection_data,
            }
        )
        return f"{self._ws_url}/signalr/connect?{query}"

    # -- Handshake ----------------------------------------------------------

    async def negotiate(self) -> tuple[str, str]:
        """Return ``(connection_token, cookie)``.

        Raises :class:`NegotiationError` on transport failure, non-2xx
        status, or a response without a token or cookie.
        """
        try:
            resp = await self._client().get(self.negotiate_url(), headers=_UPSTREAM_HEADERS)
        except httpx.HTTPError as exc:
            raise NegotiationError(f"Negotiation request failed: {exc}") from exc

        if not resp.is_success:
            raise NegotiationError(
                f"Negotiation failed with status {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError as exc:
            raise NegotiationError("Negotiation returned a non-JSON body") from exc

        token = body.get("ConnectionToken") if isinstance(body, dict) else None
        if not token:
            raise NegotiationError("Negotiation did not return a ConnectionToken")

        cookie = parse_cookies(resp.headers.get_list("set-cookie"))
        if not cookie:
            raise NegotiationError("Negotiation did not return a Set-Cookie header")

        return token, cookie

    async def _open_socket(self, token: str, cookie: str) -> Any:
        try:
            return await ws_client.connect(
                self.connect_url(token),
                additional_headers={"Accept-Encoding": "gzip,identity", "Cookie": cookie},
                user_agent_header=_USER_AGENT,
            )
        except Exception as exc:
            raise FeedConnectionError(f"Failed to open live timing socket: {exc}") from exc

    async def connect(self) -> None:
        """Negotiate and open the socket.  No-op while connecting or connected.

        Failures are reported as ``error`` events and followed by a
        backed-off reconnect; nothing is raised.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return

        self._state = ConnectionState.CONNECTING
        generation = self._generation
        try:
            token, cookie = await self.negotiate()
            ws = await self._open_socket(token, cookie)
        except (NegotiationError, FeedConnectionError) as exc:
            if generation != self._generation:
                return
            logger.error("Live timing connection failed: %s", exc)
            self._state = ConnectionState.DISCONNECTED
            self._on_event(ErrorEvent(message=str(exc)))
            if self._should_reconnect():
                self._schedule_reconnect()
            return

        if generation != self._generation:
            # disconnect() ran while we were connecting
            await ws.close()
            return

        self._ws = ws
        self._state = ConnectionState.CONNECTED
        self._attempts = 0
        logger.info("Connected to live timing feed at %s", self._ws_url)
        self._on_event(ConnectedEvent())
        self._session_task = asyncio.get_running_loop().create_task(self._run_session(ws))

    async def _subscribe(self, ws: Any) -> None:
        invocation = {
            "H": self._hub,
            "M": "Subscribe",
            "A": [list(self._streams)],
            "I": self._next_invoke_id,
        }
        self._next_invoke_id += 1
        logger.debug("Subscribing: %s", json.dumps(invocation))
        await ws.send(json.dumps(invocation))

    # -- Receive loop -------------------------------------------------------

    async def _run_session(self, ws: Any) -> None:
        """Subscribe, then consume frames until the socket closes."""
        try:
            await asyncio.sleep(self._subscribe_grace)
            await self._subscribe(ws)
            async for raw in ws:
                self.handle_message(raw)
        except ConnectionClosedOK:
            pass
        except Exception as exc:
            logger.warning("Live timing socket error: %s", exc)
            if ws is self._ws:
                self._on_event(ErrorEvent(message=f"Live timing socket error: {exc}"))
        self._handle_disconnect(ws)

    def handle_message(self, raw: str | bytes) -> bool:
        """Merge one frame into the cache.  Returns ``True`` if any stream changed."""
        try:
            updates = parse_frame(raw, self._hub)
        except FrameParseError as exc:
            logger.warning("Dropping live timing frame: %s", exc)
            return False

        cache = self._cache
        changed = False
        for stream, partial in updates:
            if stream not in self._streams or not partial:
                continue
            if not isinstance(partial, Mapping):
                logger.debug("Ignoring non-object value for stream %s", stream)
                continue
            cache = cache.merge(stream, partial)
            changed = True

        if not changed:
            return False

        self._cache = cache
        self._frame_count += 1
        try:
            self._on_update(cache)
        except Exception:
            logger.warning("Stream update handler failed", exc_info=True)
        return True

    def _handle_disconnect(self, ws: Any) -> None:
        if ws is not self._ws:
            return
        close_code = getattr(ws, "close_code", None)
        logger.info("Live timing socket closed (code=%s)", close_code)
        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        self._on_event(DisconnectedEvent())
        if self._should_reconnect():
            self._schedule_reconnect()

    # -- Reconnect ----------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        current = asyncio.current_task()
        if self._reconnect_task is not None and self._reconnect_task is not current:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        if self._attempts >= self._max_attempts:
            logger.error(
                "Max reconnection attempts (%d) reached, giving up", self._max_attempts
            )
            self._state = ConnectionState.GIVEN_UP
            return

        self._attempts += 1
        delay = backoff_delay(self._attempts, base=self._backoff_base, maximum=self._backoff_max)
        logger.info(
            "Reconnecting in %.1fs (attempt %d/%d)", delay, self._attempts, self._max_attempts
        )
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay)
        )

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.connect()

    async def reconnect(self) -> None:
        """Drop any connection, reset the attempt budget, and connect afresh."""
        await self.disconnect()
        await self.connect()

    async def disconnect(self) -> None:
        """Close the socket and cancel pending work.  Leaves the client ``IDLE``."""
        self._generation += 1
        reconnect_task, self._reconnect_task = self._reconnect_task, None
        if reconnect_task is not asyncio.current_task():
            await cancel_task(reconnect_task)
        ws, self._ws = self._ws, None
        session_task, self._session_task = self._session_task, None
        await cancel_task(session_task)
        if ws is not None:
            try:
                await ws.close()
            except Exception:
                logger.debug("Error closing live timing socket", exc_info=True)
        self._state = ConnectionState.IDLE
        self._attempts = 0

    async def aclose(self) -> None:
        """Disconnect and release the HTTP client if owned."""
        await self.disconnect()
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http
