"""Tests for the live timing SignalR client."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from pytest_httpx import HTTPXMock

from gridscout.api.errors import FrameParseError, NegotiationError
from gridscout.feed.cache import StreamCache
from gridscout.feed.realtime import (
    ConnectionState,
    RealtimeClient,
    backoff_delay,
    parse_cookies,
    parse_frame,
)
from gridscout.models.events import ConnectedEvent, DisconnectedEvent, ErrorEvent
from tests.conftest import FakeSocket, eventually, feed_frame

BASE = "https://livetiming.test"
WS = "wss://livetiming.test"


class Recorder:
    def __init__(self) -> None:
        self.updates: list[StreamCache] = []
        self.events: list[Any] = []
        self.reconnect = True

    def attach(self, client: RealtimeClient) -> None:
        client.attach(
            on_update=self.updates.append,
            on_event=self.events.append,
            should_reconnect=lambda: self.reconnect,
        )

    def of_type(self, kind: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, kind)]


@pytest.fixture()
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture()
async def client(recorder: Recorder):
    c = RealtimeClient(BASE, WS, subscribe_grace=0, backoff_base=100.0, max_attempts=3)
    recorder.attach(c)
    yield c
    await c.aclose()


def _patch_socket(monkeypatch: pytest.MonkeyPatch, *sockets: FakeSocket) -> list[dict[str, Any]]:
    """Make ``websockets.asyncio.client.connect`` hand out *sockets* in order."""
    calls: list[dict[str, Any]] = []
    queue = list(sockets)

    async def fake_connect(url: str, **kwargs: Any) -> FakeSocket:
        calls.append({"url": url, **kwargs})
        return queue.pop(0)

    monkeypatch.setattr("websockets.asyncio.client.connect", fake_connect)
    return calls


class TestParseFrame:
    def test_initial_state(self) -> None:
        raw = json.dumps({"R": {"WeatherData": {"AirTemp": "20"}, "Heartbeat": {}}, "I": "1"})
        assert parse_frame(raw) == [("WeatherData", {"AirTemp": "20"}), ("Heartbeat", {})]

    def test_feed_message(self) -> None:
        assert parse_frame(feed_frame("WeatherData", {"AirTemp": "21"})) == [
            ("WeatherData", {"AirTemp": "21"})
        ]

    def test_hub_name_is_case_insensitive(self) -> None:
        raw = feed_frame("WeatherData", {"x": 1}, hub="streaming")
        assert parse_frame(raw, "Streaming") == [("WeatherData", {"x": 1})]

    def test_other_hub_ignored(self) -> None:
        assert parse_frame(feed_frame("WeatherData", {"x": 1}, hub="Other")) == []

    def test_non_feed_method_ignored(self) -> None:
        raw = json.dumps({"M": [{"H": "Streaming", "M": "ping", "A": ["WeatherData", {}]}]})
        assert parse_frame(raw) == []

    def test_keepalive_and_control_frames(self) -> None:
        assert parse_frame("{}") == []
        assert parse_frame('{"C": "d-1", "S": 1, "M": []}') == []

    def test_bytes(self) -> None:
        raw = feed_frame("RaceControlMessages", {"Messages": []}).encode()
        assert parse_frame(raw) == [("RaceControlMessages", {"Messages": []})]

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", b"\xff\xfe"])
    def test_malformed(self, raw: str | bytes) -> None:
        with pytest.raises(FrameParseError):
            parse_frame(raw)


class TestHelpers:
    def test_parse_cookies(self) -> None:
        assert parse_cookies(["a=1; Path=/; HttpOnly", "b=2; Secure"]) == "a=1; b=2"
        assert parse_cookies([]) == ""

    def test_backoff(self) -> None:
        delays = [backoff_delay(n) for n in range(1, 8)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]

    def test_backoff_custom(self) -> None:
        assert backoff_delay(3, base=0.5, maximum=1.5) == 1.5

    async def test_urls(self, client: RealtimeClient) -> None:
        negotiate = httpx.URL(client.negotiate_url())
        assert negotiate.path == "/signalr/negotiate"
        assert negotiate.params["clientProtocol"] == "1.5"
        assert json.loads(negotiate.params["connectionData"]) == [{"name": "Streaming"}]

        connect = httpx.URL(client.connect_url("tok/en+1"))
        assert connect.scheme == "wss"
        assert connect.path == "/signalr/connect"
        assert connect.params["transport"] == "webSockets"
        assert connect.params["connectionToken"] == "tok/en+1"


class TestNegotiate:
    async def test_success(self, client: RealtimeClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=client.negotiate_url(),
            json={"ConnectionToken": "abc", "ConnectionId": "1"},
            headers=[("Set-Cookie", "GCLB=xyz; Path=/"), ("Set-Cookie", "ARR=1; HttpOnly")],
        )
        assert await client.negotiate() == ("abc", "GCLB=xyz; ARR=1")

    async def test_http_error(self, client: RealtimeClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=client.negotiate_url(), status_code=503)
        with pytest.raises(NegotiationError) as exc_info:
            await client.negotiate()
        assert exc_info.value.status_code == 503

    async def test_missing_token(self, client: RealtimeClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=client.negotiate_url(), json={}, headers={"Set-Cookie": "a=1"}
        )
        with pytest.raises(NegotiationError, match="ConnectionToken"):
            await client.negotiate()

    async def test_missing_cookie(self, client: RealtimeClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=client.negotiate_url(), json={"ConnectionToken": "abc"})
        with pytest.raises(NegotiationError, match="Set-Cookie"):
            await client.negotiate()

    async def test_transport_failure(self, client: RealtimeClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_exception(httpx.ConnectTimeout("slow"), url=client.negotiate_url())
        with pytest.raises(NegotiationError, match="request failed"):
            await client.negotiate()


class TestHandleMessage:
    async def test_one_update_per_frame(self, client: RealtimeClient, recorder: Recorder) -> None:
        raw = json.dumps(
            {
                "M": [
                    {"H": "Streaming", "M": "feed", "A": ["WeatherData", {"AirTemp": "20"}, ""]},
                    {
                        "H": "Streaming",
                        "M": "feed",
                        "A": ["RaceControlMessages", {"Messages": [{"Message": "GREEN"}]}, ""],
                    },
                ]
            }
        )
        assert client.handle_message(raw) is True
        assert len(recorder.updates) == 1
        cache = recorder.updates[0]
        assert cache.get("WeatherData") == {"AirTemp": "20"}
        assert cache.get("RaceControlMessages") == {"Messages": [{"Message": "GREEN"}]}
        assert client.frame_count == 1

    async def test_shallow_merge(self, client: RealtimeClient) -> None:
        client.handle_message(feed_frame("WeatherData", {"AirTemp": "20", "Humidity": "40"}))
        client.handle_message(feed_frame("WeatherData", {"AirTemp": "21"}))
        assert client.cache.get("WeatherData") == {"AirTemp": "21", "Humidity": "40"}

    async def test_malformed_frame_dropped(
        self, client: RealtimeClient, recorder: Recorder
    ) -> None:
        client.handle_message(feed_frame("WeatherData", {"AirTemp": "20"}))
        assert client.handle_message("{broken") is False
        assert client.cache.get("WeatherData") == {"AirTemp": "20"}
        assert len(recorder.updates) == 1
        assert recorder.events == []

    async def test_unsubscribed_stream_ignored(
        self, client: RealtimeClient, recorder: Recorder
    ) -> None:
        assert client.handle_message(feed_frame("TimingData", {"Lines": {}})) is False
        assert "TimingData" not in client.cache
        assert recorder.updates == []

    async def test_empty_partial_ignored(self, client: RealtimeClient, recorder: Recorder) -> None:
        assert client.handle_message(feed_frame("WeatherData", {})) is False
        assert client.handle_message(feed_frame("WeatherData", None)) is False
        assert recorder.updates == []

    async def test_update_handler_failure_is_contained(self, client: RealtimeClient) -> None:
        def boom(cache: StreamCache) -> None:
            raise RuntimeError("handler")

        client.attach(on_update=boom, on_event=lambda e: None, should_reconnect=lambda: False)
        assert client.handle_message(feed_frame("WeatherData", {"AirTemp": "20"})) is True
        assert client.cache.get("WeatherData") == {"AirTemp": "20"}


class TestConnect:
    async def test_connects_and_subscribes(
        self, client: RealtimeClient, recorder: Recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        socket = FakeSocket(hold=True)
        calls = _patch_socket(monkeypatch, socket)
        monkeypatch.setattr(client, "negotiate", AsyncMock(return_value=("tok", "a=1")))

        await client.connect()
        assert client.state is ConnectionState.CONNECTED
        assert client.is_connected
        assert len(recorder.of_type(ConnectedEvent)) == 1

        await eventually(lambda: socket.sent)
        invocation = json.loads(socket.sent[0])
        assert invocation == {
            "H": "Streaming",
            "M": "Subscribe",
            "A": [["WeatherData", "RaceControlMessages"]],
            "I": 1,
        }
        assert calls[0]["additional_headers"]["Cookie"] == "a=1"
        assert "connectionToken=tok" in calls[0]["url"]

    async def test_connect_is_noop_when_connected(
        self, client: RealtimeClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _patch_socket(monkeypatch, FakeSocket(hold=True))
        negotiate = AsyncMock(return_value=("tok", "a=1"))
        monkeypatch.setattr(client, "negotiate", negotiate)

        await client.connect()
        await client.connect()
        assert negotiate.await_count == 1

    async def test_frames_reach_cache(
        self, client: RealtimeClient, recorder: Recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        socket = FakeSocket(
            [
                json.dumps({"R": {"WeatherData": {"AirTemp": "19"}}, "I": "1"}),
                "{}",
                feed_frame("WeatherData", {"AirTemp": "20"}),
            ],
            hold=True,
        )
        _patch_socket(monkeypatch, socket)
        monkeypatch.setattr(client, "negotiate", AsyncMock(return_value=("tok", "a=1")))

        await client.connect()
        await eventually(lambda: len(recorder.updates) == 2)
        assert client.cache.get("WeatherData") == {"AirTemp": "20"}

    async def test_negotiate_failure_reports_and_schedules_reconnect(
        self, client: RealtimeClient, recorder: Recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(
            client, "negotiate", AsyncMock(side_effect=NegotiationError("status 503"))
        )
        await client.connect()

        assert client.state is ConnectionState.DISCONNECTED
        errors = recorder.of_type(ErrorEvent)
        assert len(errors) == 1
        assert "503" in errors[0].message
        assert client.attempts == 1

    async def test_socket_open_failure(
        self, client: RealtimeClient, recorder: Recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def refuse(url: str, **kwargs: Any) -> None:
            raise OSError("connection refused")

        monkeypatch.setattr("websockets.asyncio.client.connect", refuse)
        monkeypatch.setattr(client, "negotiate", AsyncMock(return_value=("tok", "a=1")))

        await client.connect()
        errors = recorder.of_type(ErrorEvent)
        assert len(errors) == 1
        assert "socket" in errors[0].message

    async def test_no_reconnect_without_subscribers(
        self, client: RealtimeClient, recorder: Recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        recorder.reconnect = False
        monkeypatch.setattr(client, "negotiate", AsyncMock(side_effect=NegotiationError("down")))
        await client.connect()
        assert client.attempts == 0
        assert client.state is ConnectionState.DISCONNECTED

    async def test_gives_up_after_max_attempts(
        self,
        recorder: Recorder,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        client = RealtimeClient(BASE, WS, backoff_base=0.001, backoff_max=0.002, max_attempts=2)
        recorder.attach(client)
        negotiate = AsyncMock(side_effect=NegotiationError("down"))
        monkeypatch.setattr(client, "negotiate", negotiate)

        await client.connect()
        await eventually(lambda: client.state is ConnectionState.GIVEN_UP)

        assert negotiate.await_count == 3
        assert len(recorder.of_type(ErrorEvent)) == 3
        assert "Max reconnection attempts (2) reached, giving up" in caplog.messages
        await client.aclose()

    async def test_reconnect_resets_budget(
        self, recorder: Recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        client = RealtimeClient(BASE, WS, subscribe_grace=0, max_attempts=0)
        recorder.attach(client)
        monkeypatch.setattr(client, "negotiate", AsyncMock(side_effect=NegotiationError("down")))
        await client.connect()
        assert client.state is ConnectionState.GIVEN_UP

        _patch_socket(monkeypatch, FakeSocket(hold=True))
        monkeypatch.setattr(client, "negotiate", AsyncMock(return_value=("tok", "a=1")))
        await client.reconnect()

        assert client.state is ConnectionState.CONNECTED
        assert client.attempts == 0
        await client.aclose()

    async def test_server_close_emits_disconnect_and_reconnects(
        self, recorder: Recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        client = RealtimeClient(BASE, WS, subscribe_grace=0, backoff_base=0.001)
        recorder.attach(client)
        first = FakeSocket([feed_frame("WeatherData", {"AirTemp": "20"})])
        second = FakeSocket(hold=True)
        _patch_socket(monkeypatch, first, second)
        monkeypatch.setattr(client, "negotiate", AsyncMock(return_value=("tok", "a=1")))

        await client.connect()
        await eventually(lambda: len(recorder.of_type(ConnectedEvent)) == 2)

        kinds = [type(e) for e in recorder.events]
        assert kinds == [ConnectedEvent, DisconnectedEvent, ConnectedEvent]
        assert client.is_connected
        assert client.cache.get("WeatherData") == {"AirTemp": "20"}
        await client.aclose()

    async def test_server_close_without_subscribers_stays_down(
        self, client: RealtimeClient, recorder: Recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        recorder.reconnect = False
        _patch_socket(monkeypatch, FakeSocket([]))
        monkeypatch.setattr(client, "negotiate", AsyncMock(return_value=("tok", "a=1")))

        await client.connect()
        await eventually(lambda: client.state is ConnectionState.DISCONNECTED)
        assert client.attempts == 0
        assert [type(e) for e in recorder.events] == [ConnectedEvent, DisconnectedEvent]

    async def test_socket_error_reports_then_disconnects(
        self, client: RealtimeClient, recorder: Recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        class BrokenSocket(FakeSocket):
            async def __anext__(self) -> str:
                raise RuntimeError("reset by peer")

        _patch_socket(monkeypatch, BrokenSocket())
        monkeypatch.setattr(client, "negotiate", AsyncMock(return_value=("tok", "a=1")))

        await client.connect()
        await eventually(lambda: client.state is ConnectionState.DISCONNECTED)

        assert [type(e) for e in recorder.events] == [
            ConnectedEvent,
            ErrorEvent,
            DisconnectedEvent,
        ]
        assert "reset by peer" in recorder.events[1].message
        assert client.attempts == 1

    async def test_disconnect_is_quiet(
        self, client: RealtimeClient, recorder: Recorder, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        socket = FakeSocket(hold=True)
        _patch_socket(monkeypatch, socket)
        monkeypatch.setattr(client, "negotiate", AsyncMock(return_value=("tok", "a=1")))

        await client.connect()
        await client.disconnect()

        assert socket.closed
        assert client.state is ConnectionState.IDLE
        assert [type(e) for e in recorder.events] == [ConnectedEvent]
