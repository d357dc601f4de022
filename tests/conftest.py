"""Shared fixtures: sample upstream documents and fake upstream clients."""

from __future__ import annotations

import asyncio
import copy
import json
from typing import Any

import pytest

from gridscout.feed.cache import StreamCache
from gridscout.feed.realtime import ConnectionState
from gridscout.models.standings import StandingsSnapshot

WEATHER = {
    "AirTemp": "27.1",
    "Humidity": "43.0",
    "Pressure": "996.4",
    "Rainfall": "0",
    "TrackTemp": "44.0",
    "WindDirection": "205",
    "WindSpeed": "3.6",
}

STANDINGS: dict[str, Any] = {
    "session": {"name": "Race", "uuid": "sess-1", "type": "Session"},
    "event": {"name": "Abu Dhabi Grand Prix", "uuid": "evt-1", "type": "Event"},
    "eventNumber": 24,
    "sessionState": "Running",
    "lapTotal": 58,
    "lap": 12,
    "raceDetail": {"safetyCar": [], "virtualSafetyCar": [], "redFlag": []},
    "ranking": [
        {
            "driver": {"name": "Max Verstappen", "uuid": "drv-ver", "type": "Driver"},
            "team": {"name": "Red Bull Racing", "uuid": "team-rbr", "type": "Team"},
            "position": 1,
            "carNumber": "1",
            "pit": False,
            "time": 83076,
            "gap": {"timeToLead": 0, "lapsToLead": 0, "timeToNext": 0, "lapsToNext": 0},
            "fastestLapTime": 82104,
            "pitStops": 1,
            "retirement": None,
            "tyre": "H",
            "tyreDetail": [
                {"type": "M", "wear": "n", "laps": 8},
                {"type": "H", "wear": "n", "laps": 4},
            ],
            "averageSpeed": 200.0,
        },
        {
            "driver": {"name": "Lando Norris", "uuid": "drv-nor", "type": "Driver"},
            "team": {"name": "McLaren", "uuid": "team-mcl", "type": "Team"},
            "position": 2,
            "carNumber": "4",
            "pit": True,
            "time": 84250,
            "gap": {"timeToLead": 1750, "lapsToLead": 0, "timeToNext": 1750, "lapsToNext": 0},
            "fastestLapTime": 82999,
            "pitStops": 0,
            "retirement": None,
            "tyre": "S",
            "tyreDetail": [],
            "averageSpeed": 198.5,
        },
        {
            "driver": {"name": "Nico Hulkenberg", "uuid": "drv-hul", "type": "Driver"},
            "team": {"name": "Sauber", "uuid": "team-sau", "type": "Team"},
            "position": None,
            "carNumber": "27",
            "pit": False,
            "time": 0,
            "gap": None,
            "fastestLapTime": 0,
            "pitStops": 0,
            "retirement": "DNS",
            "tyre": None,
            "tyreDetail": [],
            "averageSpeed": None,
        },
    ],
}


@pytest.fixture()
def weather() -> dict[str, str]:
    return dict(WEATHER)


@pytest.fixture()
def standings_json() -> dict[str, Any]:
    return copy.deepcopy(STANDINGS)


@pytest.fixture()
def standings(standings_json: dict[str, Any]) -> StandingsSnapshot:
    return StandingsSnapshot.model_validate(standings_json)


@pytest.fixture()
def weather_cache(weather: dict[str, str]) -> StreamCache:
    return StreamCache().merge("WeatherData", weather)


def feed_frame(stream: str, partial: Any, hub: str = "Streaming") -> str:
    return json.dumps({"M": [{"H": hub, "M": "feed", "A": [stream, partial, "2026-01-13T20:26:36Z"]}]})


# -- Fakes ------------------------------------------------------------------


class FakeSocket:
    """Stands in for a websockets client connection.

    Yields the queued *messages*, then either ends (server closed the
    socket) or, with ``hold=True``, blocks until :meth:`close`.
    """

    def __init__(self, messages: list[str] | None = None, *, hold: bool = False) -> None:
        self.messages = list(messages or [])
        self.hold = hold
        self.sent: list[str] = []
        self.closed = False
        self.close_code: int | None = None
        self._released = asyncio.Event()

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self.close_code = 1000
        self._released.set()

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> str:
        if self.messages:
            return self.messages.pop(0)
        if self.hold:
            await self._released.wait()
        self.close_code = self.close_code or 1000
        raise StopAsyncIteration


class FakeRealtime:
    """Minimal RealtimeClient double for hub tests."""

    def __init__(self) -> None:
        self.state = ConnectionState.IDLE
        self.cache = StreamCache()
        self.connect_calls = 0
        self.reconnect_calls = 0
        self.frame_count = 0
        self.closed = False
        self._on_update: Any = None
        self._on_event: Any = None
        self.should_reconnect: Any = None

    def attach(self, *, on_update: Any, on_event: Any, should_reconnect: Any) -> None:
        self._on_update = on_update
        self._on_event = on_event
        self.should_reconnect = should_reconnect

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    async def connect(self) -> None:
        self.connect_calls += 1

    async def reconnect(self) -> None:
        self.reconnect_calls += 1

    async def aclose(self) -> None:
        self.closed = True

    def push(self, stream: str, partial: dict[str, Any]) -> None:
        self.cache = self.cache.merge(stream, partial)
        self._on_update(self.cache)

    def emit(self, event: Any) -> None:
        self._on_event(event)


class FakeStandings:
    """StandingsClient double returning queued snapshots."""

    def __init__(self, snapshots: list[StandingsSnapshot | None] | None = None) -> None:
        self.snapshots = list(snapshots or [])
        self.calls = 0
        self.is_completed = False
        self.closed = False
        self.last: StandingsSnapshot | None = None

    @property
    def fetch_count(self) -> int:
        return self.calls

    async def get_latest(self) -> StandingsSnapshot | None:
        self.calls += 1
        if self.snapshots:
            self.last = self.snapshots.pop(0)
        return self.last

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_realtime() -> FakeRealtime:
    return FakeRealtime()


@pytest.fixture()
def fake_standings() -> FakeStandings:
    return FakeStandings()


async def eventually(predicate: Any, timeout: float = 2.0) -> None:
    """Yield to the loop until *predicate()* holds or *timeout* elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)
