"""Merge the live timing stream cache and the standings snapshot into one payload.

Everything here is pure: the same inputs always produce an equal
:class:`~gridscout.models.payload.LiveTimingsPayload`.

Field mapping:

- ``WeatherData``          → ``weather``  (strings parsed to floats, compass from degrees)
- ``RaceControlMessages``  → ``raceControlMessages`` (newest first)
- standings ``ranking``    → ``drivers`` (unclassified entries dropped)
- standings ``raceDetail`` → ``trackStatus``
- standings ``sessionState`` → ``session.status``
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from gridscout.models.payload import (
    Country,
    CurrentTyre,
    DriverTelemetry,
    EventInfo,
    LiveTimingsPayload,
    RaceControlMessage,
    SessionInfo,
    TrackStatus,
    TyreHistoryEntry,
    Weather,
    Wind,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from gridscout.feed.cache import StreamCache
    from gridscout.models.payload import Compound, SessionStatus
    from gridscout.models.standings import Gap, RaceDetail, RankingEntry, StandingsSnapshot

KPH_TO_MPH = 0.621371

COMPASS_POINTS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")

_COMPOUNDS: dict[str, Compound] = {
    "S": "soft",
    "M": "medium",
    "H": "hard",
    "I": "intermediate",
    "W": "wet",
}

TRACK_CLEAR = TrackStatus(flag_status="green", message="TRACK CLEAR — NO CURRENT OBSTRUCTIONS")
RED_FLAG = TrackStatus(flag_status="red", message="RED FLAG — SESSION SUSPENDED")
SAFETY_CAR = TrackStatus(flag_status="sc", message="SAFETY CAR DEPLOYED")
VIRTUAL_SAFETY_CAR = TrackStatus(flag_status="vsc", message="VIRTUAL SAFETY CAR")

DEFAULT_CATEGORY = "RACE CONTROL"


# -- Formatting helpers -----------------------------------------------------


def _round_half_up(value: float, digits: int = 0) -> float:
    """Round half away from zero for positives (matches ``Math.round`` semantics)."""
    scale = 10**digits
    return math.floor(value * scale + 0.5) / scale


def _laps_behind(laps: int) -> str:
    return "+1 LAP" if laps == 1 else f"+{laps} LAPS"


def _seconds(ms: float) -> str:
    return f"{ms / 1000:.3f}"


def format_gap(gap: Gap | None, position: int) -> str:
    """Gap to the leader: ``LEADER``, ``+N LAP(S)`` or ``+S.mmm``."""
    if position == 1:
        return "LEADER"
    if gap is None:
        return ""
    if (gap.laps_to_lead or 0) > 0:
        return _laps_behind(gap.laps_to_lead or 0)
    return f"+{_seconds(gap.time_to_lead or 0)}"


def format_interval(gap: Gap | None, position: int) -> str:
    """Gap to the car ahead, same rules as :func:`format_gap`; empty for the leader."""
    if position == 1 or gap is None:
        return ""
    if (gap.laps_to_next or 0) > 0:
        return _laps_behind(gap.laps_to_next or 0)
    return f"+{_seconds(gap.time_to_next or 0)}"


def format_lap_time(ms: float | None) -> str:
    """``M:SS.mmm`` (or ``SS.mmm`` under a minute); empty for non-positive input."""
    if ms is None or ms <= 0:
        return ""
    total_ms = int(_round_half_up(ms))
    minutes, rem = divmod(total_ms, 60_000)
    seconds, millis = divmod(rem, 1000)
    if minutes > 0:
        return f"{minutes}:{seconds:02d}.{millis:03d}"
    return f"{seconds}.{millis:03d}"


def kph_to_mph(kph: float) -> float:
    return _round_half_up(kph * KPH_TO_MPH, 3)


def map_tyre_compound(code: str | None) -> Compound:
    return _COMPOUNDS.get((code or "").upper(), "medium")


def extract_tla(full_name: str | None) -> str:
    """Three-letter tag from the last word of *full_name* (``Max Verstappen`` → ``VER``)."""
    parts = (full_name or "").split()
    last = parts[-1] if parts else ""
    return last[:3].upper().ljust(3)


def deg_to_compass(deg: float) -> str:
    index = int(_round_half_up(deg / 45)) % len(COMPASS_POINTS)
    return COMPASS_POINTS[index]


def map_session_state(state: str | None) -> SessionStatus:
    match (state or "").lower():
        case "running" | "live":
            return "active"
        case "complete" | "completed" | "finished":
            return "finished"
        case _:
            return "inactive"


def determine_track_status(
    race_detail: RaceDetail | None, current_lap: int | None
) -> TrackStatus:
    """Flag state for *current_lap*: red > safety car > VSC > clear.

    A lap listed in the race detail is treated as "flag in effect now";
    the upstream only reports the laps a flag occurred on.
    """
    if race_detail is None or current_lap is None:
        return TRACK_CLEAR
    if current_lap in race_detail.red_flag:
        return RED_FLAG
    if current_lap in race_detail.safety_car:
        return SAFETY_CAR
    if current_lap in race_detail.virtual_safety_car:
        return VIRTUAL_SAFETY_CAR
    return TRACK_CLEAR


# -- Builders ---------------------------------------------------------------


def _to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _to_int(value: Any) -> int:
    return int(_to_float(value))


def build_weather(weather: Mapping[str, Any]) -> Weather:
    direction = _to_float(weather.get("WindDirection"))
    return Weather(
        conditions="Rainy" if str(weather.get("Rainfall", "")) == "1" else "Sunny",
        wind=Wind(
            speed_kmh=_to_float(weather.get("WindSpeed")),
            direction_deg=direction,
            direction_compass=deg_to_compass(direction),
        ),
        track_temp_c=_to_float(weather.get("TrackTemp")),
        air_temp_c=_to_float(weather.get("AirTemp")),
        humidity_percent=_to_float(weather.get("Humidity")),
        pressure_hpa=_to_float(weather.get("Pressure")),
    )


def _format_utc(raw: Any) -> str:
    if not raw or not isinstance(raw, str):
        return ""
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return ""
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _message_list(race_control: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    """``Messages`` arrives as a list, or as an index-keyed mapping on incremental updates."""
    messages = race_control.get("Messages")
    if isinstance(messages, list):
        return [m for m in messages if isinstance(m, dict)]
    if isinstance(messages, dict):
        ordered = sorted(messages.items(), key=lambda kv: int(kv[0]) if str(kv[0]).isdigit() else 0)
        return [m for _, m in ordered if isinstance(m, dict)]
    return []


def build_race_control_messages(race_control: Mapping[str, Any] | None) -> list[RaceControlMessage]:
    if not race_control:
        return []
    built = [
        RaceControlMessage(
            id=f"{msg.get('Utc') or ''}-{index}",
            utc=_format_utc(msg.get("Utc")),
            lap=_to_int(msg.get("Lap")),
            category=msg.get("Category") or DEFAULT_CATEGORY,
            message=msg.get("Message") or "",
        )
        for index, msg in enumerate(_message_list(race_control))
    ]
    built.reverse()
    return built


def _current_tyre(entry: RankingEntry) -> CurrentTyre:
    if entry.tyre_detail:
        last = entry.tyre_detail[-1]
        return CurrentTyre(
            compound=map_tyre_compound(last.type),
            age_laps=last.laps or 0,
            is_new=last.wear == "n",
            wear=last.wear or "",
        )
    return CurrentTyre(
        compound=map_tyre_compound(entry.tyre or "M"),
        age_laps=0,
        is_new=True,
        wear="n",
    )


def build_driver(entry: RankingEntry) -> DriverTelemetry:
    position = entry.position or 0
    return DriverTelemetry(
        uuid=entry.driver.uuid or "",
        tla=extract_tla(entry.driver.name),
        position=position,
        team_id=entry.team.uuid or "",
        car_number=entry.car_number,
        gap=format_gap(entry.gap, position),
        interval=format_interval(entry.gap, position),
        last_lap_time=format_lap_time(entry.time),
        last_lap_time_ms=entry.time or 0,
        best_lap_time=format_lap_time(entry.fastest_lap_time),
        best_lap_time_ms=entry.fastest_lap_time or 0,
        average_speed_mph=kph_to_mph(entry.average_speed or 0),
        pit_status="in_pit" if entry.pit else "on_track",
        pit_stop_count=entry.pit_stops or 0,
        retired=entry.retirement is not None,
        current_tyre=_current_tyre(entry),
        tyre_history=[
            TyreHistoryEntry(
                compound=map_tyre_compound(t.type), laps=t.laps or 0, wear=t.wear or ""
            )
            for t in entry.tyre_detail[:-1]
        ],
    )


def build_drivers(ranking: list[RankingEntry]) -> list[DriverTelemetry]:
    return [build_driver(entry) for entry in ranking if entry.position is not None]


# -- Entry point ------------------------------------------------------------


def transform_to_payload(
    cache: StreamCache,
    standings: StandingsSnapshot | None,
    *,
    country: Country | None = None,
) -> LiveTimingsPayload | None:
    """Combine both feeds into a payload, or ``None`` until weather has arrived."""
    weather = cache.get("WeatherData")
    if weather is None:
        return None

    if standings is not None:
        session = SessionInfo(
            name=standings.session.name or "Unknown Session",
            status=map_session_state(standings.session_state),
            lap=standings.lap or 0,
            lap_total=standings.lap_total or 0,
        )
        event_name = standings.event.name or "Unknown Event"
        track_status = determine_track_status(standings.race_detail, standings.lap)
        drivers = build_drivers(standings.ranking)
    else:
        session = SessionInfo(name="Unknown Session", status="inactive", lap=0, lap_total=0)
        event_name = "Unknown Event"
        track_status = TRACK_CLEAR
        drivers = []

    return LiveTimingsPayload(
        session=session,
        event=EventInfo(name=event_name, country=country or Country()),
        weather=build_weather(weather),
        track_status=track_status,
        drivers=drivers,
        race_control_messages=build_race_control_messages(cache.get("RaceControlMessages")),
    )
