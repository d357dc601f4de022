"""Canonical live timings payload delivered to every viewer."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

Compound = Literal["soft", "medium", "hard", "intermediate", "wet"]
SessionStatus = Literal["active", "finished", "inactive"]
FlagStatus = Literal["green", "sc", "vsc", "red"]


class SessionInfo(BaseModel):
    model_config = _CAMEL

    name: str
    status: SessionStatus
    lap: int
    lap_total: int


class Country(BaseModel):
    model_config = _CAMEL

    name: str = ""
    alpha3: str = ""


class EventInfo(BaseModel):
    model_config = _CAMEL

    name: str
    country: Country = Field(default_factory=Country)


class Wind(BaseModel):
    model_config = _CAMEL

    speed_kmh: float
    direction_deg: float
    direction_compass: str


class Weather(BaseModel):
    model_config = _CAMEL

    conditions: str
    wind: Wind
    track_temp_c: float
    air_temp_c: float
    humidity_percent: float
    pressure_hpa: float


class TrackStatus(BaseModel):
    model_config = _CAMEL

    flag_status: FlagStatus
    message: str


class CurrentTyre(BaseModel):
    model_config = _CAMEL

    compound: Compound
    age_laps: int
    is_new: bool
    wear: str | None = None


class TyreHistoryEntry(BaseModel):
    model_config = _CAMEL

    compound: Compound
    laps: int
    wear: str | None = None


class DriverTelemetry(BaseModel):
    model_config = _CAMEL

    uuid: str
    tla: str
    position: int
    position_change: int = 0
    team_id: str
    car_number: str | None = None
    gap: str
    interval: str
    last_lap_time: str
    last_lap_time_ms: float
    best_lap_time: str
    best_lap_time_ms: float
    average_speed_mph: float
    pit_status: Literal["in_pit", "on_track"]
    pit_stop_count: int
    retired: bool = False
    current_tyre: CurrentTyre
    tyre_history: list[TyreHistoryEntry] = Field(default_factory=list)


class RaceControlMessage(BaseModel):
    model_config = _CAMEL

    id: str
    utc: str
    lap: int
    category: str
    message: str


class LiveTimingsPayload(BaseModel):
    model_config = _CAMEL

    session: SessionInfo
    event: EventInfo
    weather: Weather
    track_status: TrackStatus
    drivers: list[DriverTelemetry] = Field(default_factory=list)
    race_control_messages: list[RaceControlMessage] = Field(default_factory=list)

    def to_wire(self) -> dict[str, object]:
        """Return the camelCase JSON-ready dict sent to viewers."""
        return self.model_dump(mode="json", by_alias=True)
