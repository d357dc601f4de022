"""Models for the live standings REST snapshot.

Field names follow the upstream camelCase JSON; Python attributes are
snake_case.  Unknown fields are kept so that change detection compares the
whole document, not just the parts the transform reads.

Any scalar may arrive as ``null`` (a driver with no lap set yet, a session
before the start), so scalars are optional and the transform reads them
with a default.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_UPSTREAM = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class Entity(BaseModel):
    model_config = _UPSTREAM

    name: str | None = ""
    uuid: str | None = ""
    type: str | None = None


class Gap(BaseModel):
    model_config = _UPSTREAM

    time_to_lead: float | None = None
    laps_to_lead: int | None = None
    time_to_next: float | None = None
    laps_to_next: int | None = None


class TyreStint(BaseModel):
    """One stint: compound letter, wear flag (``n`` new / ``u`` used), laps run."""

    model_config = _UPSTREAM

    type: str | None = "M"
    wear: str | None = ""
    laps: int | None = 0


class RaceDetail(BaseModel):
    model_config = _UPSTREAM

    safety_car: list[int] = Field(default_factory=list)
    virtual_safety_car: list[int] = Field(default_factory=list)
    red_flag: list[int] = Field(default_factory=list)

    @field_validator("safety_car", "virtual_safety_car", "red_flag", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class RankingEntry(BaseModel):
    model_config = _UPSTREAM

    driver: Entity = Field(default_factory=Entity)
    team: Entity = Field(default_factory=Entity)
    position: int | None = None
    car_number: str | None = None
    pit: bool | None = False
    time: float | None = None
    gap: Gap | None = None
    laps_completed: int | None = None
    fastest_lap_time: float | None = None
    pit_stops: int | None = None
    retirement: str | None = None
    tyre: str | None = None
    tyre_detail: list[TyreStint] = Field(default_factory=list)
    average_speed: float | None = None

    @field_validator("driver", "team", mode="before")
    @classmethod
    def _null_entity(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("tyre_detail", mode="before")
    @classmethod
    def _null_stints(cls, value: Any) -> Any:
        return [] if value is None else value


class StandingsSnapshot(BaseModel):
    model_config = _UPSTREAM

    session: Entity = Field(default_factory=Entity)
    event: Entity = Field(default_factory=Entity)
    session_state: str | None = ""
    lap: int | None = None
    lap_total: int | None = None
    race_detail: RaceDetail | None = None
    ranking: list[RankingEntry] = Field(default_factory=list)

    @field_validator("session", "event", mode="before")
    @classmethod
    def _null_entity(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("ranking", mode="before")
    @classmethod
    def _null_ranking(cls, value: Any) -> Any:
        return [] if value is None else value
