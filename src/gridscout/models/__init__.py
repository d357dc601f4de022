from __future__ import annotations

from gridscout.models.config import AppSettings
from gridscout.models.events import (
    ConnectedEvent,
    DisconnectedEvent,
    ErrorEvent,
    HubEvent,
    PayloadEvent,
)
from gridscout.models.payload import (
    Country,
    DriverTelemetry,
    LiveTimingsPayload,
    RaceControlMessage,
    TrackStatus,
    Weather,
)
from gridscout.models.standings import (
    Entity,
    Gap,
    RaceDetail,
    RankingEntry,
    StandingsSnapshot,
    TyreStint,
)

__all__ = [
    # config
    "AppSettings",
    # events
    "ConnectedEvent",
    "DisconnectedEvent",
    "ErrorEvent",
    "HubEvent",
    "PayloadEvent",
    # payload
    "Country",
    "DriverTelemetry",
    "LiveTimingsPayload",
    "RaceControlMessage",
    "TrackStatus",
    "Weather",
    # standings
    "Entity",
    "Gap",
    "RaceDetail",
    "RankingEntry",
    "StandingsSnapshot",
    "TyreStint",
]
