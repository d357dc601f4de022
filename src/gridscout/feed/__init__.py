"""Upstream feeds: live timing socket, standings poller, transform, and fan-out hub."""

from __future__ import annotations

from gridscout.feed.cache import SUBSCRIBED_STREAMS, StreamCache
from gridscout.feed.hub import FanoutHub, PollState
from gridscout.feed.realtime import ConnectionState, RealtimeClient
from gridscout.feed.standings import StandingsClient
from gridscout.feed.transform import transform_to_payload

__all__ = [
    "SUBSCRIBED_STREAMS",
    "ConnectionState",
    "FanoutHub",
    "PollState",
    "RealtimeClient",
    "StandingsClient",
    "StreamCache",
    "transform_to_payload",
]
