"""Build the process-wide feed objects from :class:`AppSettings`."""

from __future__ import annotations

from typing import TYPE_CHECKING

from gridscout.api.errors import ConfigError
from gridscout.feed.hub import FanoutHub
from gridscout.feed.realtime import RealtimeClient
from gridscout.feed.standings import StandingsClient
from gridscout.models.payload import Country

if TYPE_CHECKING:
    from gridscout.models.config import AppSettings


def build_standings_client(settings: AppSettings) -> StandingsClient:
    """Return a standings client, or raise :class:`ConfigError` if credentials are missing."""
    if not settings.standings_api_key:
        raise ConfigError(
            "No standings API key configured. Set GRIDSCOUT_STANDINGS_API_KEY."
        )
    if not settings.session_uuid:
        raise ConfigError("No session configured. Set GRIDSCOUT_SESSION_UUID.")
    return StandingsClient(
        settings.standings_url,
        settings.standings_api_key,
        settings.session_uuid,
        min_refresh_interval=settings.min_refresh_interval,
    )


def build_realtime_client(settings: AppSettings) -> RealtimeClient:
    return RealtimeClient(
        settings.livetiming_url,
        settings.livetiming_ws_url,
        hub=settings.signalr_hub,
        client_protocol=settings.client_protocol,
        subscribe_grace=settings.subscribe_grace,
        backoff_base=settings.reconnect_base_delay,
        backoff_max=settings.reconnect_max_delay,
        max_attempts=settings.max_reconnect_attempts,
    )


def build_hub(settings: AppSettings) -> FanoutHub:
    """Construct the hub and both upstream clients.  Call once per process."""
    country = None
    if settings.event_country_name or settings.event_country_alpha3:
        country = Country(name=settings.event_country_name, alpha3=settings.event_country_alpha3)
    return FanoutHub(
        build_realtime_client(settings),
        build_standings_client(settings),
        poll_interval=settings.poll_interval,
        country=country,
    )
