from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Application-wide settings populated from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GRIDSCOUT_",
        extra="ignore",
    )

    # Live timing (SignalR) feed
    livetiming_url: str = "https://livetiming.formula1.com"
    livetiming_ws_url: str = "wss://livetiming.formula1.com"
    signalr_hub: str = "Streaming"
    client_protocol: str = "1.5"
    subscribe_grace: float = 0.25
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    max_reconnect_attempts: int = 10

    # Standings (REST) feed
    standings_url: str = "https://api.motorsportstats.com/core/2.0.0"
    standings_api_key: str | None = None
    session_uuid: str | None = None
    poll_interval: float = 1.0
    min_refresh_interval: float = 1.0

    # Event metadata the upstream feeds do not carry
    event_country_name: str = ""
    event_country_alpha3: str = ""

    # Viewer stream server
    host: str = "127.0.0.1"
    port: int = 8080
    heartbeat_interval: float = 30.0
    viewer_buffer_size: int = 64
