"""Exception hierarchy for gridscout.

Only connectivity failures (:class:`NegotiationError`,
:class:`FeedConnectionError`) ever reach viewers, as ``error`` events.
Everything else is logged and absorbed by the component that raised it.
"""

from __future__ import annotations


class GridScoutError(Exception):
    """Base class for all gridscout errors."""


class ConfigError(GridScoutError):
    """Required configuration is missing or invalid."""


class NegotiationError(GridScoutError):
    """The live timing negotiate call failed or returned an unusable body."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FeedConnectionError(GridScoutError):
    """The live timing WebSocket could not be opened."""


class FrameParseError(GridScoutError):
    """A single inbound live timing frame could not be decoded."""


class PollFetchError(GridScoutError):
    """A standings fetch failed (transport, HTTP status, or body shape)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
