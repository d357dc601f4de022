"""Hub events: a closed set of variants delivered to every subscriber.

Consumers dispatch with ``match`` and finish with :func:`typing.assert_never`
so a new variant is caught by the type checker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gridscout._internal.async_utils import now_ms

if TYPE_CHECKING:
    from gridscout.models.payload import LiveTimingsPayload


@dataclass(frozen=True, slots=True)
class PayloadEvent:
    payload: LiveTimingsPayload
    timestamp: int = field(default_factory=now_ms)


@dataclass(frozen=True, slots=True)
class ConnectedEvent:
    timestamp: int = field(default_factory=now_ms)


@dataclass(frozen=True, slots=True)
class DisconnectedEvent:
    timestamp: int = field(default_factory=now_ms)


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    timestamp: int = field(default_factory=now_ms)


HubEvent = PayloadEvent | ConnectedEvent | DisconnectedEvent | ErrorEvent


def connectivity_event(connected: bool) -> ConnectedEvent | DisconnectedEvent:
    """Return the event describing the current connection state."""
    return ConnectedEvent() if connected else DisconnectedEvent()
