"""Immutable cache of the latest value per live timing stream."""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

SUBSCRIBED_STREAMS: tuple[str, ...] = ("WeatherData", "RaceControlMessages")


class StreamCache:
    """Latest known value for each subscribed stream.

    Instances are never mutated: :meth:`merge` returns a new cache with the
    partial value shallow-merged over the previous one (new keys overwrite,
    omitted keys persist).  Callers swap the reference in one assignment.
    """

    __slots__ = ("_streams",)

    def __init__(self, streams: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        frozen = {name: MappingProxyType(dict(value)) for name, value in (streams or {}).items()}
        self._streams: Mapping[str, Mapping[str, Any]] = MappingProxyType(frozen)

    def get(self, name: str) -> Mapping[str, Any] | None:
        """Return the cached value for *name*, or ``None`` if never received."""
        return self._streams.get(name)

    def merge(self, name: str, partial: Mapping[str, Any]) -> StreamCache:
        """Return a new cache with *partial* shallow-merged into stream *name*."""
        current = self._streams.get(name) or {}
        updated = {key: dict(value) for key, value in self._streams.items()}
        updated[name] = {**current, **partial}
        return StreamCache(updated)

    def as_dict(self) -> dict[str, dict[str, Any] | None]:
        """Plain-dict copy with an entry (possibly ``None``) for every subscribed stream."""
        result: dict[str, dict[str, Any] | None] = {name: None for name in SUBSCRIBED_STREAMS}
        for name, value in self._streams.items():
            result[name] = dict(value)
        return result

    def __contains__(self, name: object) -> bool:
        return name in self._streams

    def __iter__(self) -> Iterator[str]:
        return iter(self._streams)

    def __len__(self) -> int:
        return len(self._streams)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StreamCache):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"StreamCache({sorted(self._streams)})"
