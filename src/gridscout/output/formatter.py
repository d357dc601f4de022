"""Pick JSON or Rich output for CLI commands."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Any

from rich.console import Console

from gridscout.output.json_output import format_json_error, format_json_response
from gridscout.output.rich_output import RichOutput

if TYPE_CHECKING:
    from io import TextIOBase

    from gridscout.models.payload import DriverTelemetry, TrackStatus
    from gridscout.models.standings import StandingsSnapshot


class OutputFormatter:
    """Routes command results to a JSON envelope or a Rich rendering.

    An explicit *force_format* wins; otherwise a TTY on *stream* (default
    ``sys.stdout``) means ``"rich"`` and anything else means ``"json"``, so
    piping a command into ``jq`` needs no flag.
    """

    def __init__(
        self,
        *,
        stream: TextIOBase | Any | None = None,
        force_format: str | None = None,
    ) -> None:
        self._stream = stream or sys.stdout
        if force_format is not None:
            self._format = force_format
        elif hasattr(self._stream, "isatty") and self._stream.isatty():
            self._format = "rich"
        else:
            self._format = "json"
        self._rich = RichOutput(Console())

    @property
    def format(self) -> str:  # noqa: A003
        return self._format

    @property
    def rich(self) -> RichOutput:
        return self._rich

    def _print(self, text: str) -> None:
        print(text, file=self._stream)  # noqa: T201

    def output(self, data: Any, *, command: str) -> None:
        if self._format == "json":
            self._print(format_json_response(data=data, command=command))
        else:
            self._rich.info(str(data))

    def output_standings(
        self,
        snapshot: StandingsSnapshot,
        drivers: list[DriverTelemetry],
        track: TrackStatus,
    ) -> None:
        """Print one standings snapshot as a header plus driver rows."""
        if self._format == "json":
            self.output(
                {
                    "event": snapshot.event.name,
                    "session": snapshot.session.name,
                    "sessionState": snapshot.session_state,
                    "lap": snapshot.lap,
                    "lapTotal": snapshot.lap_total,
                    "trackStatus": track,
                    "drivers": drivers,
                },
                command="standings",
            )
            return
        title = " — ".join(p for p in (snapshot.event.name, snapshot.session.name) if p)
        self._rich.session_header(
            title or "Live standings", snapshot.lap or 0, snapshot.lap_total or 0, track
        )
        self._rich.standings(drivers)

    def output_error(self, *, code: str, message: str, command: str) -> None:
        if self._format == "json":
            self._print(format_json_error(code=code, message=message, command=command))
        else:
            self._rich.error(message)
