from __future__ import annotations

from typing import TYPE_CHECKING

from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from rich.console import Console

    from gridscout.models.payload import DriverTelemetry, TrackStatus

_COMPOUND_STYLE = {
    "soft": "red",
    "medium": "yellow",
    "hard": "white",
    "intermediate": "green",
    "wet": "blue",
}

_FLAG_STYLE = {"green": "green", "sc": "yellow", "vsc": "yellow", "red": "bold red"}


class RichOutput:
    """Rich-based terminal output helpers for *gridscout*."""

    def __init__(self, console: Console) -> None:
        self._con = console

    def info(self, message: str) -> None:
        self._con.print(message)

    def error(self, message: str) -> None:
        self._con.print(f"[bold red]Error:[/bold red] {message}")

    def session_header(self, title: str, lap: int, lap_total: int, track: TrackStatus) -> None:
        """Print a panel with the session name, lap counter and flag."""
        style = _FLAG_STYLE.get(track.flag_status, "white")
        self._con.print(
            Panel(
                f"[bold]{title}[/bold]  Lap {lap}/{lap_total}\n[{style}]{track.message}[/{style}]",
                expand=False,
            )
        )

    def standings(self, drivers: list[DriverTelemetry]) -> None:
        """Print the classification as a table, ordered by position."""
        table = Table(title="Standings")
        table.add_column("Pos", justify="right")
        table.add_column("Driver", style="cyan")
        table.add_column("Gap", justify="right")
        table.add_column("Int", justify="right")
        table.add_column("Last", justify="right")
        table.add_column("Best", justify="right")
        table.add_column("Tyre")
        table.add_column("Pits", justify="right")

        for d in sorted(drivers, key=lambda d: d.position):
            tyre = d.current_tyre
            style = _COMPOUND_STYLE.get(tyre.compound, "white")
            name = f"[dim]{d.tla}[/dim]" if d.retired else d.tla
            table.add_row(
                str(d.position),
                name,
                d.gap,
                d.interval,
                d.last_lap_time,
                d.best_lap_time,
                f"[{style}]{tyre.compound.upper()}[/{style}] ({tyre.age_laps})",
                str(d.pit_stop_count),
            )

        self._con.print(table)
