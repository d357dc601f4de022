"""``gridscout standings`` — one-shot standings fetch."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from gridscout._internal.async_utils import run_async

if TYPE_CHECKING:
    from gridscout.cli.main import AppContext
    from gridscout.models.config import AppSettings
    from gridscout.models.standings import StandingsSnapshot


async def _fetch_snapshot(settings: AppSettings) -> StandingsSnapshot:
    from gridscout.feed.factory import build_standings_client

    client = build_standings_client(settings)
    try:
        return await client.fetch()
    finally:
        await client.aclose()


@click.command("standings")
@click.pass_obj
def standings_cmd(app_ctx: AppContext) -> None:
    """Fetch the current standings once and print them."""
    from gridscout.feed.transform import build_drivers, determine_track_status
    from gridscout.models.config import AppSettings

    snapshot = run_async(_fetch_snapshot(AppSettings()))
    app_ctx.formatter.output_standings(
        snapshot,
        build_drivers(snapshot.ranking),
        determine_track_status(snapshot.race_detail, snapshot.lap),
    )
