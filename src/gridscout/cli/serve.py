"""``gridscout serve`` — run the viewer stream server."""

from __future__ import annotations

import logging
from typing import Any

import click

from gridscout._internal.async_utils import run_async

logger = logging.getLogger(__name__)


async def _safe_uvicorn_serve(server: Any, port: int) -> None:
    """Run uvicorn.Server.serve() with SystemExit protection.

    Uvicorn calls ``sys.exit(1)`` when it cannot bind the port; convert that
    to an ``OSError`` so the CLI reports it like any other failure.
    """
    try:
        await server.serve()
    except SystemExit as exc:
        if exc.code == 0:
            logger.debug("Uvicorn exited cleanly (code 0) on port %d", port)
            return
        raise OSError(f"Server failed to start on port {port}") from exc


@click.command("serve")
@click.option("--host", default=None, envvar="GRIDSCOUT_HOST", help="Bind address")
@click.option("--port", type=int, default=None, envvar="GRIDSCOUT_PORT", help="HTTP port")
@click.pass_obj
def serve_cmd(app_ctx: Any, host: str | None, port: int | None) -> None:
    """Serve the live timing SSE stream at /api/realtime."""
    import uvicorn

    from gridscout.feed.factory import build_standings_client
    from gridscout.models.config import AppSettings
    from gridscout.server.app import create_app

    settings = AppSettings()
    # Fail before binding if the standings feed is not configured.
    build_standings_client(settings)

    bind_host = host or settings.host
    bind_port = port or settings.port
    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=bind_host,
        port=bind_port,
        log_level="debug" if app_ctx.verbose else "info",
        log_config=None,
    )
    logger.info("Serving viewer stream on http://%s:%d/api/realtime", bind_host, bind_port)
    run_async(_safe_uvicorn_serve(uvicorn.Server(config), bind_port))
