"""Starlette application exposing the viewer stream.

Routes:

- ``GET /api/realtime`` — SSE stream of hub events, one subscription per viewer
- ``GET /api/health``   — upstream connectivity, subscriber count and running counters

The hub is built once in the lifespan (or injected) and shared through
``app.state.hub``.
"""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route

from gridscout.feed.factory import build_hub
from gridscout.models.config import AppSettings
from gridscout.server.stream import ViewerStream, ViewerStreamResponse

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request

    from gridscout.feed.hub import FanoutHub

logger = logging.getLogger(__name__)


async def realtime(request: Request) -> ViewerStreamResponse:
    hub: FanoutHub = request.app.state.hub
    settings: AppSettings = request.app.state.settings
    stream = ViewerStream(
        hub,
        heartbeat_interval=settings.heartbeat_interval,
        max_pending=settings.viewer_buffer_size,
    )
    stream.open()
    client = request.client.host if request.client else "unknown"
    logger.info("Viewer connected: %s (subscribers: %d)", client, hub.subscriber_count)
    return ViewerStreamResponse(stream)


async def health(request: Request) -> JSONResponse:
    hub: FanoutHub = request.app.state.hub
    return JSONResponse(
        {
            "ok": True,
            "connected": hub.get_connection_status(),
            "subscribers": hub.subscriber_count,
            "pollState": hub.poll_state.value,
            "counters": hub.counters(),
        }
    )


def create_app(settings: AppSettings | None = None, *, hub: FanoutHub | None = None) -> Starlette:
    """Build the ASGI app.

    When *hub* is omitted it is constructed from *settings* at startup and
    closed at shutdown.  An injected hub is left for the caller to close.
    """
    settings = settings or AppSettings()

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if hub is not None:
            yield
            return
        app.state.hub = build_hub(settings)
        try:
            yield
        finally:
            await app.state.hub.close()
            logger.info("Hub closed")

    app = Starlette(
        routes=[
            Route("/api/realtime", realtime, methods=["GET"]),
            Route("/api/health", health, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
    app.state.settings = settings
    if hub is not None:
        app.state.hub = hub
    return app
