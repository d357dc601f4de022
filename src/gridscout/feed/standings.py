"""Polling client for the live standings REST endpoint.

Keeps the most recent snapshot, never runs two fetches at once, rate-limits
itself, and stops touching the network for good once the session reports a
terminal state.  Fetch failures are logged and the previous snapshot is
served instead.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from gridscout.api.errors import PollFetchError
from gridscout.feed.transform import map_session_state
from gridscout.models.standings import StandingsSnapshot

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class StandingsClient:
    """Cached, self-limiting fetcher for one session's live standings.

    Parameters:
        base_url: Standings API root (``.../core/2.0.0``).
        api_key: Sent as the ``X-Api-Key`` header.
        session_uuid: Session whose standings are fetched.
        min_refresh_interval: Seconds a snapshot stays fresh.
        http: Optional shared :class:`httpx.AsyncClient`; one is created
            (and owned) otherwise.
        clock: Monotonic time source, overridable in tests.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        session_uuid: str,
        *,
        min_refresh_interval: float = 1.0,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._session_uuid = session_uuid
        self._min_refresh_interval = min_refresh_interval
        self._http = http
        self._owns_http = http is None
        self._clock = clock
        self._snapshot: StandingsSnapshot | None = None
        self._last_fetch: float | None = None
        self._fetching = False
        self._completed = False
        self._fetch_count = 0

    @property
    def url(self) -> str:
        return f"{self._base_url}/liveStandings/{self._session_uuid}"

    @property
    def snapshot(self) -> StandingsSnapshot | None:
        """Most recent successful snapshot (``None`` before the first)."""
        return self._snapshot

    @property
    def is_completed(self) -> bool:
        """``True`` once a terminal session state has been seen. Never reverts."""
        return self._completed

    @property
    def fetch_count(self) -> int:
        """Number of network fetches attempted."""
        return self._fetch_count

    async def get_latest(self) -> StandingsSnapshot | None:
        """Return the freshest snapshot available without hammering the API."""
        if self._completed:
            return self._snapshot
        if self._fetching:
            return self._snapshot
        now = self._clock()
        if (
            self._snapshot is not None
            and self._last_fetch is not None
            and now - self._last_fetch < self._min_refresh_interval
        ):
            return self._snapshot

        self._fetching = True
        try:
            snapshot = await self.fetch()
        except PollFetchError as exc:
            logger.warning("Standings fetch failed, serving cached snapshot: %s", exc)
            return self._snapshot
        finally:
            self._fetching = False

        self._snapshot = snapshot
        self._last_fetch = now
        if map_session_state(snapshot.session_state) == "finished":
            if not self._completed:
                logger.info(
                    "Session %s reported %r; standings polling complete",
                    self._session_uuid,
                    snapshot.session_state,
                )
            self._completed = True
        return snapshot

    async def fetch(self) -> StandingsSnapshot:
        """Fetch one snapshot, bypassing every cache rule.

        Raises :class:`PollFetchError` on transport failure, non-2xx status,
        or a body that does not look like a standings document.
        """
        self._fetch_count += 1
        headers = {"X-Api-Key": self._api_key, "Accept": "application/json"}
        try:
            resp = await self._client().get(self.url, headers=headers)
        except httpx.HTTPError as exc:
            raise PollFetchError(f"Standings request failed: {exc}") from exc

        if resp.status_code == 404:
            raise PollFetchError(
                f"Session not found: {self._session_uuid}", status_code=resp.status_code
            )
        if not resp.is_success:
            raise PollFetchError(
                f"Standings API error: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )

        try:
            return StandingsSnapshot.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise PollFetchError(f"Invalid standings body: {exc}") from exc

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None
