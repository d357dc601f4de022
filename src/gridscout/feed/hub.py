"""Fan-out hub between the two upstream feeds and every viewer.

One hub per process.  It owns the :class:`RealtimeClient` and the
:class:`StandingsClient`, recomputes the payload whenever either feed
changes, and delivers each event synchronously to every subscriber.  A
subscriber that raises is logged and skipped; the rest still receive the
event.

Lifecycle is driven by the subscriber count:

- 0 → 1: connect the live timing socket and start polling standings
- 1 → 0: stop polling; the socket stays open but is not reconnected if it drops
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from gridscout._internal.async_utils import cancel_task
from gridscout.feed.realtime import ConnectionState
from gridscout.feed.transform import transform_to_payload
from gridscout.models.events import PayloadEvent, connectivity_event

if TYPE_CHECKING:
    from collections.abc import Callable

    from gridscout.feed.cache import StreamCache
    from gridscout.feed.realtime import RealtimeClient
    from gridscout.feed.standings import StandingsClient
    from gridscout.models.events import HubEvent
    from gridscout.models.payload import Country, LiveTimingsPayload
    from gridscout.models.standings import StandingsSnapshot

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 1.0


class PollState(StrEnum):
    STOPPED = "stopped"
    POLLING = "polling"
    COMPLETED = "completed"


class FanoutHub:
    """Multiplexes upstream updates to N subscribers.

    Parameters:
        realtime: Live timing socket client (owned by the hub once passed in).
        standings: Standings polling client.
        poll_interval: Seconds between standings polls while subscribed.
        country: Event country to stamp on payloads.
    """

    def __init__(
        self,
        realtime: RealtimeClient,
        standings: StandingsClient,
        *,
        poll_interval: float = _POLL_INTERVAL,
        country: Country | None = None,
    ) -> None:
        self._realtime = realtime
        self._standings = standings
        self._poll_interval = poll_interval
        self._country = country
        self._subscribers: set[Callable[[HubEvent], None]] = set()
        self._snapshot: StandingsSnapshot | None = None
        self._snapshot_json: str | None = None
        self._payload: LiveTimingsPayload | None = None
        self._poll_state = PollState.STOPPED
        self._poll_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._emit_count = 0
        self._subscriptions_total = 0

        realtime.attach(
            on_update=self._on_stream_update,
            on_event=self._emit,
            should_reconnect=self.has_subscribers,
        )

    # -- Introspection ------------------------------------------------------

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def has_subscribers(self) -> bool:
        return len(self._subscribers) > 0

    @property
    def poll_state(self) -> PollState:
        return self._poll_state

    @property
    def last_payload(self) -> LiveTimingsPayload | None:
        """Most recently computed payload (``None`` until weather arrives)."""
        return self._payload

    def counters(self) -> dict[str, int]:
        """Running totals since startup, reported by the health route."""
        return {
            "subscriptionsTotal": self._subscriptions_total,
            "eventsEmitted": self._emit_count,
            "framesReceived": self._realtime.frame_count,
            "standingsFetches": self._standings.fetch_count,
        }

    @property
    def is_connected(self) -> bool:
        return self._realtime.is_connected

    def get_connection_status(self) -> bool:
        return self.is_connected

    def get_cached_data(self) -> dict[str, dict[str, object] | None]:
        """Copy of the live timing stream cache."""
        return self._realtime.cache.as_dict()

    # -- Subscription -------------------------------------------------------

    def subscribe(self, callback: Callable[[HubEvent], None]) -> Callable[[], None]:
        """Register *callback* and return its unsubscribe function.

        Before returning, *callback* receives the current connectivity
        state and, if one exists, the latest payload.  Must be called from
        the event loop thread.
        """
        self._subscribers.add(callback)
        self._subscriptions_total += 1
        if len(self._subscribers) == 1:
            self._start_upstream()

        self._deliver(callback, connectivity_event(self._realtime.is_connected))
        if self._payload is not None:
            self._deliver(callback, PayloadEvent(payload=self._payload))

        subscribed = True

        def unsubscribe() -> None:
            nonlocal subscribed
            if not subscribed:
                return
            subscribed = False
            self._subscribers.discard(callback)
            if not self._subscribers:
                self._stop_polling()

        return unsubscribe

    def _start_upstream(self) -> None:
        loop = asyncio.get_running_loop()
        state = self._realtime.state
        if state is ConnectionState.GIVEN_UP:
            logger.info("Subscriber arrived after reconnects gave up; forcing a fresh connect")
            self._connect_task = loop.create_task(self._realtime.reconnect())
        elif state not in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            self._connect_task = loop.create_task(self._realtime.connect())
        self._start_polling()

    # -- Polling ------------------------------------------------------------

    def _start_polling(self) -> None:
        if self._poll_state is not PollState.STOPPED:
            return
        if self._standings.is_completed:
            self._poll_state = PollState.COMPLETED
            return
        self._poll_state = PollState.POLLING
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
        logger.debug("Standings polling started")

    def _stop_polling(self) -> None:
        if self._poll_state is not PollState.POLLING:
            return
        self._poll_state = PollState.STOPPED
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        logger.debug("Standings polling stopped")

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.warning("Standings poll failed; retrying next interval", exc_info=True)
            if self._standings.is_completed:
                self._poll_state = PollState.COMPLETED
                self._poll_task = None
                logger.info("Standings session complete; polling stopped")
                return
            await asyncio.sleep(self._poll_interval)

    async def poll_once(self) -> bool:
        """Fetch standings once; emit a payload only if the snapshot changed.

        Returns ``True`` when the snapshot differed from the previous one.
        """
        snapshot = await self._standings.get_latest()
        if snapshot is None:
            return False

        serialized = snapshot.model_dump_json(by_alias=True)
        if serialized == self._snapshot_json:
            return False

        self._snapshot = snapshot
        self._snapshot_json = serialized
        self._recompute_and_emit()
        return True

    # -- Realtime updates ---------------------------------------------------

    def _on_stream_update(self, cache: StreamCache) -> None:
        self._recompute_and_emit(cache)

    def _recompute_and_emit(self, cache: StreamCache | None = None) -> None:
        payload = transform_to_payload(
            cache if cache is not None else self._realtime.cache,
            self._snapshot,
            country=self._country,
        )
        if payload is None:
            return
        self._payload = payload
        self._emit(PayloadEvent(payload=payload))

    # -- Delivery -----------------------------------------------------------

    def _emit(self, event: HubEvent) -> None:
        self._emit_count += 1
        for callback in list(self._subscribers):
            self._deliver(callback, event)

    @staticmethod
    def _deliver(callback: Callable[[HubEvent], None], event: HubEvent) -> None:
        try:
            callback(event)
        except Exception:
            logger.warning(
                "Subscriber %s failed for %s", callback, type(event).__name__, exc_info=True
            )

    # -- Shutdown -----------------------------------------------------------

    async def close(self) -> None:
        """Stop polling, close the socket, and release HTTP clients."""
        self._subscribers.clear()
        self._stop_polling()
        await cancel_task(self._connect_task)
        self._connect_task = None
        await self._realtime.aclose()
        await self._standings.aclose()
