"""
Sync Manager

Answers "what sightings are near here?" from two tiers: the server store, which
is authoritative but keeps events for a day, and the client cache, which keeps
them for a week and keeps working offline.

Every query:

1. Fetches from the server tier, incrementally when the coarse cell around the
   query center has a watermark from an earlier successful fetch.
2. Copies fresh server results into the client tier and advances the watermark.
3. Scans the client tier with the same cell ranges.
4. Unions both, dedups by event id (server copy wins) and sorts newest first.

A server failure or timeout degrades the cell to OFFLINE and the query is
answered from the cache alone. Client-tier failures are raised.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from defroster.api.core.clock import Clock, SystemClock
from defroster.api.core.constants import (
    CLIENT_RETENTION_MS,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_RADIUS_MILES,
    MAX_RADIUS_MILES,
    WATERMARK_CELL_PRECISION,
)
from defroster.api.core.enums import Collection, SyncState
from defroster.api.core.exceptions import InvalidArgumentError, MalformedRecordError, StoreUnavailableError
from defroster.api.core.types import Event, GeoLocation, SyncWatermark, require_valid_location
from defroster.api.database.store import RecordStore
from defroster.api.location.distance import miles_to_meters, within_radius
from defroster.api.location.geohash_utils import encode_location, query_bounds
from defroster.api.notifications.payload import decode_payload


logger = logging.getLogger(__name__)


__all__ = [
    "EventListener",
    "ListenerHandle",
    "SyncManager",
    "merge_events",
]


EventListener = Callable[[Event], None]


def merge_events(primary: Iterable[Event], secondary: Iterable[Event]) -> list[Event]:
    """
    Union two result sets.

    Records are deduplicated by id with `primary` winning, then sorted by
    created_at descending with id as tie-break.
    """
    merged: dict[str, Event] = {}
    for event in [*primary, *secondary]:
        if event.id is not None and event.id not in merged:
            merged[event.id] = event
    return sorted(merged.values(), key=lambda event: (-event.created_at, event.id or ""))


class ListenerHandle:
    """Registration of one listener; `cancel()` unregisters it."""

    def __init__(self, listeners: list[EventListener], listener: EventListener) -> None:
        self._listeners = listeners
        self._listener = listener

    @property
    def active(self) -> bool:
        return any(registered is self._listener for registered in self._listeners)

    def cancel(self) -> None:
        """Stop delivering events to the listener. Safe to call more than once."""
        for index, registered in enumerate(self._listeners):
            if registered is self._listener:
                del self._listeners[index]
                return


class SyncManager:
    """Per-session coordinator between the server tier and the client cache."""

    def __init__(
        self,
        server: RecordStore,
        client: RecordStore,
        clock: Clock | None = None,
        fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self._server = server
        self._client = client
        self._clock = clock or SystemClock()
        self._fetch_timeout_seconds = fetch_timeout_seconds
        self._states: dict[str, SyncState] = {}
        self._listeners: list[EventListener] = []

    def state_for(self, center: GeoLocation) -> SyncState:
        """Sync state of the coarse cell containing `center` in this session."""
        return self._states.get(encode_location(center, WATERMARK_CELL_PRECISION), SyncState.COLD)

    async def query(self, center: GeoLocation, radius_miles: float = DEFAULT_RADIUS_MILES) -> list[Event]:
        """
        Find live sightings within a radius.

        Args:
            center: Query center
            radius_miles: Radius in miles, greater than 0 and at most 100

        Returns:
            Events within the radius, newest first, each id at most once

        Raises:
            InvalidArgumentError: If the center or radius is invalid
            StoreUnavailableError: If the client tier cannot be read or written
        """
        require_valid_location(center.latitude, center.longitude)
        if isinstance(radius_miles, bool) or not isinstance(radius_miles, int | float):
            raise InvalidArgumentError(f"Radius must be a number, got {radius_miles!r}")
        if not math.isfinite(radius_miles) or not 0 < radius_miles <= MAX_RADIUS_MILES:
            raise InvalidArgumentError(f"Radius must be greater than 0 and at most {MAX_RADIUS_MILES} miles")

        radius_meters = miles_to_meters(radius_miles)
        bounds = query_bounds(center, radius_meters)
        cell_key = encode_location(center, WATERMARK_CELL_PRECISION)
        fetch_started = self._clock.now()

        watermark = await self._client.get(Collection.WATERMARKS, cell_key)
        since = watermark.last_fetched_at if isinstance(watermark, SyncWatermark) else None

        server_events: list[Event] = []
        try:
            server_events = await asyncio.wait_for(
                self._scan_tier(self._server, bounds, center, radius_meters, fetch_started, since),
                timeout=self._fetch_timeout_seconds,
            )
        except (StoreUnavailableError, TimeoutError) as e:
            logger.warning(f"Server fetch for cell {cell_key} failed, serving cached results: {e!r}")
            self._states[cell_key] = SyncState.OFFLINE
        else:
            await self.apply_server_results(server_events)
            await self._client.upsert(
                Collection.WATERMARKS,
                cell_key,
                SyncWatermark(cell_key=cell_key, last_fetched_at=fetch_started),
                keep_max="last_fetched_at",
            )
            self._states[cell_key] = SyncState.WARM
            mode = "full" if since is None else f"incremental since {since}"
            logger.debug(f"Fetched {len(server_events)} events for cell {cell_key} ({mode})")

        cached = await self._scan_tier(self._client, bounds, center, radius_meters, self._clock.now())
        return merge_events(server_events, cached)

    async def _scan_tier(
        self,
        store: RecordStore,
        bounds: list[tuple[str, str]],
        center: GeoLocation,
        radius_meters: float,
        now: int,
        since: int | None = None,
    ) -> list[Event]:
        """Range scan every bound, keep live events inside the radius, dedup by id."""
        found: dict[str, Event] = {}
        for start, end in bounds:
            async for event in store.range_scan(Collection.EVENTS, "cell_code", start, end):
                if not isinstance(event, Event) or event.id is None or event.id in found:
                    continue
                if since is not None and event.created_at <= since:
                    continue
                if event.expires_at <= now:
                    continue
                if within_radius(center, event.location, radius_meters):
                    found[event.id] = event
        return list(found.values())

    async def apply_server_results(self, events: Iterable[Event]) -> int:
        """
        Upsert server events into the client tier.

        Each copy is re-stamped to live for the client retention window. Applying
        the same events again leaves the cache unchanged.

        Returns:
            Number of events written
        """
        written = 0
        for event in events:
            if event.id is None:
                logger.warning("Ignoring server event without an id")
                continue
            retained_until = max(event.expires_at, event.created_at + CLIENT_RETENTION_MS)
            await self._client.upsert(Collection.EVENTS, event.id, event.with_retention(retained_until))
            written += 1
        return written

    def subscribe(self, listener: EventListener) -> ListenerHandle:
        """Deliver every ingested push event to `listener` until the handle is cancelled."""
        self._listeners.append(listener)
        return ListenerHandle(self._listeners, listener)

    async def ingest_push(self, payload: Mapping[str, Any]) -> Event | None:
        """
        Cache a pushed event and notify listeners.

        Malformed or already expired payloads are logged and dropped.

        Returns:
            The cached event, or None if the payload was dropped
        """
        try:
            event = decode_payload(payload)
        except MalformedRecordError as e:
            logger.warning(f"Dropping malformed push payload: {e}")
            return None
        if event.expires_at <= self._clock.now():
            logger.debug(f"Dropping expired pushed event {event.id}")
            return None

        await self.apply_server_results([event])
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.error(f"Event listener {listener!r} failed for {event.id}", exc_info=True)
        return event
