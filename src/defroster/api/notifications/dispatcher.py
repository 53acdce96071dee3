"""
Notification triggers.

A sighting is pushed to nearby devices by two triggers:

- notify_event: immediately after the sighting is stored
- sweep_recent: periodically, for every live sighting from the last half hour

Both go through the same path (find subscribers in radius, drop devices the
ledger says were already notified, dispatch in token batches, record each
delivery), so whichever trigger runs second finds nothing left to send.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import deal

from defroster.api.core.clock import Clock, SystemClock
from defroster.api.core.constants import (
    DEFAULT_RADIUS_MILES,
    DISPATCH_BATCH_SIZE,
    NOTIFICATION_LOOKBACK_MS,
    SUBSCRIPTION_CELL_PRECISION,
)
from defroster.api.core.contracts import PushTransport
from defroster.api.core.enums import Collection
from defroster.api.core.exceptions import InvalidArgumentError, StoreError, TransportError
from defroster.api.core.types import Event, GeoLocation, Subscription, notification_key
from defroster.api.database.store import RecordStore
from defroster.api.location.distance import haversine_meters, miles_to_meters
from defroster.api.location.geohash_utils import cell_half_diagonal_meters, decode, query_bounds
from defroster.api.notifications.ledger import NotificationLedger
from defroster.api.notifications.payload import encode_payload


logger = logging.getLogger(__name__)


__all__ = ["NotificationDispatcher", "NotificationReport"]


@dataclass
class NotificationReport:
    """Outcome of notifying the devices around one event."""

    event_id: str
    candidates: int = 0  # Devices inside the radius
    skipped: int = 0  # Already notified, in flight, or ledger lookup failed
    sent: int = 0  # Accepted by the transport
    failed: int = 0  # Rejected by the transport
    recorded: int = 0  # Ledger entries written
    errors: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.errors)


class NotificationDispatcher:
    """Pushes events to subscribed devices near them, at most once per device."""

    @deal.pre(
        lambda self, store, transport, ledger=None, clock=None, radius_miles=DEFAULT_RADIUS_MILES, batch_size=DISPATCH_BATCH_SIZE: (
            batch_size > 0
        ),
        message="Batch size must be positive",
    )  # type: ignore[misc,arg-type]
    def __init__(
        self,
        store: RecordStore,
        transport: PushTransport,
        ledger: NotificationLedger | None = None,
        clock: Clock | None = None,
        radius_miles: float = DEFAULT_RADIUS_MILES,
        batch_size: int = DISPATCH_BATCH_SIZE,
    ) -> None:
        """
        Args:
            store: Server-tier store holding events, subscriptions and the ledger
            transport: Push delivery
            ledger: Dedup ledger (default: one over `store`)
            clock: Time source
            radius_miles: Notification radius around each event
            batch_size: Maximum tokens per transport call
        """
        self._store = store
        self._transport = transport
        self._clock = clock or SystemClock()
        self._ledger = ledger or NotificationLedger(store, self._clock)
        self._radius_meters = miles_to_meters(radius_miles)
        self._batch_size = batch_size
        self._in_flight: set[str] = set()

    async def find_subscribers(self, location: GeoLocation) -> list[Subscription]:
        """
        Subscriptions whose device cell lies within the notification radius.

        A device is only known to cell precision, so it matches when the center
        of its cell is within the radius plus the cell's half-diagonal.
        """
        bounds = query_bounds(location, self._radius_meters, max_precision=SUBSCRIPTION_CELL_PRECISION)
        tolerance = cell_half_diagonal_meters(SUBSCRIPTION_CELL_PRECISION)

        found: dict[str, Subscription] = {}
        for start, end in bounds:
            async for subscription in self._store.range_scan(Collection.SUBSCRIPTIONS, "cell_code", start, end):
                if not isinstance(subscription, Subscription) or subscription.device_id in found:
                    continue
                lat, lon, _, _ = decode(subscription.cell_code)
                if haversine_meters(location, GeoLocation(latitude=lat, longitude=lon)) <= self._radius_meters + tolerance:
                    found[subscription.device_id] = subscription
        return list(found.values())

    async def notify_event(self, event: Event) -> NotificationReport:
        """
        Push one event to every nearby device that has not received it.

        Store and transport failures are logged and reported, never raised.
        """
        if event.id is None:
            raise InvalidArgumentError("Cannot notify for an event that has not been stored")
        report = NotificationReport(event_id=event.id)
        if event.expires_at <= self._clock.now():
            return report

        try:
            subscribers = await self.find_subscribers(event.location)
        except StoreError as e:
            logger.error(f"Subscriber lookup for event {event.id} failed: {e}")
            report.errors.append(f"subscriber lookup: {e}")
            return report
        report.candidates = len(subscribers)

        unnotified = await self._ledger.filter_unnotified(event.id, subscribers)
        # Claim devices with no await in between so a concurrent trigger skips them
        pending = [s for s in unnotified if notification_key(event.id, s.device_id) not in self._in_flight]
        claimed = {notification_key(event.id, s.device_id) for s in pending}
        self._in_flight.update(claimed)
        report.skipped = len(subscribers) - len(pending)

        try:
            payload = encode_payload(event)
            for offset in range(0, len(pending), self._batch_size):
                await self._dispatch_batch(event.id, pending[offset : offset + self._batch_size], payload, report)
        finally:
            self._in_flight.difference_update(claimed)

        if report.candidates:
            logger.info(
                f"Event {event.id}: {report.sent} sent, {report.failed} failed, "
                f"{report.skipped} skipped of {report.candidates} nearby device(s)"
            )
        return report

    async def _dispatch_batch(
        self, event_id: str, batch: list[Subscription], payload: dict[str, str], report: NotificationReport
    ) -> None:
        tokens = [subscription.push_token for subscription in batch]
        try:
            result = await self._transport.dispatch(tokens, payload)
        except TransportError as e:
            logger.error(f"Push dispatch for event {event_id} failed for {len(tokens)} token(s): {e}")
            report.failed += len(tokens)
            report.errors.append(f"dispatch: {e}")
            return

        report.sent += result.success_count
        report.failed += result.failure_count
        failed_tokens = set(result.failed_tokens)
        if len(failed_tokens) < result.failure_count:
            # Failures that name no token cannot be told apart from deliveries
            logger.error(
                f"Push dispatch for event {event_id} reported {result.failure_count} failure(s) "
                f"without naming every failed token; recording none of {len(tokens)}"
            )
            report.errors.append("dispatch: unattributed failures")
            return
        for subscription in batch:
            if subscription.push_token in failed_tokens:
                continue
            if await self._ledger.record_notification(event_id, subscription.device_id):
                report.recorded += 1
            else:
                report.errors.append(f"ledger write for {subscription.device_id}")

    async def sweep_recent(self, lookback_ms: int = NOTIFICATION_LOOKBACK_MS) -> list[NotificationReport]:
        """
        Notify for every live event created within the lookback window.

        Returns:
            One report per event examined; empty if the events could not be read
        """
        now = self._clock.now()
        try:
            events = [
                event
                async for event in self._store.range_scan(Collection.EVENTS, "created_at", now - lookback_ms + 1, now)
            ]
        except StoreError as e:
            logger.error(f"Notification sweep could not read recent events: {e}")
            return []

        reports = []
        for event in events:
            if isinstance(event, Event) and event.expires_at > now:
                reports.append(await self.notify_event(event))
        logger.debug(f"Notification sweep examined {len(reports)} recent event(s)")
        return reports
