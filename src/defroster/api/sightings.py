"""
Sighting Service

Entry points for reporters and devices:

- report_sighting: validate, stamp, store, then push to nearby devices
- register_device: create or overwrite a device subscription
- update_device_location: move an existing subscription to a new cell

Server time is the only source of `created_at`; a client timestamp is only used
to reject reports from a badly skewed clock.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from defroster.api.core.clock import Clock, SystemClock
from defroster.api.core.constants import (
    CLOCK_SKEW_TOLERANCE_MS,
    EVENT_CELL_PRECISION,
    EVENT_TTL_MS,
    SUBSCRIPTION_CELL_PRECISION,
)
from defroster.api.core.enums import Collection, SightingCategory
from defroster.api.core.exceptions import DefrosterError, InvalidArgumentError, NotFoundError
from defroster.api.core.types import Event, GeoLocation, Subscription, require_valid_location
from defroster.api.database.store import RecordStore
from defroster.api.location.geohash_utils import encode_location
from defroster.api.notifications.dispatcher import NotificationDispatcher, NotificationReport


logger = logging.getLogger(__name__)


__all__ = [
    "DEVICE_ID_PATTERN",
    "PUSH_TOKEN_PATTERN",
    "ReportResult",
    "SightingService",
    "parse_category",
]


DEVICE_ID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)
"""Client-generated UUID v4."""

PUSH_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{100,300}$")
"""Accepted push token shape."""


@dataclass
class ReportResult:
    """Stored event plus the outcome of the immediate notification trigger."""

    event: Event
    notification: NotificationReport | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def notified_devices(self) -> int:
        return self.notification.recorded if self.notification else 0


def parse_category(value: SightingCategory | str) -> SightingCategory:
    """Accept a category enum or its exact string value."""
    try:
        return SightingCategory(value)
    except ValueError as e:
        valid = ", ".join(category.value for category in SightingCategory)
        raise InvalidArgumentError(f"Unknown sighting category {value!r} (expected one of: {valid})") from e


def _require_location(location: GeoLocation) -> None:
    if not isinstance(location, GeoLocation):
        raise InvalidArgumentError("location must be a GeoLocation")
    require_valid_location(location.latitude, location.longitude)


class SightingService:
    """Writes to the server tier on behalf of reporters and devices."""

    def __init__(
        self,
        store: RecordStore,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ) -> None:
        """
        Args:
            store: Server-tier store
            dispatcher: Immediate notification trigger (None disables pushes)
            clock: Time source
        """
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()

    async def report_sighting(
        self,
        category: SightingCategory | str,
        location: GeoLocation,
        client_timestamp: int | None = None,
    ) -> ReportResult:
        """
        Store a sighting and notify nearby devices.

        Args:
            category: ICE, Army or Police
            location: Where the sighting happened
            client_timestamp: Reporter's clock in epoch ms, checked against server time

        Returns:
            The stored event and the notification outcome. Notification failures
            are reported in the result and never fail the report.

        Raises:
            InvalidArgumentError: If an argument is invalid or the client clock is skewed
            StoreUnavailableError: If the event cannot be stored
        """
        parsed = parse_category(category)
        _require_location(location)
        now = self._clock.now()
        if client_timestamp is not None:
            if isinstance(client_timestamp, bool) or not isinstance(client_timestamp, int):
                raise InvalidArgumentError("client_timestamp must be integer epoch milliseconds")
            if abs(client_timestamp - now) > CLOCK_SKEW_TOLERANCE_MS:
                raise InvalidArgumentError("client_timestamp is too far from server time")

        event = Event(
            category=parsed,
            location=location,
            created_at=now,
            cell_code=encode_location(location, EVENT_CELL_PRECISION),
            expires_at=now + EVENT_TTL_MS,
        )
        event_id = await self._store.insert(Collection.EVENTS, event)
        event = event.with_id(event_id)
        logger.info(f"Stored {parsed} sighting {event_id} in cell {event.cell_code}")

        result = ReportResult(event=event)
        if self._dispatcher is not None:
            try:
                result.notification = await self._dispatcher.notify_event(event)
            except DefrosterError as e:
                logger.error(f"Immediate notification for {event_id} failed: {e}", exc_info=True)
                result.errors.append(str(e))
        return result

    async def register_device(self, device_id: str, push_token: str, location: GeoLocation) -> Subscription:
        """
        Create or overwrite the subscription for a device.

        Raises:
            InvalidArgumentError: If the device id, token or location is invalid
            StoreUnavailableError: If the subscription cannot be stored
        """
        if not isinstance(device_id, str) or not DEVICE_ID_PATTERN.match(device_id):
            raise InvalidArgumentError("device_id must be a UUID v4")
        if not isinstance(push_token, str) or not PUSH_TOKEN_PATTERN.match(push_token):
            raise InvalidArgumentError("push_token has an invalid format")
        _require_location(location)

        subscription = Subscription(
            device_id=device_id,
            push_token=push_token,
            cell_code=encode_location(location, SUBSCRIPTION_CELL_PRECISION),
            updated_at=self._clock.now(),
        )
        await self._store.upsert(Collection.SUBSCRIPTIONS, device_id, subscription)
        logger.debug(f"Registered device {device_id} in cell {subscription.cell_code}")
        return subscription

    async def update_device_location(self, device_id: str, location: GeoLocation) -> Subscription:
        """
        Move a registered device to a new location.

        Raises:
            NotFoundError: If the device is not registered
        """
        _require_location(location)
        existing = await self._store.get(Collection.SUBSCRIPTIONS, device_id)
        if not isinstance(existing, Subscription):
            raise NotFoundError(f"Device {device_id} is not registered")

        subscription = Subscription(
            device_id=device_id,
            push_token=existing.push_token,
            cell_code=encode_location(location, SUBSCRIPTION_CELL_PRECISION),
            updated_at=self._clock.now(),
        )
        await self._store.upsert(Collection.SUBSCRIPTIONS, device_id, subscription)
        return subscription
