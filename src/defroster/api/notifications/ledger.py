"""
Notification Ledger

Short-lived record of which device was pushed which event. Both notification
triggers consult it so a device hears about a sighting at most once while the
entry lives (two hours by default).

Lookups fail closed: if the ledger cannot say whether a device was notified, the
device is skipped and picked up by the next sweep.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from defroster.api.core.clock import Clock, SystemClock
from defroster.api.core.constants import NOTIFICATION_TTL_MS
from defroster.api.core.enums import Collection
from defroster.api.core.exceptions import StoreError
from defroster.api.core.types import NotificationRecord, Subscription, notification_key
from defroster.api.database.store import RecordStore


logger = logging.getLogger(__name__)


__all__ = ["NotificationLedger"]


class NotificationLedger:
    """Dedup ledger over the notifications collection of the server tier."""

    def __init__(self, store: RecordStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()

    async def already_notified(self, event_id: str, device_id: str) -> bool:
        """
        Check whether the device was pushed this event and the entry is still live.

        Raises:
            StoreUnavailableError: If the ledger cannot be read
        """
        record = await self._store.get(Collection.NOTIFICATIONS, notification_key(event_id, device_id))
        return isinstance(record, NotificationRecord) and record.expires_at > self._clock.now()

    async def record_notification(self, event_id: str, device_id: str, ttl_ms: int = NOTIFICATION_TTL_MS) -> bool:
        """
        Write or refresh the ledger entry for a delivered push.

        Refreshing an existing entry only moves its expiry; `sent_at` keeps the
        time of the first delivery.

        Returns:
            True if the entry was stored, False if the store failed (logged)
        """
        now = self._clock.now()
        key = notification_key(event_id, device_id)
        try:
            existing = await self._store.get(Collection.NOTIFICATIONS, key)
        except StoreError as e:
            logger.warning(f"Could not read notification {key} before refresh: {e}")
            existing = None
        sent_at = existing.sent_at if isinstance(existing, NotificationRecord) else now
        record = NotificationRecord(event_id=event_id, device_id=device_id, sent_at=sent_at, expires_at=now + ttl_ms)
        try:
            await self._store.upsert(Collection.NOTIFICATIONS, key, record)
        except StoreError as e:
            logger.error(f"Failed to record notification {key}: {e}")
            return False
        return True

    async def filter_unnotified(self, event_id: str, subscriptions: Iterable[Subscription]) -> list[Subscription]:
        """
        Keep the subscriptions that still need this event.

        Duplicates by device id are dropped (first occurrence wins). Devices whose
        ledger lookup fails are left out.
        """
        seen: set[str] = set()
        pending: list[Subscription] = []
        for subscription in subscriptions:
            if subscription.device_id in seen:
                continue
            seen.add(subscription.device_id)
            try:
                if await self.already_notified(event_id, subscription.device_id):
                    continue
            except StoreError as e:
                logger.warning(f"Ledger lookup failed for {subscription.device_id}, skipping until next sweep: {e}")
                continue
            pending.append(subscription)
        return pending
