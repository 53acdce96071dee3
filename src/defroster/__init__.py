"""
Defroster Sighting Engine

Report location-tagged safety sightings and notify nearby subscribed devices.

The engine is built from:
- a geohash range-query indexer with great-circle refinement
- a two-tier record store (short-lived server tier, week-long client cache)
  kept in step by an incremental sync manager
- a notification ledger that keeps each device to one push per sighting

Example:
    >>> from defroster import GeoLocation, MemoryRecordStore, SightingService, StoreTier, SyncManager
    >>> server = MemoryRecordStore(StoreTier.SERVER)
    >>> service = SightingService(server)
    >>> result = await service.report_sighting("ICE", GeoLocation(37.7749, -122.4194))
    >>> sync = SyncManager(server, MemoryRecordStore(StoreTier.CLIENT))
    >>> events = await sync.query(GeoLocation(37.7749, -122.4194), radius_miles=5)
"""

from defroster.api.core.clock import ManualClock, SystemClock
from defroster.api.core.enums import Collection, SightingCategory, StoreTier, SyncState

# Exceptions
from defroster.api.core.exceptions import (
    DefrosterError,
    InvalidArgumentError,
    MalformedRecordError,
    NotFoundError,
    StoreError,
    StoreUnavailableError,
    TransportError,
)

# Record types
from defroster.api.core.types import Event, GeoLocation, NotificationRecord, Subscription, SyncWatermark
from defroster.api.database.store import MemoryRecordStore, RecordStore, SqlRecordStore
from defroster.api.notifications.dispatcher import NotificationDispatcher, NotificationReport
from defroster.api.notifications.ledger import NotificationLedger
from defroster.api.retention.sweeper import RetentionSweeper, SweepReport
from defroster.api.sightings import ReportResult, SightingService
from defroster.api.sync.sync_manager import ListenerHandle, SyncManager


__version__ = "0.1.0"

__all__ = [
    "Collection",
    "DefrosterError",
    "Event",
    "GeoLocation",
    "InvalidArgumentError",
    "ListenerHandle",
    "MalformedRecordError",
    "ManualClock",
    "MemoryRecordStore",
    "NotFoundError",
    "NotificationDispatcher",
    "NotificationLedger",
    "NotificationRecord",
    "NotificationReport",
    "RecordStore",
    "ReportResult",
    "RetentionSweeper",
    "SightingCategory",
    "SightingService",
    "StoreError",
    "StoreTier",
    "StoreUnavailableError",
    "Subscription",
    "SweepReport",
    "SyncManager",
    "SyncState",
    "SyncWatermark",
    "SystemClock",
    "TransportError",
    "__version__",
]
