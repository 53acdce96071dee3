"""
Defroster API - Core Engine

This package contains the sighting engine separated from CLI presentation
concerns.

The API is organized into logical subpackages:
- core: Constants, enums, exceptions, record types, clock, configuration
- location: Geohash cell indexing and distance refinement
- database: Record store adapter (SQLAlchemy and in-memory)
- sync: Dual-tier sync manager
- retention: TTL sweeper for both tiers
- notifications: Deduplication ledger and notification triggers
"""

# Activate deal contracts for runtime validation
import deal


deal.activate()

__all__: list[str] = [
    # Package is organized into subpackages - import directly from them:
    # from defroster.api.sync.sync_manager import SyncManager
    # from defroster.api.notifications.ledger import NotificationLedger
    # etc.
]
