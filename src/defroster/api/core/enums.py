"""
Common Enums

Enumerations used throughout the Defroster API.
"""

from enum import StrEnum


__all__ = [
    "Collection",
    "SightingCategory",
    "StoreTier",
    "SyncState",
]


class SightingCategory(StrEnum):
    """Kinds of sighting a report can carry."""

    ICE = "ICE"
    ARMY = "Army"
    POLICE = "Police"


class StoreTier(StrEnum):
    """The two record store tiers."""

    SERVER = "server"  # Authoritative, short retention
    CLIENT = "client"  # Offline cache, long retention


class Collection(StrEnum):
    """Record collections held by every store tier."""

    EVENTS = "events"
    SUBSCRIPTIONS = "subscriptions"
    NOTIFICATIONS = "notifications"
    WATERMARKS = "watermarks"


class SyncState(StrEnum):
    """Sync state of one coarse cell within a client session."""

    COLD = "cold"  # Never fetched
    WARM = "warm"  # Has a watermark from a successful fetch
    OFFLINE = "offline"  # Last server fetch failed, serving cache only
