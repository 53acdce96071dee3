"""
Engine Constants

Precisions, retention windows, radii and batch sizes shared by every component.
All durations are in milliseconds because every stored timestamp is an integer
epoch-millisecond value.
"""

from typing import Final


__all__ = [
    "CLIENT_RETENTION_MS",
    "CLOCK_SKEW_TOLERANCE_MS",
    "DEFAULT_FETCH_TIMEOUT_SECONDS",
    "DEFAULT_RADIUS_MILES",
    "DELETE_BATCH_SIZE",
    "DISPATCH_BATCH_SIZE",
    "EARTH_RADIUS_METERS",
    "EVENT_CELL_PRECISION",
    "EVENT_TTL_MS",
    "MAX_CELL_PRECISION",
    "MAX_RADIUS_MILES",
    "METERS_PER_MILE",
    "NOTIFICATION_LOOKBACK_MS",
    "NOTIFICATION_TTL_MS",
    "ONE_DAY_MS",
    "ONE_HOUR_MS",
    "ONE_MINUTE_MS",
    "ONE_SECOND_MS",
    "ONE_WEEK_MS",
    "SUBSCRIPTION_CELL_PRECISION",
    "SUBSCRIPTION_STALE_MS",
    "WATERMARK_CELL_PRECISION",
]


# Time units
ONE_SECOND_MS: Final[int] = 1000
ONE_MINUTE_MS: Final[int] = 60 * ONE_SECOND_MS
ONE_HOUR_MS: Final[int] = 60 * ONE_MINUTE_MS
ONE_DAY_MS: Final[int] = 24 * ONE_HOUR_MS
ONE_WEEK_MS: Final[int] = 7 * ONE_DAY_MS

# Retention windows
EVENT_TTL_MS: Final[int] = 24 * ONE_HOUR_MS
"""Server-tier lifetime of a sighting."""

CLIENT_RETENTION_MS: Final[int] = ONE_WEEK_MS
"""Client-tier lifetime of a cached sighting and of an idle sync watermark."""

NOTIFICATION_TTL_MS: Final[int] = 2 * ONE_HOUR_MS
"""Lifetime of a ledger entry. Must outlive NOTIFICATION_LOOKBACK_MS."""

NOTIFICATION_LOOKBACK_MS: Final[int] = 30 * ONE_MINUTE_MS
"""Age limit for events the periodic notification sweep will still push."""

SUBSCRIPTION_STALE_MS: Final[int] = 30 * ONE_DAY_MS
"""Subscriptions not refreshed within this window are swept."""

CLOCK_SKEW_TOLERANCE_MS: Final[int] = ONE_MINUTE_MS
"""Maximum distance between a client-claimed timestamp and server time."""

# Geohash precisions
EVENT_CELL_PRECISION: Final[int] = 7
"""Stored event cell code length (~153m x 153m cell)."""

SUBSCRIPTION_CELL_PRECISION: Final[int] = 7
"""Stored device cell code length (~153m x 153m cell)."""

WATERMARK_CELL_PRECISION: Final[int] = 5
"""Sync watermark bucket length (~4.9km x 4.9km cell)."""

MAX_CELL_PRECISION: Final[int] = 22
"""Longest cell code supported by the indexer (110 bits)."""

# Distances
EARTH_RADIUS_METERS: Final[float] = 6_371_000.0
"""Mean Earth radius used by the haversine refiner."""

METERS_PER_MILE: Final[float] = 1609.34
"""Meters per statute mile."""

DEFAULT_RADIUS_MILES: Final[float] = 5.0
"""Notification and default query radius."""

MAX_RADIUS_MILES: Final[float] = 100.0
"""Largest radius accepted by a sync query."""

# Batching and timeouts
DELETE_BATCH_SIZE: Final[int] = 500
"""Maximum records removed per sweeper delete call."""

DISPATCH_BATCH_SIZE: Final[int] = 500
"""Maximum push tokens handed to the transport in one dispatch."""

DEFAULT_FETCH_TIMEOUT_SECONDS: Final[float] = 10.0
"""Upper bound on a server-tier fetch before the sync manager goes offline."""
