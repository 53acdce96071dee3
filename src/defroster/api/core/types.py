"""
Record Types

Explicit record shapes for the four persisted entities, plus the document codec
used at the store boundary. Every store implementation converts rows or blobs
through `from_document`, which validates field by field and raises
MalformedRecordError instead of letting bad data reach the query path.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any

from defroster.api.core.enums import SightingCategory
from defroster.api.core.exceptions import InvalidArgumentError, MalformedRecordError


__all__ = [
    "CELL_ALPHABET",
    "Event",
    "GeoLocation",
    "NotificationRecord",
    "Subscription",
    "SyncWatermark",
    "is_valid_location",
    "notification_key",
    "require_valid_location",
]


# Geohash base32 alphabet (excludes a, i, l, o to avoid confusion)
CELL_ALPHABET = "0123456789bcdefghjkmnpqrstuvwxyz"


@dataclass(frozen=True)
class GeoLocation:
    """A point on the globe in decimal degrees."""

    latitude: float  # Degrees north (negative for south)
    longitude: float  # Degrees east (negative for west)

    def to_document(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_document(cls, data: Any) -> GeoLocation:
        if not isinstance(data, dict):
            raise MalformedRecordError("location must be a mapping")
        latitude = data.get("latitude")
        longitude = data.get("longitude")
        if not is_valid_location(latitude, longitude):
            raise MalformedRecordError(f"invalid location {latitude!r}, {longitude!r}")
        return cls(latitude=float(latitude), longitude=float(longitude))  # type: ignore[arg-type]


def is_valid_location(latitude: Any, longitude: Any) -> bool:
    """Return True when both values are finite numbers inside the lat/lon domain."""
    for value in (latitude, longitude):
        if isinstance(value, bool) or not isinstance(value, int | float):
            return False
        if not math.isfinite(value):
            return False
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0


def require_valid_location(latitude: Any, longitude: Any) -> None:
    """
    Raise InvalidArgumentError unless the coordinates are usable.

    Args:
        latitude: Latitude in degrees (-90 to 90)
        longitude: Longitude in degrees (-180 to 180)
    """
    if not is_valid_location(latitude, longitude):
        raise InvalidArgumentError(f"Invalid coordinates: latitude={latitude!r}, longitude={longitude!r}")


def notification_key(event_id: str, device_id: str) -> str:
    """Composite ledger key for an (event, device) pair."""
    return f"{event_id}_{device_id}"


def _require_str(data: dict[str, Any], name: str, *, optional: bool = False) -> str | None:
    value = data.get(name)
    if value is None and optional:
        return None
    if not isinstance(value, str) or not value:
        raise MalformedRecordError(f"{name} must be a non-empty string")
    return value


def _require_timestamp(data: dict[str, Any], name: str) -> int:
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedRecordError(f"{name} must be a non-negative integer timestamp")
    return value


def _require_cell_code(data: dict[str, Any], name: str = "cell_code") -> str:
    value = _require_str(data, name)
    assert value is not None
    if any(char not in CELL_ALPHABET for char in value):
        raise MalformedRecordError(f"{name} contains characters outside the cell alphabet")
    return value


@dataclass(frozen=True)
class Event:
    """
    A sighting report.

    `created_at` is always assigned by the server and `cell_code` is always derived
    from `location`. `expires_at` is the retention deadline within the tier the
    record lives in.
    """

    category: SightingCategory
    location: GeoLocation
    created_at: int
    cell_code: str
    expires_at: int
    id: str | None = None

    def __post_init__(self) -> None:
        if self.expires_at <= self.created_at:
            raise InvalidArgumentError("expires_at must be later than created_at")

    def with_id(self, event_id: str) -> Event:
        return replace(self, id=event_id)

    def with_retention(self, expires_at: int) -> Event:
        """Copy of this event re-stamped with a tier-local retention deadline."""
        return replace(self, expires_at=expires_at)

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": str(self.category),
            "location": self.location.to_document(),
            "created_at": self.created_at,
            "cell_code": self.cell_code,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_document(cls, data: Any) -> Event:
        if not isinstance(data, dict):
            raise MalformedRecordError("event document must be a mapping")
        try:
            category = SightingCategory(data.get("category"))
        except ValueError as e:
            raise MalformedRecordError(f"unknown category {data.get('category')!r}") from e
        created_at = _require_timestamp(data, "created_at")
        expires_at = _require_timestamp(data, "expires_at")
        if expires_at <= created_at:
            raise MalformedRecordError("expires_at must be later than created_at")
        return cls(
            id=_require_str(data, "id", optional=True),
            category=category,
            location=GeoLocation.from_document(data.get("location")),
            created_at=created_at,
            cell_code=_require_cell_code(data),
            expires_at=expires_at,
        )


@dataclass(frozen=True)
class Subscription:
    """A notifiable device, keyed by its client-generated id."""

    device_id: str
    push_token: str
    cell_code: str
    updated_at: int

    def to_document(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "push_token": self.push_token,
            "cell_code": self.cell_code,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, data: Any) -> Subscription:
        if not isinstance(data, dict):
            raise MalformedRecordError("subscription document must be a mapping")
        device_id = _require_str(data, "device_id")
        push_token = _require_str(data, "push_token")
        assert device_id is not None and push_token is not None
        return cls(
            device_id=device_id,
            push_token=push_token,
            cell_code=_require_cell_code(data),
            updated_at=_require_timestamp(data, "updated_at"),
        )


@dataclass(frozen=True)
class NotificationRecord:
    """Ledger entry: this device was pushed this event."""

    event_id: str
    device_id: str
    sent_at: int
    expires_at: int

    @property
    def key(self) -> str:
        return notification_key(self.event_id, self.device_id)

    def to_document(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "device_id": self.device_id,
            "sent_at": self.sent_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_document(cls, data: Any) -> NotificationRecord:
        if not isinstance(data, dict):
            raise MalformedRecordError("notification document must be a mapping")
        event_id = _require_str(data, "event_id")
        device_id = _require_str(data, "device_id")
        assert event_id is not None and device_id is not None
        return cls(
            event_id=event_id,
            device_id=device_id,
            sent_at=_require_timestamp(data, "sent_at"),
            expires_at=_require_timestamp(data, "expires_at"),
        )


@dataclass(frozen=True)
class SyncWatermark:
    """Last successful server fetch for one coarse cell (client tier only)."""

    cell_key: str
    last_fetched_at: int

    def to_document(self) -> dict[str, Any]:
        return {"cell_key": self.cell_key, "last_fetched_at": self.last_fetched_at}

    @classmethod
    def from_document(cls, data: Any) -> SyncWatermark:
        if not isinstance(data, dict):
            raise MalformedRecordError("watermark document must be a mapping")
        return cls(
            cell_key=_require_cell_code(data, "cell_key"),
            last_fetched_at=_require_timestamp(data, "last_fetched_at"),
        )
