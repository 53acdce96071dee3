"""
Push payload codec.

A pushed sighting travels as a flat map of strings:
id, sightingType, location (JSON object), timestamp, geohash, expiresAt.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from defroster.api.core.constants import EVENT_CELL_PRECISION
from defroster.api.core.contracts import PushPayload
from defroster.api.core.enums import SightingCategory
from defroster.api.core.exceptions import InvalidArgumentError, MalformedRecordError
from defroster.api.core.types import Event, GeoLocation
from defroster.api.location.geohash_utils import encode_location


__all__ = ["decode_payload", "encode_payload"]


def encode_payload(event: Event) -> PushPayload:
    """Build the push data map for a stored event."""
    if event.id is None:
        raise InvalidArgumentError("Cannot push an event that has not been stored")
    return {
        "id": event.id,
        "sightingType": str(event.category),
        "location": json.dumps(event.location.to_document()),
        "timestamp": str(event.created_at),
        "geohash": event.cell_code,
        "expiresAt": str(event.expires_at),
    }


def _int_field(payload: Mapping[str, Any], name: str) -> int:
    raw = payload.get(name)
    if not isinstance(raw, str) or not raw.isdigit():
        raise MalformedRecordError(f"payload {name} must be a decimal string")
    return int(raw)


def decode_payload(payload: Mapping[str, Any]) -> Event:
    """
    Turn a received push data map back into an Event.

    The cell code is recomputed from the location; the pushed geohash is ignored.

    Raises:
        MalformedRecordError: If any field is missing or invalid
    """
    event_id = payload.get("id")
    if not isinstance(event_id, str) or not event_id:
        raise MalformedRecordError("payload id must be a non-empty string")

    try:
        category = SightingCategory(payload.get("sightingType"))
    except ValueError as e:
        raise MalformedRecordError(f"unknown sightingType {payload.get('sightingType')!r}") from e

    raw_location = payload.get("location")
    if not isinstance(raw_location, str):
        raise MalformedRecordError("payload location must be a JSON string")
    try:
        location = GeoLocation.from_document(json.loads(raw_location))
    except json.JSONDecodeError as e:
        raise MalformedRecordError(f"payload location is not valid JSON: {e}") from e

    created_at = _int_field(payload, "timestamp")
    expires_at = _int_field(payload, "expiresAt")
    if expires_at <= created_at:
        raise MalformedRecordError("payload expiresAt must be later than timestamp")

    return Event(
        id=event_id,
        category=category,
        location=location,
        created_at=created_at,
        cell_code=encode_location(location, EVENT_CELL_PRECISION),
        expires_at=expires_at,
    )
