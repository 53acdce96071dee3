"""
Great-circle distance on a spherical Earth.

Cell-range scans over-cover a query disc; these helpers decide whether a
candidate actually falls inside it.
"""

from __future__ import annotations

import math

from defroster.api.core.constants import EARTH_RADIUS_METERS, METERS_PER_MILE
from defroster.api.core.exceptions import InvalidArgumentError
from defroster.api.core.types import GeoLocation, require_valid_location


__all__ = [
    "haversine_meters",
    "meters_to_miles",
    "miles_to_meters",
    "within_radius",
]


def haversine_meters(a: GeoLocation, b: GeoLocation) -> float:
    """
    Great-circle distance between two points.

    Args:
        a: First point
        b: Second point

    Returns:
        Distance in meters on a sphere of radius 6,371 km

    Raises:
        InvalidArgumentError: If either point is outside the lat/lon domain
    """
    require_valid_location(a.latitude, a.longitude)
    require_valid_location(b.latitude, b.longitude)

    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push h a hair past 1 for antipodal points
    h = min(1.0, h)
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(h))


def within_radius(center: GeoLocation, candidate: GeoLocation, radius_meters: float) -> bool:
    """Return True when `candidate` is at most `radius_meters` from `center`."""
    if isinstance(radius_meters, bool) or not isinstance(radius_meters, int | float):
        raise InvalidArgumentError(f"Radius must be a number, got {radius_meters!r}")
    if not math.isfinite(radius_meters) or radius_meters <= 0:
        raise InvalidArgumentError(f"Radius must be positive and finite, got {radius_meters!r}")
    return haversine_meters(center, candidate) <= radius_meters


def miles_to_meters(miles: float) -> float:
    return miles * METERS_PER_MILE


def meters_to_miles(meters: float) -> float:
    return meters / METERS_PER_MILE
