"""
Geohash utilities for spatial indexing.

Geohash encodes geographic coordinates into short strings that can be used for
hierarchical spatial indexing and proximity searches. Points with similar geohashes
are usually geographically close together, but two close points can have
divergent prefixes when they straddle a cell boundary. `query_bounds` handles that
by covering the whole disc with string ranges instead of relying on one prefix.

Reference: https://en.wikipedia.org/wiki/Geohash
"""

from __future__ import annotations

import math

from defroster.api.core.constants import EARTH_RADIUS_METERS, EVENT_CELL_PRECISION, MAX_CELL_PRECISION
from defroster.api.core.exceptions import InvalidArgumentError
from defroster.api.core.types import CELL_ALPHABET, GeoLocation, require_valid_location
from defroster.api.location.distance import haversine_meters


__all__ = [
    "CELL_ALPHABET",
    "bounding_box_bits",
    "cell_half_diagonal_meters",
    "decode",
    "decode_bounds",
    "encode",
    "encode_location",
    "meters_to_longitude_degrees",
    "neighbors",
    "prefix_range",
    "query_bounds",
]

# Sorts after every alphabet character, closes an open-ended prefix range
RANGE_TERMINATOR = "~"

_BITS_PER_CHAR = 5
_MAX_BITS = MAX_CELL_PRECISION * _BITS_PER_CHAR

# Ellipsoid figures used to size query cells
_METERS_PER_DEGREE_LATITUDE = 110574.0
_EARTH_EQ_RADIUS = 6378137.0
_EARTH_E2 = 0.00669447819799
_EARTH_MERI_CIRCUMFERENCE = 40007860.0
_EPSILON = 1e-12

# Widens the sampled box so points at exactly the radius are never lost to rounding
_BOX_MARGIN = 1.000001


def encode(latitude: float, longitude: float, precision: int = 12) -> str:
    """
    Encode latitude and longitude into a geohash string.

    Args:
        latitude: Latitude in degrees (-90 to 90)
        longitude: Longitude in degrees (-180 to 180)
        precision: Number of characters in geohash (1-22, default: 12)
                  Each character adds ~5 bits of precision
                  - 1 char: ~5000km
                  - 5 chars: ~5km
                  - 7 chars: ~150m
                  - 9 chars: ~5m
                  - 12 chars: ~0.6cm

    Returns:
        Geohash string

    Raises:
        InvalidArgumentError: If coordinates or precision are out of range

    Example:
        >>> encode(48.8566, 2.3522, 7)
        'u09tvw0'
    """
    require_valid_location(latitude, longitude)
    if isinstance(precision, bool) or not isinstance(precision, int) or not 1 <= precision <= MAX_CELL_PRECISION:
        raise InvalidArgumentError(f"Precision must be an integer from 1 to {MAX_CELL_PRECISION}, got {precision!r}")

    # Even bits are longitude, odd bits are latitude
    bits = 0
    bit_count = 0
    lat_min, lat_max = -90.0, 90.0
    lon_min, lon_max = -180.0, 180.0

    geohash: list[str] = []

    while len(geohash) < precision:
        if bit_count % 2 == 0:  # Even bit: longitude
            mid = (lon_min + lon_max) / 2.0
            if longitude >= mid:
                bits = bits * 2 + 1
                lon_min = mid
            else:
                bits = bits * 2
                lon_max = mid
        else:  # Odd bit: latitude
            mid = (lat_min + lat_max) / 2.0
            if latitude >= mid:
                bits = bits * 2 + 1
                lat_min = mid
            else:
                bits = bits * 2
                lat_max = mid

        bit_count += 1

        # Every 5 bits, encode to base32 character
        if bit_count % _BITS_PER_CHAR == 0:
            geohash.append(CELL_ALPHABET[bits])
            bits = 0

    return "".join(geohash)


def encode_location(location: GeoLocation, precision: int = EVENT_CELL_PRECISION) -> str:
    """Encode a GeoLocation; defaults to the stored event precision."""
    return encode(location.latitude, location.longitude, precision)


def decode(geohash: str) -> tuple[float, float, float, float]:
    """
    Decode a geohash string into latitude and longitude bounds.

    Args:
        geohash: Geohash string

    Returns:
        Tuple of (latitude, longitude, lat_error, lon_error)
        where errors are the half-height and half-width of the cell

    Raises:
        InvalidArgumentError: If the string is empty or has a non-alphabet character

    Example:
        >>> decode('u09tvw0')
        (48.8566..., 2.3521..., 0.000686..., 0.000686...)
    """
    if not geohash:
        raise InvalidArgumentError("Cannot decode an empty geohash")

    lat_min, lat_max = -90.0, 90.0
    lon_min, lon_max = -180.0, 180.0
    lat_err = 90.0
    lon_err = 180.0

    is_even = True

    for char in geohash:
        if char not in CELL_ALPHABET:
            raise InvalidArgumentError(f"Invalid geohash character: {char}")

        idx = CELL_ALPHABET.index(char)

        # Decode 5 bits
        for mask in [16, 8, 4, 2, 1]:
            if is_even:  # Longitude bit
                lon_err /= 2.0
                if idx & mask:
                    lon_min = (lon_min + lon_max) / 2.0
                else:
                    lon_max = (lon_min + lon_max) / 2.0
            else:  # Latitude bit
                lat_err /= 2.0
                if idx & mask:
                    lat_min = (lat_min + lat_max) / 2.0
                else:
                    lat_max = (lat_min + lat_max) / 2.0
            is_even = not is_even

    # Return center point and errors
    lat = (lat_min + lat_max) / 2.0
    lon = (lon_min + lon_max) / 2.0

    return lat, lon, lat_err, lon_err


def decode_bounds(geohash: str) -> tuple[float, float, float, float]:
    """
    Decode a geohash into its cell rectangle.

    Returns:
        Tuple of (south, west, north, east) in degrees
    """
    lat, lon, lat_err, lon_err = decode(geohash)
    return lat - lat_err, lon - lon_err, lat + lat_err, lon + lon_err


def neighbors(geohash: str) -> list[str]:
    """
    Get the neighboring geohashes (north, south, east, west, and diagonals).

    Longitude wraps across the antimeridian. Cells touching a pole have fewer
    than 8 distinct neighbors; duplicates and the cell itself are dropped.

    Args:
        geohash: Geohash string

    Returns:
        List of up to 8 neighboring geohash strings
    """
    lat, lon, lat_err, lon_err = decode(geohash)

    neighbors_list = []
    for dlat in [-2 * lat_err, 0.0, 2 * lat_err]:
        for dlon in [-2 * lon_err, 0.0, 2 * lon_err]:
            if dlat == 0 and dlon == 0:
                continue  # Skip center cell
            neighbor_lat = lat + dlat
            if not -90.0 <= neighbor_lat <= 90.0:
                continue
            neighbor_lon = _wrap_longitude(lon + dlon)
            neighbors_list.append(encode(neighbor_lat, neighbor_lon, len(geohash)))

    return [cell for cell in dict.fromkeys(neighbors_list) if cell != geohash]


def cell_half_diagonal_meters(precision: int) -> float:
    """
    Largest center-to-corner distance of a cell at this precision.

    Cells are widest at the equator, so this bounds every cell of that length.
    """
    cell = encode(0.0, 0.0, precision)
    lat, lon, lat_err, lon_err = decode(cell)
    return haversine_meters(
        GeoLocation(latitude=lat, longitude=lon),
        GeoLocation(latitude=lat + lat_err, longitude=lon + lon_err),
    )


def prefix_range(prefix: str) -> tuple[str, str]:
    """Inclusive range containing every cell code that starts with `prefix`."""
    return prefix, prefix + RANGE_TERMINATOR


def meters_to_longitude_degrees(distance: float, latitude: float) -> float:
    """
    Convert an east-west distance to degrees of longitude at a latitude.

    Uses the WGS84 ellipsoid. Returns 360 at the poles for any positive distance.
    """
    radians = math.radians(latitude)
    num = math.cos(radians) * _EARTH_EQ_RADIUS * math.pi / 180.0
    denom = 1.0 / math.sqrt(1.0 - _EARTH_E2 * math.sin(radians) * math.sin(radians))
    delta_deg = num * denom
    if delta_deg < _EPSILON:
        return 360.0 if distance > 0 else 0.0
    return min(360.0, distance / delta_deg)


def _longitude_bits_for_resolution(resolution: float, latitude: float) -> float:
    degrees = meters_to_longitude_degrees(resolution, latitude)
    return max(1.0, math.log2(360.0 / degrees)) if abs(degrees) > 0.000001 else 1.0


def _latitude_bits_for_resolution(resolution: float) -> float:
    return min(math.log2(_EARTH_MERI_CIRCUMFERENCE / 2.0 / resolution), float(_MAX_BITS))


def _wrap_longitude(longitude: float) -> float:
    if -180.0 <= longitude <= 180.0:
        return longitude
    adjusted = longitude + 180.0
    if adjusted > 0:
        return (adjusted % 360.0) - 180.0
    return 180.0 - (-adjusted % 360.0)


def bounding_box_bits(center: GeoLocation, radius_meters: float) -> int:
    """
    Number of geohash bits whose cells are at least as large as the query box.

    The result can be zero or negative for radii larger than half the globe;
    callers clamp it.
    """
    lat_delta = radius_meters / _METERS_PER_DEGREE_LATITUDE
    latitude_north = min(90.0, center.latitude + lat_delta)
    latitude_south = max(-90.0, center.latitude - lat_delta)
    bits_lat = math.floor(_latitude_bits_for_resolution(radius_meters)) * 2
    bits_long_north = math.floor(_longitude_bits_for_resolution(radius_meters, latitude_north)) * 2 - 1
    bits_long_south = math.floor(_longitude_bits_for_resolution(radius_meters, latitude_south)) * 2 - 1
    return min(bits_lat, bits_long_north, bits_long_south, _MAX_BITS)


def _spherical_box(center: GeoLocation, radius_meters: float) -> tuple[float, float, float, float]:
    """
    (south, north, west, east) bounding the disc on the sphere.

    West and east are not wrapped and span 360 degrees when the disc covers a pole.
    """
    angular = radius_meters * _BOX_MARGIN / EARTH_RADIUS_METERS
    lat_delta = math.degrees(angular)
    south = center.latitude - lat_delta
    north = center.latitude + lat_delta
    if north >= 90.0 or south <= -90.0:
        return max(-90.0, south), min(90.0, north), -180.0, 180.0

    ratio = math.sin(angular) / math.cos(math.radians(center.latitude))
    if ratio >= 1.0:
        return south, north, -180.0, 180.0
    lon_delta = math.degrees(math.asin(ratio))
    return south, north, center.longitude - lon_delta, center.longitude + lon_delta


def _steps(low: float, high: float, step: float) -> list[float]:
    values = []
    value = low
    while value < high:
        values.append(value)
        value += step
    values.append(high)
    return values


def _probe_points(center: GeoLocation, radius_meters: float, bits: int) -> list[GeoLocation]:
    """
    Sample points hitting every `bits`-bit cell that intersects the disc's bounding box.

    Samples are spaced half a cell apart, so no intersecting cell is stepped over.
    For radii sized by `bounding_box_bits` this is the 3x3 cell neighborhood of
    the center, or a little more where the box straddles cell edges.
    """
    south, north, west, east = _spherical_box(center, radius_meters)
    cell_height = 180.0 / 2 ** (bits // 2)
    cell_width = 360.0 / 2 ** ((bits + 1) // 2)

    if east - west >= 360.0:
        longitudes = _steps(-180.0, 180.0, cell_width / 2)
    else:
        longitudes = [_wrap_longitude(lon) for lon in _steps(west, east, cell_width / 2)]

    return [
        GeoLocation(latitude=latitude, longitude=longitude)
        for latitude in _steps(south, north, cell_height / 2)
        for longitude in longitudes
    ]


def _range_for_cell(geohash: str, bits: int) -> tuple[str, str]:
    """Range of cell codes sharing the first `bits` bits of `geohash`."""
    precision = math.ceil(bits / _BITS_PER_CHAR)
    if len(geohash) < precision:
        return prefix_range(geohash)

    geohash = geohash[:precision]
    base = geohash[:-1]
    last_value = CELL_ALPHABET.index(geohash[-1])
    significant_bits = bits - len(base) * _BITS_PER_CHAR
    unused_bits = _BITS_PER_CHAR - significant_bits
    start_value = (last_value >> unused_bits) << unused_bits
    end_value = start_value + (1 << unused_bits)
    if end_value > len(CELL_ALPHABET) - 1:
        return base + CELL_ALPHABET[start_value], base + RANGE_TERMINATOR
    return base + CELL_ALPHABET[start_value], base + CELL_ALPHABET[end_value]


def _coalesce(ranges: list[tuple[str, str]]) -> list[tuple[str, str]]:
    """Merge overlapping or touching inclusive ranges."""
    merged: list[tuple[str, str]] = []
    for start, end in sorted(set(ranges)):
        if merged and start <= merged[-1][1]:
            previous_start, previous_end = merged[-1]
            merged[-1] = (previous_start, max(previous_end, end))
        else:
            merged.append((start, end))
    return merged


def query_bounds(
    center: GeoLocation, radius_meters: float, *, max_precision: int = EVENT_CELL_PRECISION
) -> list[tuple[str, str]]:
    """
    Compute cell-code ranges whose union covers a disc.

    Every stored cell code (of length `max_precision`) for a point within
    `radius_meters` of `center` satisfies `start <= code <= end` for at least one
    returned range. Ranges over-cover; refine candidates by true distance.

    Args:
        center: Disc center
        radius_meters: Disc radius in meters (must be positive)
        max_precision: Length of the stored cell codes being scanned. Query cells
                       are never finer than this, so codes shorter than the query
                       cell are not skipped.

    Returns:
        Sorted, coalesced list of inclusive (start, end) ranges; never empty

    Raises:
        InvalidArgumentError: If radius is not positive or center is invalid
    """
    require_valid_location(center.latitude, center.longitude)
    if isinstance(radius_meters, bool) or not isinstance(radius_meters, int | float):
        raise InvalidArgumentError(f"Radius must be a number, got {radius_meters!r}")
    if not math.isfinite(radius_meters) or radius_meters <= 0:
        raise InvalidArgumentError(f"Radius must be positive and finite, got {radius_meters!r}")
    if not 1 <= max_precision <= MAX_CELL_PRECISION:
        raise InvalidArgumentError(f"max_precision must be from 1 to {MAX_CELL_PRECISION}")

    query_bits = max(1, bounding_box_bits(center, radius_meters))
    query_bits = min(query_bits, max_precision * _BITS_PER_CHAR)
    precision = math.ceil(query_bits / _BITS_PER_CHAR)

    ranges = [
        _range_for_cell(encode(point.latitude, point.longitude, precision), query_bits)
        for point in _probe_points(center, radius_meters, query_bits)
    ]
    return _coalesce(ranges)
