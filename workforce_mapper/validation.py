"""
Validation utilities for the Workforce Mapper.

Provides functions to decide whether a record can be placed on the map
and whether a drawn vertex sequence forms a usable polygon.
"""

import math
from typing import Any, Sequence

from .records import Record

# Minimum number of distinct vertices for a selection polygon
MIN_POLYGON_VERTICES = 3

def validate_coordinates(lat: Any, lon: Any) -> bool:
    """
    Validate that latitude and longitude are valid coordinates.

    Args:
        lat: Latitude
        lon: Longitude

    Returns:
        True if valid, False otherwise
    """
    if isinstance(lat, bool) or isinstance(lon, bool):
        return False

    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return False

    # Reject NaN and infinities
    if not math.isfinite(lat) or not math.isfinite(lon):
        return False

    # Check latitude range
    if lat < -90 or lat > 90:
        return False

    # Check longitude range
    if lon < -180 or lon > 180:
        return False

    return True

def is_ungeocoded_sentinel(lat: Any, lon: Any) -> bool:
    """
    Check for the (0, 0) placeholder written for addresses that failed to geocode.

    Args:
        lat: Latitude
        lon: Longitude

    Returns:
        True if both coordinates are exactly zero
    """
    return lat == 0 and lon == 0

def is_mappable(record: Record) -> bool:
    """
    Decide whether a record is eligible for map placement.

    A record is eligible when both coordinates are finite and in range,
    the pair is not the (0, 0) sentinel, and its geocoding provenance
    does not report a failure.

    Args:
        record: Record to check

    Returns:
        True if the record can be projected onto the map
    """
    lat, lon = record.latitude, record.longitude

    if not validate_coordinates(lat, lon):
        return False

    if is_ungeocoded_sentinel(lat, lon):
        return False

    if record.geocode_success is False:
        return False

    return True

def is_valid_polygon(vertices: Sequence[Sequence[float]]) -> bool:
    """
    Check that a vertex sequence has enough points to enclose an area.

    Args:
        vertices: Sequence of (lon, lat) pairs, open or closed

    Returns:
        True if at least MIN_POLYGON_VERTICES vertices are present
    """
    if vertices is None:
        return False

    count = len(vertices)
    # A closed ring repeats its first vertex
    if count > 1 and tuple(vertices[0]) == tuple(vertices[-1]):
        count -= 1

    return count >= MIN_POLYGON_VERTICES
