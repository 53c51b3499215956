"""
Great-circle distance helpers.

The Haversine distance is the fallback for every road-distance lookup: it
is used when the routing decision says a network call adds nothing, when
no provider is configured, and for any batch whose provider call failed.

Complexity: O(1) per pair, O(n) per path.
"""

from __future__ import annotations

import math
from typing import Sequence

from .entities import Coordinate

EARTH_RADIUS_KM = 6_371.0
KM_DECIMALS = 3


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def coordinate_distance_km(a: Coordinate, b: Coordinate) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def path_length_km(points: Sequence[Coordinate]) -> float:
    """Cumulative great-circle length of an ordered path."""
    return sum(
        coordinate_distance_km(points[i - 1], points[i])
        for i in range(1, len(points))
    )


def bearing_degrees(a: Coordinate, b: Coordinate) -> float:
    """Initial bearing from *a* to *b*, 0-360 degrees clockwise from north."""
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    dlng = math.radians(b.longitude - a.longitude)
    x = math.sin(dlng) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlng)
    return (math.degrees(math.atan2(x, y)) + 360) % 360


def round_km(value: float) -> float:
    """Single rounding rule for every persisted or returned kilometre figure."""
    return round(max(value, 0.0), KM_DECIMALS)
