"""
Encoded polyline codec (Google's polyline algorithm, precision 5).

Route geometry is stored and transmitted in this compact form; the
decoded ``(lat, lng)`` list is what the cache reverses for return
journeys.
See: https://developers.google.com/maps/documentation/utilities/polylinealgorithm
"""

from __future__ import annotations

from typing import Iterable

PRECISION = 5


def encode(points: Iterable[tuple[float, float]], precision: int = PRECISION) -> str:
    """Encode ``(lat, lng)`` pairs into a polyline string."""
    factor = 10 ** precision
    encoded: list[str] = []
    prev_lat = 0
    prev_lng = 0

    for lat, lng in points:
        lat_i = round(lat * factor)
        lng_i = round(lng * factor)

        for delta in (lat_i - prev_lat, lng_i - prev_lng):
            value = ~(delta << 1) if delta < 0 else (delta << 1)
            while value >= 0x20:
                encoded.append(chr((0x20 | (value & 0x1F)) + 63))
                value >>= 5
            encoded.append(chr(value + 63))

        prev_lat = lat_i
        prev_lng = lng_i

    return "".join(encoded)


def decode(encoded: str, precision: int = PRECISION) -> list[tuple[float, float]]:
    """Decode a polyline string back into ``(lat, lng)`` pairs.

    Raises ``ValueError`` on a truncated string.
    """
    factor = 10 ** precision
    points: list[tuple[float, float]] = []
    index = 0
    lat = 0
    lng = 0

    while index < len(encoded):
        deltas = []
        for _ in range(2):
            shift = 0
            value = 0
            while True:
                if index >= len(encoded):
                    raise ValueError("Truncated polyline")
                b = ord(encoded[index]) - 63
                index += 1
                value |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(value >> 1) if (value & 1) else (value >> 1))

        lat += deltas[0]
        lng += deltas[1]
        points.append((lat / factor, lng / factor))

    return points


def reverse(encoded: str) -> str:
    """Polyline of the same path travelled in the opposite direction."""
    return encode(list(reversed(decode(encoded))))
