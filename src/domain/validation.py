"""
GPS input validation, jitter filtering and session-conflict detection.

``filter_jitter`` is what keeps a stationary rep from turning hundreds of
near-identical fixes into kilometres: a point is kept only if it moved
beyond the jitter tolerance from the last *kept* point, and only if
reaching it did not require an implausible speed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from .distance import coordinate_distance_km
from .entities import Coordinate, ensure_utc

logger = logging.getLogger(__name__)

MAX_SESSION_HOURS = 24


def coordinate_errors(
    coord: Coordinate, accuracy_threshold_m: Optional[float] = None
) -> list[str]:
    errors: list[str] = []
    lat, lng = coord.latitude, coord.longitude
    if lat is None or lng is None or not all(map(math.isfinite, (lat, lng))):
        return ["Latitude and longitude must be finite numbers"]
    if not -90 <= lat <= 90:
        errors.append("Latitude must be between -90 and 90 degrees")
    if not -180 <= lng <= 180:
        errors.append("Longitude must be between -180 and 180 degrees")
    if (
        coord.accuracy is not None
        and accuracy_threshold_m is not None
        and coord.accuracy > accuracy_threshold_m
    ):
        errors.append(
            f"GPS accuracy ({coord.accuracy}m) exceeds threshold ({accuracy_threshold_m}m)"
        )
    if coord.speed is not None and not 0 <= coord.speed <= 200:
        errors.append("Speed must be between 0 and 200 km/h")
    if coord.altitude is not None and not -500 <= coord.altitude <= 10_000:
        errors.append("Altitude must be between -500 and 10000 meters")
    return errors


def is_valid_position(coord: Coordinate) -> bool:
    lat, lng = coord.latitude, coord.longitude
    return (
        lat is not None
        and lng is not None
        and math.isfinite(lat)
        and math.isfinite(lng)
        and -90 <= lat <= 90
        and -180 <= lng <= 180
    )


def filter_jitter(
    coordinates: Sequence[Coordinate],
    tolerance_km: float = 0.01,
    max_speed_kmh: Optional[float] = 150.0,
    keep_last: bool = False,
) -> list[Coordinate]:
    """Collapse stationary noise while preserving real movement.

    With ``keep_last`` the final coordinate (a confirmed check-out
    position) is never discarded by the speed check, and replaces the
    previous kept point when it lies within the jitter tolerance.
    """
    valid = [c for c in coordinates if is_valid_position(c)]
    if len(valid) < len(coordinates):
        logger.warning(
            "Dropped %d invalid coordinates", len(coordinates) - len(valid)
        )
    if not valid:
        return []

    kept = [valid[0]]
    last_index = len(valid) - 1
    for index, current in enumerate(valid[1:], start=1):
        previous = kept[-1]
        final = keep_last and index == last_index
        distance = coordinate_distance_km(previous, current)
        if distance < tolerance_km:
            if final and len(kept) > 1:
                kept[-1] = current
            continue
        if not final and max_speed_kmh and current.timestamp and previous.timestamp:
            hours = (
                ensure_utc(current.timestamp) - ensure_utc(previous.timestamp)
            ).total_seconds() / 3600
            if hours > 0 and distance / hours > max_speed_kmh:
                logger.warning(
                    "Unrealistic speed %.1f km/h, skipping point", distance / hours
                )
                continue
        kept.append(current)

    logger.debug("Jitter filter: %d -> %d coordinates", len(coordinates), len(kept))
    return kept


def timestamps_out_of_order(coordinates: Sequence[Coordinate]) -> bool:
    stamped = [ensure_utc(c.timestamp) for c in coordinates if c.timestamp]
    return any(b < a for a, b in zip(stamped, stamped[1:]))


# ── Session windows ───────────────────────────────────────────────────


@dataclass(frozen=True)
class SessionConflict:
    session_id: int
    conflict_type: str  # "UNCLOSED_SESSION" | "OVERLAP"
    message: str


def check_session_conflicts(
    check_in: datetime,
    existing: Sequence[tuple[int, datetime, Optional[datetime]]],
    now: datetime,
) -> list[SessionConflict]:
    """Return unclosed and overlapping sessions for a new window starting at *check_in*."""
    conflicts: list[SessionConflict] = []
    new_start = ensure_utc(check_in)
    new_end = max(ensure_utc(now), new_start)
    for session_id, start, end in existing:
        start = ensure_utc(start)
        if end is None:
            conflicts.append(
                SessionConflict(
                    session_id,
                    "UNCLOSED_SESSION",
                    f"User has an unclosed session from {start.isoformat()}",
                )
            )
            continue
        end = ensure_utc(end)
        if new_start < end and new_end > start:
            conflicts.append(
                SessionConflict(
                    session_id,
                    "OVERLAP",
                    f"Session overlaps with existing session "
                    f"({start.isoformat()} - {end.isoformat()})",
                )
            )
    return conflicts


def check_in_time_issues(
    check_in: datetime, now: datetime, max_skew_seconds: int
) -> tuple[list[str], list[str]]:
    """Return ``(errors, warnings)`` for a proposed check-in time."""
    errors: list[str] = []
    warnings: list[str] = []
    check_in, now = ensure_utc(check_in), ensure_utc(now)
    if check_in > now + timedelta(seconds=max_skew_seconds):
        errors.append("Check-in time cannot be in the future")
    elif now - check_in > timedelta(hours=MAX_SESSION_HOURS):
        warnings.append("Check-in time is more than 24 hours old")
    return errors, warnings


def check_out_time_issues(
    check_in: datetime, check_out: datetime
) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []
    check_in, check_out = ensure_utc(check_in), ensure_utc(check_out)
    if check_out <= check_in:
        errors.append("Check-out time must be after check-in time")
    elif check_out - check_in > timedelta(hours=MAX_SESSION_HOURS):
        warnings.append("Session duration exceeds 24 hours")
    return errors, warnings
