"""
Domain entities and value objects.

Patterns used
-------------
- **State Pattern** on GPS sessions: ``ensure_transition`` enforces the
  NONE -> OPEN -> CLOSED lifecycle.
- ``Coordinate`` is an immutable value object; everything downstream of
  ingestion (routing decision, cache keys, providers) works on it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .enums import (
    CalculationMethod,
    RouteAccuracy,
    RoutingStrategy,
    SESSION_TRANSITIONS,
    SessionStatus,
)
from .errors import AlreadyClosedError, SessionNotOpenError, StateError


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float
    timestamp: Optional[datetime] = None
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    altitude: Optional[float] = None

    def as_pair(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass
class RouteAnalysis:
    """Output of the routing decision engine.  Not persisted."""

    movement_distance_km: float = 0.0
    displacement_km: float = 0.0
    straightness: float = 0.0
    movement_radius_km: float = 0.0
    direction_changes: int = 0
    skip_routing: bool = False
    use_algorithmic: bool = False
    strategy: RoutingStrategy = RoutingStrategy.SKIP
    reasoning: list[str] = field(default_factory=list)


@dataclass
class DistanceResult:
    distance_km: float
    method: CalculationMethod
    accuracy: RouteAccuracy
    duration_minutes: Optional[float] = None
    api_calls_made: int = 0
    segments_processed: int = 0
    coordinates_processed: int = 0
    cache_hit: bool = False
    warnings: list[str] = field(default_factory=list)
    geometry: list[tuple[float, float]] = field(default_factory=list)
    encoded_polyline: str = ""
    analysis: Optional[RouteAnalysis] = None


@dataclass
class PolylineData:
    """Derived route geometry stored alongside a session."""

    encoded_polyline: str
    geometry: list[tuple[float, float]]
    method: str
    accuracy: str
    duration_minutes: Optional[float] = None
    original_points: int = 0
    processed_points: int = 0
    cache_hit: bool = False
    calculated_at: Optional[str] = None

    @classmethod
    def from_result(
        cls, result: DistanceResult, original_points: int
    ) -> "PolylineData":
        return cls(
            encoded_polyline=result.encoded_polyline,
            geometry=list(result.geometry),
            method=result.method.value,
            accuracy=result.accuracy.value,
            duration_minutes=result.duration_minutes,
            original_points=original_points,
            processed_points=result.coordinates_processed,
            cache_hit=result.cache_hit,
            calculated_at=datetime.now(timezone.utc).isoformat(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "encoded_polyline": self.encoded_polyline,
            "geometry": [[lat, lng] for lat, lng in self.geometry],
            "method": self.method,
            "accuracy": self.accuracy,
            "duration_minutes": self.duration_minutes,
            "original_points": self.original_points,
            "processed_points": self.processed_points,
            "cache_hit": self.cache_hit,
            "calculated_at": self.calculated_at,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["PolylineData"]:
        if not data:
            return None
        return cls(
            encoded_polyline=data.get("encoded_polyline", ""),
            geometry=[(p[0], p[1]) for p in data.get("geometry", [])],
            method=data.get("method", "unknown"),
            accuracy=data.get("accuracy", RouteAccuracy.STANDARD.value),
            duration_minutes=data.get("duration_minutes"),
            original_points=data.get("original_points", 0),
            processed_points=data.get("processed_points", 0),
            cache_hit=data.get("cache_hit", False),
            calculated_at=data.get("calculated_at"),
        )


# ── Session lifecycle ─────────────────────────────────────────────────


def session_status(check_out: Optional[datetime]) -> SessionStatus:
    return SessionStatus.OPEN if check_out is None else SessionStatus.CLOSED


def ensure_transition(
    session_id: int, current: SessionStatus, new_status: SessionStatus
) -> None:
    """Raise the matching ``StateError`` if *current* -> *new_status* is illegal."""
    if new_status in SESSION_TRANSITIONS.get(current, set()):
        return
    if current == SessionStatus.CLOSED and new_status == SessionStatus.CLOSED:
        raise AlreadyClosedError(session_id)
    if current != SessionStatus.OPEN:
        raise SessionNotOpenError(session_id)
    raise StateError(f"Cannot transition session {session_id} from {current} to {new_status}")


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class SessionOutcome:
    """Structured success result returned by every lifecycle operation."""

    session_id: int
    user_id: int
    status: SessionStatus
    check_in: datetime
    check_out: Optional[datetime] = None
    total_km: float = 0.0
    calculation_method: Optional[str] = None
    route_accuracy: Optional[str] = None
    duration_hours: Optional[float] = None
    coordinate_count: int = 0
    api_calls_made: int = 0
    start_lat: Optional[float] = None
    start_lng: Optional[float] = None
    end_lat: Optional[float] = None
    end_lng: Optional[float] = None
    warnings: list[str] = field(default_factory=list)
    auto_closed_session_ids: list[int] = field(default_factory=list)
    route: Optional[PolylineData] = None


@dataclass
class IngestOutcome:
    session_id: int
    accepted: int
    log_ids: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class RecalculationReport:
    processed: int = 0
    updated: int = 0
    results: list[SessionOutcome] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)
