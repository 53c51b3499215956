"""Domain enumerations and state-transition rules."""

import enum


class SessionStatus(str, enum.Enum):
    NONE = "NONE"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


# State machine: maps current status -> set of valid next statuses
SESSION_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.NONE: {SessionStatus.OPEN},
    SessionStatus.OPEN: {SessionStatus.CLOSED},
    SessionStatus.CLOSED: set(),
}


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    LEAD_MR = "LEAD_MR"
    MR = "MR"


class RoutingStrategy(str, enum.Enum):
    SKIP = "SKIP"
    ALGORITHMIC = "ALGORITHMIC"
    SHAPED_ROUTE = "SHAPED_ROUTE"  # origin + waypoints -> path geometry
    POINT_PAIR = "POINT_PAIR"  # consecutive pairs -> distance/duration


class CalculationMethod(str, enum.Enum):
    INSUFFICIENT_POINTS = "insufficient_points"
    SKIPPED_STATIC = "skipped_static_location"
    ALGORITHMIC = "algorithmic"
    SHAPED_ROUTE = "google_directions"
    POINT_PAIR = "google_distance_matrix"
    MIXED = "mixed"
    FALLBACK = "haversine_fallback"
    CACHED = "route_cache"
    RETURN_JOURNEY = "return_journey_cached"
    FORCE_CLOSE = "force_close"
    AUTO_CLOSED = "auto_closed"


class RouteAccuracy(str, enum.Enum):
    HIGH = "high"  # every batch road-derived
    MIXED = "mixed"  # some batches fell back to great-circle
    STANDARD = "standard"  # great-circle judged accurate enough
    APPROXIMATE = "approximate"  # degraded or offline
