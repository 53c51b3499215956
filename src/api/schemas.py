"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.entities import Coordinate
from src.domain.enums import SessionStatus


# ── Requests ──────────────────────────────────────────────────────────


class CoordinateIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: Optional[datetime] = None
    accuracy: Optional[float] = Field(None, ge=0, description="Metres")
    speed: Optional[float] = Field(None, description="km/h")
    altitude: Optional[float] = Field(None, description="Metres")

    def to_domain(self) -> Coordinate:
        return Coordinate(
            latitude=self.latitude,
            longitude=self.longitude,
            timestamp=self.timestamp,
            accuracy=self.accuracy,
            speed=self.speed,
            altitude=self.altitude,
        )


class CheckInRequest(BaseModel):
    user_id: int
    location: Optional[CoordinateIn] = None
    check_in_time: Optional[datetime] = Field(
        None, description="Defaults to the server time."
    )


class CheckOutRequest(BaseModel):
    session_id: int
    user_id: int = Field(..., description="The acting user (owner or elevated role).")
    location: Optional[CoordinateIn] = None
    check_out_time: Optional[datetime] = None


class LogCreateRequest(CoordinateIn):
    actor_id: Optional[int] = None


class LogBatchRequest(BaseModel):
    actor_id: Optional[int] = None
    logs: list[CoordinateIn] = Field(..., min_length=1, max_length=1000)


class ForceCloseRequest(BaseModel):
    actor_id: int
    reason: Optional[str] = Field(None, max_length=500)


class RecalculateRequest(BaseModel):
    actor_id: int = Field(..., description="The acting user (owner or elevated role).")


class RecalculateAllRequest(BaseModel):
    actor_id: int
    force: bool = False
    limit: int = Field(50, ge=1, le=500)


# ── Responses ─────────────────────────────────────────────────────────


class RouteDataResponse(BaseModel):
    encoded_polyline: str
    geometry: list[tuple[float, float]] = []
    method: str
    accuracy: str
    duration_minutes: Optional[float] = None
    original_points: int = 0
    processed_points: int = 0
    cache_hit: bool = False
    calculated_at: Optional[str] = None

    model_config = {"from_attributes": True}


class SessionResponse(BaseModel):
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
    warnings: list[str] = []
    auto_closed_session_ids: list[int] = []
    route: Optional[RouteDataResponse] = None

    model_config = {"from_attributes": True}


class ActiveSessionResponse(BaseModel):
    active: bool
    session: Optional[SessionResponse] = None


class IngestResponse(BaseModel):
    session_id: int
    accepted: int
    log_ids: list[int] = []
    warnings: list[str] = []

    model_config = {"from_attributes": True}


class RecalculationFailure(BaseModel):
    session_id: int
    code: str
    detail: str


class RecalculationReportResponse(BaseModel):
    processed: int
    updated: int
    results: list[SessionResponse] = []
    failures: list[RecalculationFailure] = []

    model_config = {"from_attributes": True}


class RouteCacheStatsResponse(BaseModel):
    size: int
    max_entries: int
    ttl_seconds: float
    oldest_entry: Optional[float] = None
    newest_entry: Optional[float] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    routing_provider_configured: bool = False


class ErrorResponse(BaseModel):
    code: str
    detail: str
    errors: list[str] = []
