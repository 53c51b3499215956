"""
Admin / observability endpoints
===============================

GET    /api/v1/admin/health           -- simple health check
GET    /api/v1/admin/route-cache      -- route cache statistics
DELETE /api/v1/admin/route-cache      -- clear the route cache
POST   /api/v1/admin/recalculate-all  -- bulk recalculation (ADMIN only)
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import (
    get_distance_calculator,
    get_lifecycle_manager,
    get_route_cache,
)
from src.api.middleware import ADMIN_LIMIT, DEFAULT_LIMIT, limiter
from src.api.schemas import (
    ErrorResponse,
    HealthResponse,
    RecalculateAllRequest,
    RecalculationReportResponse,
    RouteCacheStatsResponse,
)
from src.infrastructure.route_cache import RouteCache
from src.services.distance_calculator import DistanceCalculator
from src.services.session_lifecycle import SessionLifecycleManager

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(calculator: DistanceCalculator = Depends(get_distance_calculator)):
    providers = (calculator.shaped_provider, calculator.pair_provider)
    return HealthResponse(
        routing_provider_configured=any(p is not None and p.enabled for p in providers)
    )


@router.get(
    "/route-cache",
    response_model=RouteCacheStatsResponse,
    summary="Route cache statistics",
)
@limiter.limit(DEFAULT_LIMIT)
async def route_cache_stats(
    request: Request,
    cache: RouteCache = Depends(get_route_cache),
):
    return RouteCacheStatsResponse(**cache.stats())


@router.delete(
    "/route-cache",
    response_model=RouteCacheStatsResponse,
    summary="Clear the route cache",
)
@limiter.limit(ADMIN_LIMIT)
async def clear_route_cache(
    request: Request,
    cache: RouteCache = Depends(get_route_cache),
):
    cache.clear()
    return RouteCacheStatsResponse(**cache.stats())


@router.post(
    "/recalculate-all",
    response_model=RecalculationReportResponse,
    summary="Recalculate closed sessions with no recorded distance",
    description=(
        "Targets closed sessions whose total is ~0 km (all closed sessions when "
        "``force`` is set), newest first.  A failing session is reported and "
        "does not stop the batch."
    ),
    responses={403: {"model": ErrorResponse}},
)
@limiter.limit(ADMIN_LIMIT)
async def recalculate_all(
    request: Request,
    body: RecalculateAllRequest,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    report = await manager.recalculate_all(body.actor_id, body.force, body.limit)
    return RecalculationReportResponse.model_validate(report)
