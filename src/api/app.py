"""
FastAPI application factory.

* Registers routes for tracking and admin.
* Builds the process-wide route cache, routing providers and distance
  calculator once, and closes the provider HTTP client on shutdown.
* Renders ``TrackingError`` as ``{"code", "detail"}`` with its status.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, tracking
from src.config import Settings, settings as default_settings
from src.domain.errors import TrackingError, ValidationError
from src.infrastructure.providers import (
    GoogleDirectionsProvider,
    GoogleDistanceMatrixProvider,
    GoogleMapsClient,
)
from src.infrastructure.redis_client import close_redis
from src.infrastructure.route_cache import RouteCache
from src.services.distance_calculator import DistanceCalculator

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_distance_calculator(
    settings: Settings,
) -> tuple[DistanceCalculator, GoogleMapsClient]:
    cache = RouteCache(
        ttl_seconds=settings.route_cache_ttl_hours * 3600,
        max_entries=settings.route_cache_max_entries,
        precision=settings.route_cache_precision,
        match_tolerance_km=settings.route_cache_match_tolerance_km,
    )
    client = GoogleMapsClient(
        api_key=settings.google_maps_api_key,
        base_url=settings.google_maps_base_url,
        timeout_seconds=settings.provider_timeout_seconds,
        mode=settings.routing_mode,
        region=settings.routing_region,
    )
    if not settings.google_maps_api_key:
        logger.warning("GOOGLE_MAPS_API_KEY not set; distances will be great-circle only")
    calculator = DistanceCalculator.from_settings(
        settings,
        cache,
        shaped_provider=GoogleDirectionsProvider(client),
        pair_provider=GoogleDistanceMatrixProvider(client),
    )
    return calculator, client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the shared provider HTTP client and Redis pool on shutdown."""
    yield
    await app.state.maps_client.aclose()
    await close_redis()


async def tracking_error_handler(request: Request, exc: TrackingError) -> JSONResponse:
    content = {"code": exc.code, "detail": exc.message}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    app = FastAPI(
        title="Field Force GPS Tracking API",
        description=(
            "Tracks field representatives' working sessions from check-in to "
            "check-out and turns their GPS trail into a road distance while "
            "keeping paid routing calls to a minimum."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    calculator, maps_client = build_distance_calculator(settings)
    app.state.distance_calculator = calculator
    app.state.route_cache = calculator.cache
    app.state.maps_client = maps_client

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(TrackingError, tracking_error_handler)

    # Routers
    app.include_router(tracking.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
