"""FastAPI dependency injection helpers."""

from fastapi import Depends, Request
import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.infrastructure.database import async_session_factory
from src.infrastructure.locks import checkin_lock_factory
from src.infrastructure.redis_client import get_redis
from src.infrastructure.repositories import (
    DailySummaryRepository,
    GPSLogRepository,
    GPSSessionRepository,
    UserRepository,
)
from src.infrastructure.route_cache import RouteCache
from src.services.distance_calculator import DistanceCalculator
from src.services.session_lifecycle import SessionLifecycleManager


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_distance_calculator(request: Request) -> DistanceCalculator:
    return request.app.state.distance_calculator


def get_route_cache(request: Request) -> RouteCache:
    return request.app.state.route_cache


async def get_lifecycle_manager(
    db: AsyncSession = Depends(get_db),
    calculator: DistanceCalculator = Depends(get_distance_calculator),
    redis: aioredis.Redis = Depends(get_redis),
) -> SessionLifecycleManager:
    return SessionLifecycleManager(
        sessions=GPSSessionRepository(db),
        logs=GPSLogRepository(db),
        summaries=DailySummaryRepository(db),
        users=UserRepository(db),
        calculator=calculator,
        lock_factory=checkin_lock_factory(redis, settings.checkin_lock_ttl_seconds),
        elevated_roles=settings.elevated_roles,
        max_clock_skew_seconds=settings.max_clock_skew_seconds,
        accuracy_threshold_m=settings.gps_accuracy_threshold_m,
    )
