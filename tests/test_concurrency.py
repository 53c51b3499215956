"""
Concurrency safety tests.

Demonstrates:
1. Distributed lock semantics (mocked Redis) used to serialise check-ins.
2. The conditional close lets exactly one of two racing check-outs win.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.infrastructure.locks import (
    DistributedLock,
    LockNotAcquiredError,
    checkin_lock_factory,
)
from tests.conftest import T0, TestGPSSessionRepository


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:test-key", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_only_deletes_own_token(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        await lock.release()

        args = mock_redis.eval.call_args.args
        assert args[1:] == (1, "lock:test-key", lock.token)

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        with pytest.raises(LockNotAcquiredError, match="Could not acquire lock"):
            async with lock:
                pass
        mock_redis.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_context_manager_releases_on_error(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        with pytest.raises(ValueError):
            async with DistributedLock(mock_redis, "test-key"):
                raise ValueError("boom")
        mock_redis.eval.assert_awaited_once()

    def test_tokens_are_unique_per_holder(self):
        mock_redis = AsyncMock()
        first = DistributedLock(mock_redis, "k")
        second = DistributedLock(mock_redis, "k")
        assert first.token != second.token


class TestCheckInLockFactory:
    def test_keys_are_per_user(self):
        factory = checkin_lock_factory(AsyncMock(), ttl_seconds=15)
        lock = factory(42)
        assert lock.key == "lock:checkin:42"
        assert lock.ttl == 15
        assert factory(43).key != lock.key


class TestConditionalClose:
    """Two check-outs that both read the session as open."""

    @pytest.mark.asyncio
    async def test_only_first_close_wins(self, db_session, users):
        repo = TestGPSSessionRepository(db_session)
        gps_session = await repo.create(user_id=users["rep"].id, check_in=T0)

        first = await repo.close(
            gps_session.id,
            check_out=T0 + timedelta(hours=2),
            total_km=12.5,
            calculation_method="google_distance_matrix",
            route_accuracy="high",
        )
        second = await repo.close(
            gps_session.id,
            check_out=T0 + timedelta(hours=3),
            total_km=99.0,
            calculation_method="haversine_fallback",
            route_accuracy="approximate",
        )

        assert first is True
        assert second is False
        stored = await repo.refresh(gps_session)
        assert stored.total_km == 12.5
        assert stored.calculation_method == "google_distance_matrix"
