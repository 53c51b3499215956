"""
Redis-based distributed lock.

Serialises check-ins per user (key ``checkin:<user_id>``) so two devices
of the same rep cannot both observe "no open session" and open two.

Implementation uses SET NX EX for acquire and a Lua script for
atomic check-and-delete on release.  The TTL bounds how long a crashed
holder can block the user.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquiredError(RuntimeError):
    def __init__(self, key: str):
        super().__init__(f"Could not acquire lock: {key}")
        self.key = key


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def release(self) -> None:
        """Release only if we still own the lock."""
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquiredError(self.key)
        return self

    async def __aexit__(self, *args):
        await self.release()


def checkin_lock_factory(client: aioredis.Redis, ttl_seconds: int = 30):
    """Build the per-user lock factory the lifecycle manager expects."""

    def factory(user_id: int) -> DistributedLock:
        return DistributedLock(client, f"checkin:{user_id}", ttl_seconds)

    return factory
