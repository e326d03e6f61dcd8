"""
Redis-based distributed lock.

Used by the notification dispatch worker so that, with several API
processes running, only one of them drains the outbox per cycle.  Handoff
transitions do *not* use this lock; they are serialised by the conditional
``UPDATE ... WHERE handoff_status = :expected`` in ``TripRepository``.

Acquire is ``SET NX EX``; release is a Lua compare-and-delete so a worker
whose lock already expired cannot delete a successor's lock.
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


class LockNotAcquired(RuntimeError):
    pass


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"tripguard:lock:{key}"
        self.ttl = ttl_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try once to acquire. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def release(self) -> bool:
        """Release only if we still own the lock.  True if it was deleted."""
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()
