"""
Per-key try-locks guarding order claims and ratings.

Two interchangeable implementations with the same interface:

* ``LocalLock``       -- in-process, for a single API worker (default).
* ``DistributedLock`` -- Redis ``SET NX EX`` acquire with a Lua
  check-and-delete release, for several API processes.

Both are *try*-locks: ``acquire`` never waits, so a caller that loses the
race is told so immediately.  The conditional UPDATE in the repository
remains the final arbiter.
"""

from __future__ import annotations

import uuid
from typing import ClassVar, Union

import redis.asyncio as aioredis

from taxi_dispatch.config import settings
from taxi_dispatch.infrastructure.redis_client import get_redis


class LocalLock:
    _held: ClassVar[set[str]] = set()

    def __init__(self, key: str):
        self.key = f"lock:{key}"
        self.owned = False

    async def acquire(self) -> bool:
        # no await between the check and the add: atomic on the event loop
        if self.key in self._held:
            return False
        self._held.add(self.key)
        self.owned = True
        return True

    async def release(self) -> None:
        if self.owned:
            self._held.discard(self.key)
            self.owned = False

    async def __aenter__(self):
        if not await self.acquire():
            raise RuntimeError(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


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
        """Release only if we still own the lock (atomic via Lua)."""
        lua = """
        if redis.call("get", KEYS[1]) == ARGV[1] then
            return redis.call("del", KEYS[1])
        else
            return 0
        end
        """
        await self.redis.eval(lua, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        acquired = await self.acquire()
        if not acquired:
            raise RuntimeError(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


Lock = Union[LocalLock, DistributedLock]


async def make_lock(key: str) -> Lock:
    """Lock factory selected by ``settings.lock_backend``."""
    if settings.lock_backend == "redis":
        return DistributedLock(
            await get_redis(), key, ttl_seconds=settings.lock_ttl_seconds
        )
    return LocalLock(key)
