"""
Order-creation rate limiter
===========================

Sliding-window log keyed by requester identity (client id, else IP):
at most ``limit`` admitted order creations in any ``window`` seconds.

``check``:
1. drop timestamps with ``now - ts >= window``;
2. if ``limit`` or more remain, deny *without* recording the attempt;
3. otherwise record ``now`` and admit.

Admins and explicitly flagged internal requests bypass the limiter.

Two window stores share the algorithm:

* ``MemoryWindowStore`` -- per process, default.
* ``RedisWindowStore``  -- sorted set per key, updated by one Lua script so
  prune / count / record is atomic across API processes.
"""

from __future__ import annotations

import math
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

import redis.asyncio as aioredis

RETRY_MESSAGE = "⏱️ Too many orders! Please try again in a minute."


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_message: Optional[str] = None
    retry_after: int = 0


@dataclass(frozen=True)
class RateLimitInfo:
    requests_in_window: int
    remaining: int
    resets_in: int


class MemoryWindowStore:
    """
    Single event loop: no await between prune and record, so no lock.

    Idle keys are swept at most once per window from inside ``hit``, so the
    map holds only requesters seen within the last window or two.
    """

    def __init__(self):
        self._hits: dict[str, deque[float]] = {}
        self._swept_at: Optional[float] = None

    def _prune(self, key: str, now: float, window: float) -> deque[float]:
        hits = self._hits.setdefault(key, deque())
        while hits and now - hits[0] >= window:
            hits.popleft()
        return hits

    async def hit(
        self, key: str, now: float, window: float, limit: int
    ) -> tuple[bool, Optional[float]]:
        """Returns ``(admitted, oldest_timestamp_in_window)``."""
        if self._swept_at is None or now - self._swept_at >= window:
            await self.cleanup(now, window)
            self._swept_at = now
        hits = self._prune(key, now, window)
        if len(hits) >= limit:
            return False, hits[0]
        hits.append(now)
        return True, hits[0]

    async def peek(self, key: str, now: float, window: float) -> list[float]:
        hits = self._prune(key, now, window)
        snapshot = list(hits)
        if not hits:
            del self._hits[key]
        return snapshot

    async def cleanup(self, now: float, window: float) -> None:
        for key in list(self._hits):
            if not self._prune(key, now, window):
                del self._hits[key]


class RedisWindowStore:
    # KEYS[1] window key; ARGV: now, window, limit, member
    HIT_SCRIPT = """
    redis.call("ZREMRANGEBYSCORE", KEYS[1], "-inf", ARGV[1] - ARGV[2])
    local count = redis.call("ZCARD", KEYS[1])
    local oldest = redis.call("ZRANGE", KEYS[1], 0, 0, "WITHSCORES")[2]
    if count >= tonumber(ARGV[3]) then
        return {0, oldest}
    end
    redis.call("ZADD", KEYS[1], ARGV[1], ARGV[4])
    redis.call("EXPIRE", KEYS[1], math.ceil(ARGV[2]))
    return {1, oldest or ARGV[1]}
    """

    def __init__(self, client: aioredis.Redis, prefix: str = "ratelimit:orders"):
        self.redis = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def hit(
        self, key: str, now: float, window: float, limit: int
    ) -> tuple[bool, Optional[float]]:
        admitted, oldest = await self.redis.eval(
            self.HIT_SCRIPT,
            1,
            self._key(key),
            now,
            window,
            limit,
            f"{now}:{uuid.uuid4().hex[:8]}",
        )
        return bool(int(admitted)), float(oldest) if oldest is not None else None

    async def peek(self, key: str, now: float, window: float) -> list[float]:
        # ZREMRANGEBYSCORE uses an inclusive bound: drops now - ts >= window
        await self.redis.zremrangebyscore(self._key(key), "-inf", now - window)
        members = await self.redis.zrange(self._key(key), 0, -1, withscores=True)
        return [score for _, score in members]

    async def cleanup(self, now: float, window: float) -> None:
        # keys expire on their own
        return None


class OrderRateLimiter:
    def __init__(
        self,
        store: MemoryWindowStore | RedisWindowStore,
        limit: int = 5,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.limit = limit
        self.window = window_seconds
        self.clock = clock

    async def check(
        self, key: str, *, privileged: bool = False, internal: bool = False
    ) -> RateLimitDecision:
        if privileged or internal:
            return RateLimitDecision(allowed=True)

        now = self.clock()
        admitted, oldest = await self.store.hit(key, now, self.window, self.limit)
        if admitted:
            return RateLimitDecision(allowed=True)

        retry_after = self.window
        if oldest is not None:
            retry_after = max(1, math.ceil(oldest + self.window - now))
        return RateLimitDecision(
            allowed=False, retry_message=RETRY_MESSAGE, retry_after=retry_after
        )

    async def info(self, key: str) -> RateLimitInfo:
        now = self.clock()
        hits = await self.store.peek(key, now, self.window)
        resets_in = math.ceil(hits[0] + self.window - now) if hits else 0
        return RateLimitInfo(
            requests_in_window=len(hits),
            remaining=max(0, self.limit - len(hits)),
            resets_in=resets_in,
        )

    async def cleanup(self) -> None:
        await self.store.cleanup(self.clock(), self.window)
