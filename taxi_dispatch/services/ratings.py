"""
Rating & Stats Aggregator
=========================

* ``rate_order`` stores at most one rating per completed order.  A per-order
  try-lock keeps two concurrent submissions apart and the unique constraint
  on ``ratings.order_id`` is the final guard.
* Driver stats and badges are computed from the orders and ratings tables
  on every call.
* Admin dashboard totals are cached for a few seconds (display only).
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Optional

from taxi_dispatch.domain.enums import ACTIVE_STATUSES, OrderStatus
from taxi_dispatch.domain.stats import (
    AdminStats,
    DriverStats,
    average_rating,
    badges_for,
    clamp_stars,
)
from taxi_dispatch.infrastructure.locks import Lock, make_lock
from taxi_dispatch.infrastructure.repositories import (
    OrderRepository,
    RatingRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


class AdminStatsCache:
    """Single-slot TTL cache shared by all requests of one process."""

    def __init__(self, ttl_seconds: float = 30, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self.clock = clock
        self._value: Optional[AdminStats] = None
        self._stored_at = 0.0

    def get(self) -> Optional[AdminStats]:
        if self._value is None or self.clock() - self._stored_at >= self.ttl:
            return None
        return self._value

    def put(self, value: AdminStats) -> None:
        self._value = value
        self._stored_at = self.clock()

    def clear(self) -> None:
        self._value = None


class RatingService:
    def __init__(
        self,
        ratings: RatingRepository,
        orders: OrderRepository,
        users: UserRepository,
        *,
        cache: Optional[AdminStatsCache] = None,
        lock_factory: Callable[[str], Awaitable[Lock]] = make_lock,
    ):
        self.ratings = ratings
        self.orders = orders
        self.users = users
        self.cache = cache
        self.lock_factory = lock_factory

    async def rate_order(
        self, order_id: str, stars: float, comment: Optional[str] = None
    ) -> bool:
        lock = await self.lock_factory(f"rating:{order_id}")
        if not await lock.acquire():
            return False
        try:
            order = await self.orders.get_by_id(order_id, fresh=True)
            if (
                order is None
                or order.status != OrderStatus.COMPLETED
                or not order.driver_id
            ):
                return False
            if await self.ratings.get_for_order(order_id) is not None:
                return False

            rating = await self.ratings.add(
                order_id=order_id,
                driver_id=order.driver_id,
                stars=clamp_stars(stars),
                comment=comment,
            )
        finally:
            await lock.release()

        if rating is None:
            return False
        logger.info(
            "Order %s rated %d for driver %s", order_id, rating.stars, rating.driver_id
        )
        return True

    async def driver_stats(self, driver_id: str) -> DriverStats:
        completed = await self.orders.count_completed_for_driver(driver_id)
        count, total = await self.ratings.summary(driver_id)
        return DriverStats(
            completed_orders=completed,
            total_ratings=count,
            average_rating=average_rating(total, count),
        )

    async def driver_badges(self, driver_id: str) -> Optional[str]:
        return badges_for(await self.driver_stats(driver_id))

    async def admin_stats(self) -> AdminStats:
        if self.cache is not None:
            cached = self.cache.get()
            if cached is not None:
                return cached

        count, total = await self.ratings.summary()
        pending = 0
        for status in ACTIVE_STATUSES:
            pending += await self.orders.count(status)
        stats = AdminStats(
            total_orders=await self.orders.count(),
            completed_orders=await self.orders.count(OrderStatus.COMPLETED),
            active_drivers=await self.users.count_active_drivers(),
            pending_orders=pending,
            average_rating=average_rating(total, count),
        )
        if self.cache is not None:
            self.cache.put(stats)
        return stats
