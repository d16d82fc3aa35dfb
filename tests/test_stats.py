"""Ratings, driver statistics, badges and the admin dashboard."""

import pytest

from taxi_dispatch.domain.enums import UserRole
from taxi_dispatch.domain.stats import (
    AdminStats,
    DriverStats,
    average_rating,
    badges_for,
    clamp_stars,
    round_half_up,
)
from taxi_dispatch.infrastructure.repositories import (
    OrderRepository,
    RatingRepository,
    UserRepository,
)
from taxi_dispatch.services.ratings import AdminStatsCache, RatingService
from tests.conftest import FakeClock, add_order, add_user

DRIVER = "2001"


def _service(session, cache=None) -> RatingService:
    return RatingService(
        RatingRepository(session),
        OrderRepository(session),
        UserRepository(session),
        cache=cache,
    )


async def _completed_order(engine, driver_id: str = DRIVER):
    order = await add_order(engine)
    await engine.accept_order(order.order_id, driver_id)
    await engine.complete_order(order.order_id)
    return order


class TestPureHelpers:
    @pytest.mark.parametrize(
        "value, expected", [(4.25, 4.3), (4.24, 4.2), (4.0, 4.0)]
    )
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_average_of_nothing_is_zero(self):
        assert average_rating(0, 0) == 0.0

    @pytest.mark.parametrize("stars, expected", [(0, 1), (3.7, 3), (5, 5), (9, 5)])
    def test_clamp_stars(self, stars, expected):
        assert clamp_stars(stars) == expected


class TestBadges:
    def test_no_badges(self):
        assert badges_for(DriverStats(3, 2, 4.0)) is None

    def test_top_driver(self):
        assert badges_for(DriverStats(1, 1, 4.8)) == "⭐ Top driver"

    def test_badges_join_in_display_order(self):
        stats = DriverStats(completed_orders=120, total_ratings=60, average_rating=5.0)
        assert badges_for(stats) == (
            "⭐ Top driver 🏆 Legend 🔥 Active 💎 Premium ⚡ Perfect"
        )

    def test_premium_needs_both_thresholds(self):
        assert badges_for(DriverStats(20, 10, 4.5)) == "💎 Premium"
        assert badges_for(DriverStats(19, 10, 4.5)) is None


class TestAdminStatsCache:
    def test_expires_after_ttl(self):
        clock = FakeClock()
        cache = AdminStatsCache(30, clock=clock)
        stats = AdminStats(total_orders=3)

        assert cache.get() is None
        cache.put(stats)
        clock.advance(29)
        assert cache.get() == stats
        clock.advance(1)
        assert cache.get() is None

    def test_clear(self):
        cache = AdminStatsCache(30)
        cache.put(AdminStats())
        cache.clear()
        assert cache.get() is None


class TestRatingService:
    @pytest.mark.asyncio
    async def test_average_of_three_ratings(self, engine, db_session):
        await add_user(db_session, "1001")
        await add_user(db_session, DRIVER, UserRole.DRIVER)
        service = _service(db_session)

        for stars in (5, 4, 3):
            order = await _completed_order(engine)
            assert await service.rate_order(order.order_id, stars) is True

        stats = await service.driver_stats(DRIVER)
        assert stats == DriverStats(
            completed_orders=3, total_ratings=3, average_rating=4.0
        )
        assert await service.driver_badges(DRIVER) is None

    @pytest.mark.asyncio
    async def test_second_rating_refused(self, engine, db_session):
        await add_user(db_session, "1001")
        await add_user(db_session, DRIVER, UserRole.DRIVER)
        service = _service(db_session)
        order = await _completed_order(engine)

        assert await service.rate_order(order.order_id, 5) is True
        assert await service.rate_order(order.order_id, 1) is False
        stats = await service.driver_stats(DRIVER)
        assert stats.average_rating == 5.0

    @pytest.mark.asyncio
    async def test_only_completed_orders_can_be_rated(self, engine, db_session):
        await add_user(db_session, "1001")
        await add_user(db_session, DRIVER, UserRole.DRIVER)
        service = _service(db_session)
        order = await add_order(engine)
        await engine.accept_order(order.order_id, DRIVER)

        assert await service.rate_order(order.order_id, 5) is False
        assert await service.rate_order("missing", 5) is False

    @pytest.mark.asyncio
    async def test_stars_are_clamped(self, engine, db_session):
        await add_user(db_session, "1001")
        await add_user(db_session, DRIVER, UserRole.DRIVER)
        service = _service(db_session)
        order = await _completed_order(engine)

        await service.rate_order(order.order_id, 9, comment="great")
        rating = await RatingRepository(db_session).get_for_order(order.order_id)
        assert rating.stars == 5
        assert rating.comment == "great"

    @pytest.mark.asyncio
    async def test_admin_stats(self, engine, db_session):
        await add_user(db_session, "1001")
        await add_user(db_session, DRIVER, UserRole.DRIVER)
        await add_user(db_session, "2002", UserRole.DRIVER, blocked=True)
        service = _service(db_session)

        done = await _completed_order(engine)
        await service.rate_order(done.order_id, 4)
        await add_order(engine)
        taken = await add_order(engine)
        await engine.accept_order(taken.order_id, DRIVER)
        cancelled = await add_order(engine)
        await engine.cancel_order(cancelled.order_id)

        stats = await service.admin_stats()
        assert stats.total_orders == 4
        assert stats.completed_orders == 1
        assert stats.active_drivers == 1
        assert stats.pending_orders == 1
        assert stats.average_rating == 4.0

    @pytest.mark.asyncio
    async def test_admin_stats_served_from_cache(self, engine, db_session):
        clock = FakeClock()
        service = _service(db_session, cache=AdminStatsCache(30, clock=clock))

        first = await service.admin_stats()
        await add_order(engine)
        assert await service.admin_stats() == first

        clock.advance(30)
        assert (await service.admin_stats()).total_orders == 1
