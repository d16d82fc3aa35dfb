"""
Concurrency safety tests.

Demonstrates:
1. Many drivers racing for one order: exactly one wins.
2. The conditional UPDATE alone rejects a stale claim.
3. An access code promotes at most one user.
4. A completed order collects at most one rating.
5. The per-key try-locks (in-process and Redis) never admit two holders.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from taxi_dispatch.domain.enums import OrderStatus, UserRole
from taxi_dispatch.domain.results import Failure, FailureKind
from taxi_dispatch.infrastructure.locks import DistributedLock, LocalLock
from taxi_dispatch.infrastructure.repositories import (
    AccessCodeRepository,
    OrderRepository,
    RatingRepository,
    UserRepository,
)
from taxi_dispatch.services.access_codes import AccessCodeIssuer
from taxi_dispatch.services.ratings import RatingService
from tests.conftest import add_order, add_user, build_engine

DRIVERS = [f"20{i:02d}" for i in range(10)]


class _AlwaysFree:
    """Lock that never refuses, leaving only the UPDATE guard in play."""

    async def acquire(self) -> bool:
        return True

    async def release(self) -> None:
        return None


async def _always_free(key: str) -> _AlwaysFree:
    return _AlwaysFree()


async def _seed_drivers_and_order(session_factory) -> str:
    async with session_factory() as session:
        await add_user(session, "1001")
        for driver_id in DRIVERS:
            await add_user(session, driver_id, UserRole.DRIVER)
        order = await add_order(build_engine(session))
        await session.commit()
        return order.order_id


class TestAcceptRace:
    @pytest.mark.asyncio
    async def test_exactly_one_driver_wins(self, session_factory):
        order_id = await _seed_drivers_and_order(session_factory)

        async def attempt(driver_id: str):
            async with session_factory() as session:
                result = await build_engine(session).accept_order(order_id, driver_id)
                await session.commit()
                return result

        results = await asyncio.gather(*(attempt(d) for d in DRIVERS))

        winners = [r for r in results if not isinstance(r, Failure)]
        losers = [r for r in results if isinstance(r, Failure)]
        assert len(winners) == 1
        assert len(losers) == len(DRIVERS) - 1
        assert all(f.kind == FailureKind.NOT_ACCEPTABLE for f in losers)

        async with session_factory() as session:
            stored = await OrderRepository(session).get_by_id(order_id)
            assert stored.status == OrderStatus.ACCEPTED
            assert stored.driver_id == winners[0].driver_id

    @pytest.mark.asyncio
    async def test_update_guard_rejects_stale_claim(self, session_factory):
        order_id = await _seed_drivers_and_order(session_factory)

        async def attempt(driver_id: str):
            async with session_factory() as session:
                engine = build_engine(session, lock_factory=_always_free)
                result = await engine.accept_order(order_id, driver_id)
                await session.commit()
                return result

        results = await asyncio.gather(attempt(DRIVERS[0]), attempt(DRIVERS[1]))
        assert sum(not isinstance(r, Failure) for r in results) == 1


class TestAccessCodeRace:
    @pytest.mark.asyncio
    async def test_code_promotes_one_user(self, session_factory):
        async with session_factory() as session:
            issuer = AccessCodeIssuer(
                AccessCodeRepository(session), UserRepository(session)
            )
            code = (await issuer.generate("admin")).code
            await session.commit()

        async def redeem(user_id: str):
            async with session_factory() as session:
                issuer = AccessCodeIssuer(
                    AccessCodeRepository(session), UserRepository(session)
                )
                result = await issuer.register_driver_with_code(user_id, code)
                await session.commit()
                return result

        results = await asyncio.gather(redeem("3001"), redeem("3002"))
        assert sum(not isinstance(r, Failure) for r in results) == 1

        async with session_factory() as session:
            drivers = await UserRepository(session).list_by_role(UserRole.DRIVER)
            assert len(drivers) == 1


class TestRatingRace:
    @pytest.mark.asyncio
    async def test_only_one_rating_stored(self, session_factory):
        async with session_factory() as session:
            await add_user(session, "1001")
            await add_user(session, "2001", UserRole.DRIVER)
            engine = build_engine(session)
            order = await add_order(engine)
            await engine.accept_order(order.order_id, "2001")
            await engine.complete_order(order.order_id)
            await session.commit()

        async def rate(stars: int) -> bool:
            async with session_factory() as session:
                service = RatingService(
                    RatingRepository(session),
                    OrderRepository(session),
                    UserRepository(session),
                )
                ok = await service.rate_order(order.order_id, stars)
                await session.commit()
                return ok

        results = await asyncio.gather(rate(5), rate(1), rate(3))
        assert results.count(True) == 1

        async with session_factory() as session:
            assert len(await RatingRepository(session).list_all()) == 1


class TestLocalLock:
    @pytest.mark.asyncio
    async def test_second_holder_refused(self):
        first, second = LocalLock("order:x"), LocalLock("order:x")
        assert await first.acquire() is True
        assert await second.acquire() is False
        await first.release()
        assert await second.acquire() is True
        await second.release()

    @pytest.mark.asyncio
    async def test_release_by_non_owner_is_noop(self):
        owner, other = LocalLock("order:y"), LocalLock("order:y")
        await owner.acquire()
        await other.release()
        assert await LocalLock("order:y").acquire() is False
        await owner.release()

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        async with LocalLock("order:z"):
            with pytest.raises(RuntimeError, match="Could not acquire lock"):
                async with LocalLock("order:z"):
                    pass


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "order:1", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:order:1", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "order:1", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_calls_eval(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "order:1", ttl_seconds=10)
        await lock.acquire()
        await lock.release()

        mock_redis.eval.assert_called_once()
