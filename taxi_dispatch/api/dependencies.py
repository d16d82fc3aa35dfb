"""FastAPI dependency injection helpers."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from taxi_dispatch.config import settings
from taxi_dispatch.domain.enums import MatchingPolicy
from taxi_dispatch.domain.pricing import default_tariffs
from taxi_dispatch.infrastructure.database import async_session_factory
from taxi_dispatch.infrastructure.redis_client import get_redis
from taxi_dispatch.infrastructure.repositories import (
    AccessCodeRepository,
    ChatRepository,
    OrderRepository,
    RatingRepository,
    TariffRepository,
    UserRepository,
)
from taxi_dispatch.services.access_codes import AccessCodeIssuer
from taxi_dispatch.services.notifications import LifecycleNotifier
from taxi_dispatch.services.orders import OrderLifecycleEngine
from taxi_dispatch.services.rate_limiter import (
    MemoryWindowStore,
    OrderRateLimiter,
    RedisWindowStore,
)
from taxi_dispatch.services.ratings import AdminStatsCache, RatingService
from taxi_dispatch.workers import notifier as _notifier

# process-wide state shared across requests
_memory_store = MemoryWindowStore()
_stats_cache = AdminStatsCache(ttl_seconds=settings.admin_stats_ttl_seconds)


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_dispatcher() -> _notifier.NotificationDispatcher:
    return _notifier.dispatcher


def get_notifier(
    dispatcher: _notifier.NotificationDispatcher = Depends(get_dispatcher),
) -> LifecycleNotifier:
    return LifecycleNotifier(dispatcher, settings.webapp_url)


async def get_order_rate_limiter() -> OrderRateLimiter:
    if settings.rate_limit_backend == "redis":
        store = RedisWindowStore(await get_redis())
    else:
        store = _memory_store
    return OrderRateLimiter(
        store,
        limit=settings.order_rate_limit,
        window_seconds=settings.order_rate_window_seconds,
    )


def get_stats_cache() -> AdminStatsCache:
    return _stats_cache


# ── Service builders ─────────────────────────────────────────────────


def tariff_repository(db: AsyncSession) -> TariffRepository:
    return TariffRepository(db, default_tariffs(settings.default_tariffs))


def get_engine(db: AsyncSession = Depends(get_db)) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(
        OrderRepository(db),
        UserRepository(db),
        tariff_repository(db),
        ChatRepository(db),
        policy=MatchingPolicy(settings.matching_policy),
        bid_range=(settings.bid_min_price, settings.bid_max_price),
        purge_chat_on_complete=settings.purge_chat_on_complete,
    )


def get_code_issuer(db: AsyncSession = Depends(get_db)) -> AccessCodeIssuer:
    return AccessCodeIssuer(
        AccessCodeRepository(db),
        UserRepository(db),
        length=settings.access_code_length,
        max_attempts=settings.access_code_max_attempts,
    )


def get_rating_service(
    db: AsyncSession = Depends(get_db),
    cache: AdminStatsCache = Depends(get_stats_cache),
) -> RatingService:
    return RatingService(
        RatingRepository(db), OrderRepository(db), UserRepository(db), cache=cache
    )
