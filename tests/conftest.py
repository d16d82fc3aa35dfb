"""
Shared test fixtures.

Uses a throwaway SQLite file per test (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  Every session gets its own connection, so
racing sessions contend on SQLite's write lock the way concurrent requests
contend on PostgreSQL rows.
"""

from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from taxi_dispatch.config import settings
from taxi_dispatch.domain.enums import MatchingPolicy, OrderType, UserRole
from taxi_dispatch.domain.pricing import default_tariffs
from taxi_dispatch.infrastructure.database import Base
from taxi_dispatch.infrastructure.models import UserModel
from taxi_dispatch.infrastructure.repositories import (
    ChatRepository,
    OrderRepository,
    TariffRepository,
    UserRepository,
)
from taxi_dispatch.infrastructure.telegram import TelegramChannel
from taxi_dispatch.services.orders import OrderLifecycleEngine
from taxi_dispatch.services.rate_limiter import MemoryWindowStore, OrderRateLimiter
from taxi_dispatch.services.ratings import AdminStatsCache
from taxi_dispatch.workers.notifier import NotificationDispatcher

TEST_DB_URL = "sqlite+aiosqlite:///{path}"


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(
        TEST_DB_URL.format(path=tmp_path / "dispatch.db"), echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


def build_engine(
    session: AsyncSession, policy: MatchingPolicy = MatchingPolicy.FIXED, **kwargs
) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(
        OrderRepository(session),
        UserRepository(session),
        TariffRepository(session, default_tariffs(settings.default_tariffs)),
        ChatRepository(session),
        policy=policy,
        **kwargs,
    )


@pytest.fixture
def engine(db_session) -> OrderLifecycleEngine:
    return build_engine(db_session)


@pytest.fixture
def bidding_engine(db_session) -> OrderLifecycleEngine:
    return build_engine(db_session, MatchingPolicy.BIDDING)


async def add_user(
    session: AsyncSession,
    user_id: str,
    role: UserRole = UserRole.CLIENT,
    name: Optional[str] = None,
    blocked: bool = False,
) -> UserModel:
    user = await UserRepository(session).create(
        user_id=user_id, role=role, name=name or f"user-{user_id}"
    )
    if blocked:
        user.is_blocked = True
        await session.flush()
    return user


async def add_order(
    engine: OrderLifecycleEngine,
    client_id: str = "1001",
    order_type: OrderType = OrderType.TAXI,
    **kwargs,
):
    return await engine.create_order(
        client_id=client_id,
        order_type=order_type,
        from_address=kwargs.pop("from_address", "Khreshchatyk 1"),
        to_address=kwargs.pop("to_address", "Boryspil Airport"),
        **kwargs,
    )


# ── API ───────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(TelegramChannel(None), queue_size=100)


@pytest_asyncio.fixture
async def client(session_factory, dispatcher, clock):
    """AsyncClient against the app with the DB, queue and clock swapped out."""
    from taxi_dispatch.api.app import create_app
    from taxi_dispatch.api.dependencies import (
        get_db,
        get_dispatcher,
        get_order_rate_limiter,
        get_stats_cache,
    )
    from taxi_dispatch.api.middleware import limiter

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    rate_limiter = OrderRateLimiter(
        MemoryWindowStore(), limit=5, window_seconds=60, clock=clock
    )

    with (
        patch(
            "taxi_dispatch.workers.notifier.start_notification_worker",
            new_callable=AsyncMock,
        ),
        patch(
            "taxi_dispatch.workers.notifier.stop_notification_worker",
            new_callable=AsyncMock,
        ),
    ):
        app = create_app()
        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_dispatcher] = lambda: dispatcher
        app.dependency_overrides[get_order_rate_limiter] = lambda: rate_limiter
        app.dependency_overrides[get_stats_cache] = lambda: AdminStatsCache(0)
        limiter.reset()

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
