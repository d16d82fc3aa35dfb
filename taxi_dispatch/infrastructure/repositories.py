"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Concurrency-sensitive writes are single conditional ``UPDATE`` statements
(compare-and-set): the "is it still claimable" check lives in the ``WHERE``
clause, so two racing writers can never both observe the old state and
both succeed.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    AccessCodeModel,
    ChatMessageModel,
    OrderModel,
    RatingModel,
    TariffModel,
    UserModel,
    utcnow,
)
from taxi_dispatch.domain.enums import (
    ONGOING_STATUSES,
    OrderStatus,
    OrderType,
    UserRole,
)
from taxi_dispatch.domain.pricing import Tariff


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: str) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def create(
        self,
        *,
        user_id: str,
        role: UserRole = UserRole.CLIENT,
        name: str | None = None,
        phone: str | None = None,
        avatar_url: str | None = None,
    ) -> UserModel:
        user = UserModel(
            id=user_id,
            role=role,
            name=name,
            phone=phone,
            avatar_url=avatar_url,
            is_blocked=False,
            warnings=[],
            bonuses=[],
            balance=0.0,
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def update(self, user: UserModel, **fields) -> UserModel:
        for name, value in fields.items():
            setattr(user, name, value)
        await self.session.flush()
        return user

    async def list_all(self) -> list[UserModel]:
        result = await self.session.execute(
            select(UserModel).order_by(UserModel.created_at)
        )
        return list(result.scalars().all())

    async def list_by_role(self, role: UserRole) -> list[UserModel]:
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.role == role)
            .order_by(UserModel.created_at)
        )
        return list(result.scalars().all())

    async def count_active_drivers(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(UserModel)
            .where(
                UserModel.role == UserRole.DRIVER,
                UserModel.is_blocked.is_(False),
            )
        )
        return result.scalar() or 0


class OrderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields) -> OrderModel:
        order = OrderModel(
            status=OrderStatus.NEW,
            driver_id=None,
            driver_bid_price=None,
            proposal_attempts=[],
            **fields,
        )
        self.session.add(order)
        await self.session.flush()
        return order

    async def get_by_id(
        self, order_id: str, *, fresh: bool = False
    ) -> Optional[OrderModel]:
        return await self.session.get(
            OrderModel, order_id, populate_existing=fresh
        )

    async def compare_and_set(
        self,
        order_id: str,
        expected: Iterable[OrderStatus],
        values: Mapping[str, object],
        *,
        driver_id: str | None = None,
        client_id: str | None = None,
    ) -> Optional[OrderModel]:
        """
        Apply *values* only if the order is still in one of the *expected*
        statuses (and, when given, still held by *driver_id* / owned by
        *client_id*).  Returns the refreshed order, or ``None`` when the
        guard did not match.
        """
        query = update(OrderModel).where(
            OrderModel.order_id == order_id,
            OrderModel.status.in_(list(expected)),
        )
        if driver_id is not None:
            query = query.where(OrderModel.driver_id == driver_id)
        if client_id is not None:
            query = query.where(OrderModel.client_id == client_id)

        result = await self.session.execute(
            query.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return await self.session.get(
            OrderModel, order_id, populate_existing=True
        )

    async def list_by_statuses(
        self, statuses: Iterable[OrderStatus]
    ) -> list[OrderModel]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.status.in_(list(statuses)))
            .order_by(OrderModel.created_at)
        )
        return list(result.scalars().all())

    async def list_by_client(self, client_id: str) -> list[OrderModel]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.client_id == client_id)
            .order_by(OrderModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_by_driver(self, driver_id: str) -> list[OrderModel]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.driver_id == driver_id)
            .order_by(OrderModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def current_for_driver(self, driver_id: str) -> Optional[OrderModel]:
        result = await self.session.execute(
            select(OrderModel)
            .where(
                OrderModel.driver_id == driver_id,
                OrderModel.status.in_(list(ONGOING_STATUSES)),
            )
            .order_by(OrderModel.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[OrderModel]:
        result = await self.session.execute(
            select(OrderModel).order_by(OrderModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def count(self, status: OrderStatus | None = None) -> int:
        query = select(func.count()).select_from(OrderModel)
        if status is not None:
            query = query.where(OrderModel.status == status)
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def count_completed_for_driver(self, driver_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(OrderModel)
            .where(
                OrderModel.driver_id == driver_id,
                OrderModel.status == OrderStatus.COMPLETED,
            )
        )
        return result.scalar() or 0


class AccessCodeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, *, code: str, issued_by: str) -> AccessCodeModel:
        access_code = AccessCodeModel(
            code=code, issued_by=issued_by, is_used=False, used_by=None
        )
        self.session.add(access_code)
        await self.session.flush()
        return access_code

    async def get(self, code: str) -> Optional[AccessCodeModel]:
        return await self.session.get(AccessCodeModel, code)

    async def known_codes(self) -> set[str]:
        result = await self.session.execute(select(AccessCodeModel.code))
        return set(result.scalars().all())

    async def mark_used(self, code: str, user_id: str) -> bool:
        """Flip ``is_used`` exactly once (compare-and-set)."""
        result = await self.session.execute(
            update(AccessCodeModel)
            .where(
                AccessCodeModel.code == code,
                AccessCodeModel.is_used.is_(False),
            )
            .values(is_used=True, used_by=user_id, used_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_all(self) -> list[AccessCodeModel]:
        result = await self.session.execute(
            select(AccessCodeModel).order_by(AccessCodeModel.created_at.desc())
        )
        return list(result.scalars().all())


class ChatRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self, *, order_id: str, sender_id: str, message: str
    ) -> ChatMessageModel:
        chat_message = ChatMessageModel(
            order_id=order_id, sender_id=sender_id, message=message
        )
        self.session.add(chat_message)
        await self.session.flush()
        return chat_message

    async def list_for_order(self, order_id: str) -> list[ChatMessageModel]:
        result = await self.session.execute(
            select(ChatMessageModel)
            .where(ChatMessageModel.order_id == order_id)
            .order_by(ChatMessageModel.created_at)
        )
        return list(result.scalars().all())

    async def purge_order(self, order_id: str) -> int:
        result = await self.session.execute(
            delete(ChatMessageModel)
            .where(ChatMessageModel.order_id == order_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class RatingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_for_order(self, order_id: str) -> Optional[RatingModel]:
        result = await self.session.execute(
            select(RatingModel).where(RatingModel.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def add(
        self,
        *,
        order_id: str,
        driver_id: str,
        stars: int,
        comment: str | None = None,
    ) -> Optional[RatingModel]:
        """Insert a rating; ``None`` if the order already has one."""
        rating = RatingModel(
            order_id=order_id, driver_id=driver_id, stars=stars, comment=comment
        )
        try:
            async with self.session.begin_nested():
                self.session.add(rating)
        except IntegrityError:
            return None
        return rating

    async def list_all(self) -> list[RatingModel]:
        result = await self.session.execute(
            select(RatingModel).order_by(RatingModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def summary(self, driver_id: str | None = None) -> tuple[int, float]:
        """``(count, sum_of_stars)`` for one driver, or for everyone."""
        query = select(func.count(), func.coalesce(func.sum(RatingModel.stars), 0))
        if driver_id is not None:
            query = query.where(RatingModel.driver_id == driver_id)
        count, total = (await self.session.execute(query)).one()
        return int(count or 0), float(total or 0)


class TariffRepository:
    """Admin overrides on top of the configured default tariff table."""

    def __init__(self, session: AsyncSession, defaults: Mapping[OrderType, Tariff]):
        self.session = session
        self.defaults = defaults

    async def get(self, order_type: OrderType) -> Tariff:
        row = await self.session.get(TariffModel, order_type)
        if row is None:
            return self.defaults[order_type]
        return Tariff(OrderType(row.type), row.base_price, row.per_km)

    async def list_all(self) -> list[Tariff]:
        return [await self.get(order_type) for order_type in OrderType]

    async def upsert(
        self, order_type: OrderType, base_price: float, per_km: float
    ) -> Tariff:
        row = await self.session.get(TariffModel, order_type)
        if row is None:
            row = TariffModel(type=order_type, base_price=base_price, per_km=per_km)
            self.session.add(row)
        else:
            row.base_price = base_price
            row.per_km = per_km
        await self.session.flush()
        return Tariff(order_type, base_price, per_km)
