"""
Order Lifecycle Engine
======================

    new ──accept──▶ accepted ──arrived──▶ arrived ──start──▶ in_progress
     │   (fixed)       │  ▲                  │                  │
     │                 │  └─────release──────┘                  │
     │                 └──────────────complete──────────────────┴──▶ completed
     │
     └──accept──▶ bidding ──respond(yes)──▶ accepted
        (bidding)    │
                     └──respond(no)──▶ new   (driver added to proposal_attempts)

    any non-terminal status ──cancel──▶ cancelled   (record retained)

Rules
-----
* Every operation returns the updated order or a ``Failure``; expected
  precondition violations never raise.
* Every transition is one conditional UPDATE (``OrderRepository.
  compare_and_set``): either all of its fields apply or none do.
* ``accept_order`` additionally takes a per-order try-lock so a second
  driver racing for the same order fails fast instead of queueing.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from taxi_dispatch.domain.enums import (
    ACTIVE_STATUSES,
    MatchingPolicy,
    OrderStatus,
    OrderType,
    UserRole,
    sources_of,
)
from taxi_dispatch.domain.pricing import PricingEngine
from taxi_dispatch.domain.results import Failure, FailureKind, Outcome
from taxi_dispatch.infrastructure.locks import Lock, make_lock
from taxi_dispatch.infrastructure.models import OrderModel, utcnow
from taxi_dispatch.infrastructure.repositories import (
    ChatRepository,
    OrderRepository,
    TariffRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

LockFactory = Callable[[str], Awaitable[Lock]]

# fields a client may still edit while nobody has claimed the order
AMENDABLE_FIELDS = frozenset(
    {"from_address", "to_address", "comment", "required_detail", "distance_km"}
)


class OrderLifecycleEngine:
    def __init__(
        self,
        orders: OrderRepository,
        users: UserRepository,
        tariffs: TariffRepository,
        chat: Optional[ChatRepository] = None,
        *,
        pricing: Optional[PricingEngine] = None,
        policy: MatchingPolicy = MatchingPolicy.FIXED,
        bid_range: tuple[float, float] = (50.0, 500.0),
        purge_chat_on_complete: bool = True,
        lock_factory: LockFactory = make_lock,
    ):
        self.orders = orders
        self.users = users
        self.tariffs = tariffs
        self.chat = chat
        self.pricing = pricing or PricingEngine()
        self.policy = MatchingPolicy(policy)
        self.bid_min, self.bid_max = bid_range
        self.purge_chat_on_complete = purge_chat_on_complete
        self.lock_factory = lock_factory

    # ── Creation ──────────────────────────────────────────────────────

    async def create_order(
        self,
        *,
        client_id: str,
        order_type: OrderType,
        from_address: str,
        to_address: str,
        comment: Optional[str] = None,
        required_detail: Optional[str] = None,
        distance_km: Optional[float] = None,
        price: Optional[float] = None,
    ) -> OrderModel:
        tariff = await self.tariffs.get(OrderType(order_type))
        order = await self.orders.create(
            type=OrderType(order_type),
            client_id=client_id,
            from_address=from_address,
            to_address=to_address,
            comment=comment,
            required_detail=required_detail,
            distance_km=distance_km,
            price=self.pricing.quote(tariff, distance_km, price),
        )
        logger.info(
            "Order %s created by %s (%s, price=%s)",
            order.order_id, client_id, order.type.value, order.price,
        )
        return order

    async def amend_order(self, order_id: str, **changes) -> Outcome[OrderModel]:
        unknown = set(changes) - AMENDABLE_FIELDS
        if unknown:
            return Failure(
                FailureKind.VALIDATION,
                f"Cannot change {', '.join(sorted(unknown))}",
            )
        order = await self.orders.get_by_id(order_id)
        if order is None:
            return Failure.not_found("Order")
        if order.status != OrderStatus.NEW:
            return Failure.not_acceptable(
                f"Order can only be edited while new (status {order.status.value})"
            )

        values = dict(changes)
        if changes.get("distance_km"):
            tariff = await self.tariffs.get(OrderType(order.type))
            values["price"] = self.pricing.quote(tariff, changes["distance_km"])

        updated = await self.orders.compare_and_set(
            order_id, {OrderStatus.NEW}, values
        )
        if updated is None:
            return Failure.not_acceptable("Order was claimed in the meantime")
        return updated

    # ── Matching ──────────────────────────────────────────────────────

    async def accept_order(
        self,
        order_id: str,
        driver_id: str,
        distance_km: Optional[float] = None,
    ) -> Outcome[OrderModel]:
        lock = await self.lock_factory(f"order:{order_id}")
        if not await lock.acquire():
            return Failure.not_acceptable("Order is being taken by another driver")
        try:
            return await self._claim(order_id, driver_id, distance_km)
        finally:
            await lock.release()

    async def _claim(
        self, order_id: str, driver_id: str, distance_km: Optional[float]
    ) -> Outcome[OrderModel]:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            return Failure.not_found("Order")
        if order.status != OrderStatus.NEW:
            return Failure.not_acceptable("Order is already taken")

        driver = await self.users.get_by_id(driver_id)
        if driver is None or driver.role != UserRole.DRIVER:
            return Failure.not_acceptable("Only registered drivers can take orders")
        if driver.is_blocked:
            return Failure.not_acceptable("Driver is blocked")
        if driver_id == order.client_id:
            return Failure.not_acceptable("Drivers cannot take their own orders")
        if driver_id in (order.proposal_attempts or []):
            return Failure.not_acceptable(
                "Client already declined this driver's offer"
            )

        values: dict = {"driver_id": driver_id}
        if self.policy == MatchingPolicy.BIDDING:
            values["status"] = OrderStatus.BIDDING
        else:
            values["status"] = OrderStatus.ACCEPTED
            values["accepted_at"] = utcnow()
            if distance_km:
                tariff = await self.tariffs.get(OrderType(order.type))
                values["distance_km"] = distance_km
                values["price"] = self.pricing.quote(tariff, distance_km)

        claimed = await self.orders.compare_and_set(
            order_id, {OrderStatus.NEW}, values
        )
        if claimed is None:
            return Failure.not_acceptable("Order is already taken")
        logger.info(
            "Order %s taken by driver %s -> %s",
            order_id, driver_id, claimed.status.value,
        )
        return claimed

    async def release_order(self, order_id: str) -> Outcome[OrderModel]:
        return await self._transition(
            order_id,
            OrderStatus.NEW,
            {OrderStatus.ACCEPTED, OrderStatus.ARRIVED},
            {
                "driver_id": None,
                "accepted_at": None,
                "arrived_at": None,
            },
        )

    # ── Bidding extension ────────────────────────────────────────────

    async def propose_bid(
        self, order_id: str, driver_id: str, price: float
    ) -> Outcome[OrderModel]:
        bid = self.pricing.normalise_bid(price, self.bid_min, self.bid_max)
        if bid is None:
            return Failure(
                FailureKind.VALIDATION,
                f"Price must be between {self.bid_min:g} and {self.bid_max:g}",
            )
        updated = await self.orders.compare_and_set(
            order_id,
            {OrderStatus.BIDDING},
            {"driver_bid_price": bid},
            driver_id=driver_id,
        )
        if updated is None:
            return await self._explain(order_id, "Order is not awaiting your bid")
        logger.info("Driver %s bids %s on order %s", driver_id, bid, order_id)
        return updated

    async def respond_to_bid(
        self, order_id: str, client_id: str, accepted: bool
    ) -> Outcome[OrderModel]:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            return Failure.not_found("Order")
        if order.client_id != client_id or order.status != OrderStatus.BIDDING:
            return Failure.not_acceptable("Order is not awaiting your answer")

        if accepted:
            if order.driver_bid_price is None:
                return Failure.not_acceptable("Driver has not proposed a price yet")
            values = {
                "status": OrderStatus.ACCEPTED,
                "price": order.driver_bid_price,
                "accepted_at": utcnow(),
            }
        else:
            values = {
                "status": OrderStatus.NEW,
                "driver_id": None,
                "driver_bid_price": None,
                "proposal_attempts": [
                    *(order.proposal_attempts or []),
                    order.driver_id,
                ],
            }

        updated = await self.orders.compare_and_set(
            order_id,
            {OrderStatus.BIDDING},
            values,
            driver_id=order.driver_id,
            client_id=client_id,
        )
        if updated is None:
            return Failure.not_acceptable("Order changed in the meantime")
        logger.info(
            "Client %s %s bid on order %s",
            client_id, "accepted" if accepted else "rejected", order_id,
        )
        return updated

    # ── Trip ──────────────────────────────────────────────────────────

    async def mark_arrived(self, order_id: str) -> Outcome[OrderModel]:
        return await self._transition(
            order_id,
            OrderStatus.ARRIVED,
            {OrderStatus.ACCEPTED},
            {"arrived_at": utcnow()},
        )

    async def start_trip(self, order_id: str) -> Outcome[OrderModel]:
        return await self._transition(
            order_id,
            OrderStatus.IN_PROGRESS,
            {OrderStatus.ACCEPTED, OrderStatus.ARRIVED},
            {"started_at": utcnow()},
        )

    async def complete_order(self, order_id: str) -> Outcome[OrderModel]:
        result = await self._transition(
            order_id,
            OrderStatus.COMPLETED,
            sources_of(OrderStatus.COMPLETED),
            {"completed_at": utcnow()},
        )
        if not isinstance(result, Failure) and self.purge_chat_on_complete and self.chat:
            purged = await self.chat.purge_order(order_id)
            logger.debug("Purged %d chat messages of order %s", purged, order_id)
        return result

    async def cancel_order(self, order_id: str) -> Outcome[OrderModel]:
        return await self._transition(
            order_id,
            OrderStatus.CANCELLED,
            sources_of(OrderStatus.CANCELLED),
            {"cancelled_at": utcnow()},
        )

    # ── Queries ───────────────────────────────────────────────────────

    async def get_order(self, order_id: str) -> Outcome[OrderModel]:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            return Failure.not_found("Order")
        return order

    async def active_orders(self) -> list[OrderModel]:
        return await self.orders.list_by_statuses(ACTIVE_STATUSES)

    # ── Internals ─────────────────────────────────────────────────────

    async def _transition(
        self,
        order_id: str,
        target: OrderStatus,
        expected: set[OrderStatus],
        values: dict,
    ) -> Outcome[OrderModel]:
        updated = await self.orders.compare_and_set(
            order_id, expected, {"status": target, **values}
        )
        if updated is None:
            return await self._explain(
                order_id, f"Order cannot move to {target.value}"
            )
        logger.info("Order %s -> %s", order_id, target.value)
        return updated

    async def _explain(self, order_id: str, detail: str) -> Failure:
        order = await self.orders.get_by_id(order_id, fresh=True)
        if order is None:
            return Failure.not_found("Order")
        if order.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED):
            return Failure(
                FailureKind.CONFLICT, f"Order is already {order.status.value}"
            )
        return Failure.not_acceptable(f"{detail} (status {order.status.value})")
