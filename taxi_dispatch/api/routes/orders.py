"""
Order endpoints
===============

GET   /api/v1/orders/active                    -- orders waiting for a driver
GET   /api/v1/orders/{order_id}                -- one order (clients poll this)
GET   /api/v1/orders/client/{client_id}        -- a client's orders
GET   /api/v1/orders/driver/{driver_id}        -- a driver's orders
GET   /api/v1/orders/driver/{driver_id}/current
POST  /api/v1/orders                           -- create (rate limited per client)
PATCH /api/v1/orders/{order_id}                -- amend while still new
POST  /api/v1/orders/{order_id}/accept|release|arrived|start|complete|cancel
POST  /api/v1/orders/{order_id}/bid|respond    -- bidding extension
POST  /api/v1/orders/{order_id}/rate
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taxi_dispatch.api.dependencies import (
    get_db,
    get_engine,
    get_notifier,
    get_order_rate_limiter,
    get_rating_service,
)
from taxi_dispatch.api.errors import unwrap
from taxi_dispatch.api.middleware import limiter
from taxi_dispatch.api.schemas import (
    AcceptOrderRequest,
    BidRequest,
    BidResponseRequest,
    OrderCreateRequest,
    OrderResponse,
    OrderUpdateRequest,
    RateOrderRequest,
    RateResultResponse,
)
from taxi_dispatch.config import settings
from taxi_dispatch.domain.enums import UserRole
from taxi_dispatch.infrastructure.repositories import OrderRepository, UserRepository
from taxi_dispatch.services.notifications import LifecycleNotifier
from taxi_dispatch.services.orders import OrderLifecycleEngine
from taxi_dispatch.services.rate_limiter import OrderRateLimiter
from taxi_dispatch.services.ratings import RatingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

INTERNAL_HEADER = "X-Internal-Request"


async def enforce_order_rate_limit(
    request: Request,
    client_id: str,
    users: UserRepository,
    rate_limiter: OrderRateLimiter,
) -> None:
    """Per-requester sliding window on order creation; admins are exempt."""
    key = client_id or (request.client.host if request.client else "unknown")

    privileged = client_id in settings.admin_ids
    if not privileged:
        user = await users.get_by_id(client_id)
        privileged = user is not None and user.role == UserRole.ADMIN
    internal = bool(settings.internal_request_token) and (
        request.headers.get(INTERNAL_HEADER) == settings.internal_request_token
    )

    decision = await rate_limiter.check(key, privileged=privileged, internal=internal)
    if not decision.allowed:
        logger.warning("Order rate limit hit for %s", key)
        raise HTTPException(
            status_code=429,
            detail=decision.retry_message,
            headers={"Retry-After": str(decision.retry_after)},
        )


# ── Queries ───────────────────────────────────────────────────────────


@router.get(
    "/active",
    response_model=list[OrderResponse],
    summary="Orders waiting for a driver",
)
@limiter.limit(settings.api_rate_limit)
async def list_active_orders(
    request: Request,
    engine: OrderLifecycleEngine = Depends(get_engine),
):
    return await engine.active_orders()


@router.get(
    "/client/{client_id}",
    response_model=list[OrderResponse],
    summary="A client's orders, newest first",
)
@limiter.limit(settings.api_rate_limit)
async def list_client_orders(
    request: Request,
    client_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await OrderRepository(db).list_by_client(client_id)


@router.get(
    "/driver/{driver_id}",
    response_model=list[OrderResponse],
    summary="A driver's orders, newest first",
)
@limiter.limit(settings.api_rate_limit)
async def list_driver_orders(
    request: Request,
    driver_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await OrderRepository(db).list_by_driver(driver_id)


@router.get(
    "/driver/{driver_id}/current",
    response_model=OrderResponse | None,
    summary="The order a driver is working on, if any",
)
@limiter.limit(settings.api_rate_limit)
async def get_current_driver_order(
    request: Request,
    driver_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await OrderRepository(db).current_for_driver(driver_id)


@router.get("/{order_id}", response_model=OrderResponse, summary="Get an order")
@limiter.limit(settings.api_rate_limit)
async def get_order(
    request: Request,
    order_id: str,
    engine: OrderLifecycleEngine = Depends(get_engine),
):
    return unwrap(await engine.get_order(order_id))


# ── Creation ──────────────────────────────────────────────────────────


@router.post(
    "",
    status_code=201,
    response_model=OrderResponse,
    summary="Create an order",
    responses={429: {"description": "Too many orders from this client."}},
)
@limiter.limit(settings.api_rate_limit)
async def create_order(
    request: Request,
    body: OrderCreateRequest,
    engine: OrderLifecycleEngine = Depends(get_engine),
    notifier: LifecycleNotifier = Depends(get_notifier),
    rate_limiter: OrderRateLimiter = Depends(get_order_rate_limiter),
):
    await enforce_order_rate_limit(
        request, body.client_id, engine.users, rate_limiter
    )
    order = await engine.create_order(
        client_id=body.client_id,
        order_type=body.type,
        from_address=body.from_address,
        to_address=body.to_address,
        comment=body.comment,
        required_detail=body.required_detail,
        distance_km=body.distance_km,
        price=body.price,
    )
    drivers = await engine.users.list_by_role(UserRole.DRIVER)
    notifier.order_created(order, drivers)
    return order


@router.patch(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Amend an order nobody has taken yet",
)
@limiter.limit(settings.api_rate_limit)
async def amend_order(
    request: Request,
    order_id: str,
    body: OrderUpdateRequest,
    engine: OrderLifecycleEngine = Depends(get_engine),
):
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    return unwrap(await engine.amend_order(order_id, **changes))


# ── Lifecycle ─────────────────────────────────────────────────────────


@router.post(
    "/{order_id}/accept",
    response_model=OrderResponse,
    summary="Take an order",
    description=(
        "Exactly one driver wins a race for the same order; the others get "
        "400. Under the bidding policy the order moves to `bidding`."
    ),
)
@limiter.limit(settings.api_rate_limit)
async def accept_order(
    request: Request,
    order_id: str,
    body: AcceptOrderRequest,
    engine: OrderLifecycleEngine = Depends(get_engine),
    notifier: LifecycleNotifier = Depends(get_notifier),
):
    order = unwrap(await engine.accept_order(order_id, body.driver_id, body.distance_km))
    if order.accepted_at is not None:
        notifier.order_accepted(order, await engine.users.get_by_id(body.driver_id))
        notifier.withdraw_offers(order)
    return order


@router.post(
    "/{order_id}/release",
    response_model=OrderResponse,
    summary="Driver gives the order back",
)
@limiter.limit(settings.api_rate_limit)
async def release_order(
    request: Request,
    order_id: str,
    engine: OrderLifecycleEngine = Depends(get_engine),
):
    return unwrap(await engine.release_order(order_id))


@router.post(
    "/{order_id}/arrived",
    response_model=OrderResponse,
    summary="Driver is at the pickup point",
)
@limiter.limit(settings.api_rate_limit)
async def mark_arrived(
    request: Request,
    order_id: str,
    engine: OrderLifecycleEngine = Depends(get_engine),
    notifier: LifecycleNotifier = Depends(get_notifier),
):
    order = unwrap(await engine.mark_arrived(order_id))
    notifier.driver_arrived(order)
    return order


@router.post(
    "/{order_id}/start",
    response_model=OrderResponse,
    summary="Passenger picked up",
)
@limiter.limit(settings.api_rate_limit)
async def start_trip(
    request: Request,
    order_id: str,
    engine: OrderLifecycleEngine = Depends(get_engine),
):
    return unwrap(await engine.start_trip(order_id))


@router.post(
    "/{order_id}/complete",
    response_model=OrderResponse,
    summary="Finish the trip",
)
@limiter.limit(settings.api_rate_limit)
async def complete_order(
    request: Request,
    order_id: str,
    engine: OrderLifecycleEngine = Depends(get_engine),
    notifier: LifecycleNotifier = Depends(get_notifier),
):
    order = unwrap(await engine.complete_order(order_id))
    notifier.order_completed(order)
    return order


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel an order",
    description="The order is kept with status `cancelled`.",
)
@limiter.limit(settings.api_rate_limit)
async def cancel_order(
    request: Request,
    order_id: str,
    engine: OrderLifecycleEngine = Depends(get_engine),
    notifier: LifecycleNotifier = Depends(get_notifier),
):
    order = unwrap(await engine.cancel_order(order_id))
    notifier.order_cancelled(order, order.driver_id)
    notifier.withdraw_offers(order)
    return order


# ── Bidding extension ─────────────────────────────────────────────────


@router.post(
    "/{order_id}/bid",
    response_model=OrderResponse,
    summary="Driver proposes a price",
)
@limiter.limit(settings.api_rate_limit)
async def propose_bid(
    request: Request,
    order_id: str,
    body: BidRequest,
    engine: OrderLifecycleEngine = Depends(get_engine),
    notifier: LifecycleNotifier = Depends(get_notifier),
):
    order = unwrap(await engine.propose_bid(order_id, body.driver_id, body.price))
    notifier.bid_proposed(order)
    return order


@router.post(
    "/{order_id}/respond",
    response_model=OrderResponse,
    summary="Client accepts or rejects the proposed price",
)
@limiter.limit(settings.api_rate_limit)
async def respond_to_bid(
    request: Request,
    order_id: str,
    body: BidResponseRequest,
    engine: OrderLifecycleEngine = Depends(get_engine),
    notifier: LifecycleNotifier = Depends(get_notifier),
):
    order = unwrap(
        await engine.respond_to_bid(order_id, body.client_id, body.accepted)
    )
    if body.accepted:
        notifier.order_accepted(order, await engine.users.get_by_id(order.driver_id))
        notifier.withdraw_offers(order)
    else:
        notifier.bid_rejected(order, order.proposal_attempts[-1])
    return order


# ── Rating ────────────────────────────────────────────────────────────


@router.post(
    "/{order_id}/rate",
    response_model=RateResultResponse,
    summary="Rate the driver of a completed order",
)
@limiter.limit(settings.api_rate_limit)
async def rate_order(
    request: Request,
    order_id: str,
    body: RateOrderRequest,
    ratings: RatingService = Depends(get_rating_service),
):
    success = await ratings.rate_order(order_id, body.stars, body.comment)
    if not success:
        raise HTTPException(status_code=400, detail="Order cannot be rated")
    return RateResultResponse(success=True)
