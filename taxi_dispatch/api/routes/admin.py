"""
Admin / observability endpoints
===============================

GET  /api/v1/admin/health                      -- simple health check
GET  /api/v1/admin/stats                       -- dashboard totals (cached <= 30 s)
GET  /api/v1/admin/drivers                     -- drivers with stats and badges
POST /api/v1/admin/drivers/{id}/block          -- toggle block
POST /api/v1/admin/drivers/{id}/warning|bonus  -- append a note
POST /api/v1/admin/drivers/{id}/demote         -- driver back to client
GET  /api/v1/admin/orders                      -- every order, newest first
POST /api/v1/admin/orders/{id}/cancel
POST /api/v1/admin/generate-code               -- issue a driver access code
GET  /api/v1/admin/codes
GET  /api/v1/admin/tariffs  POST /api/v1/admin/tariffs
POST /api/v1/admin/finance                     -- adjust a user's balance
GET  /api/v1/admin/reviews
POST /api/v1/admin/broadcast                   -- message every user (202)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taxi_dispatch.api.dependencies import (
    get_code_issuer,
    get_db,
    get_engine,
    get_notifier,
    get_rating_service,
    tariff_repository,
)
from taxi_dispatch.api.errors import unwrap
from taxi_dispatch.api.middleware import limiter
from taxi_dispatch.api.schemas import (
    AccessCodeResponse,
    AdminStatsResponse,
    BroadcastRequest,
    BroadcastResponse,
    DriverStatsResponse,
    DriverSummaryResponse,
    FinanceRequest,
    GenerateCodeRequest,
    HealthResponse,
    NoteRequest,
    OrderResponse,
    RatingResponse,
    TariffResponse,
    TariffUpdateRequest,
    UserResponse,
)
from taxi_dispatch.config import settings
from taxi_dispatch.domain.enums import UserRole
from taxi_dispatch.infrastructure.models import UserModel
from taxi_dispatch.infrastructure.repositories import (
    OrderRepository,
    RatingRepository,
    UserRepository,
)
from taxi_dispatch.services.access_codes import AccessCodeIssuer
from taxi_dispatch.services.notifications import LifecycleNotifier
from taxi_dispatch.services.orders import OrderLifecycleEngine
from taxi_dispatch.services.ratings import RatingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


async def _get_driver(users: UserRepository, driver_id: str) -> UserModel:
    user = await users.get_by_id(driver_id)
    if not user or user.role != UserRole.DRIVER:
        raise HTTPException(status_code=404, detail="Driver not found")
    return user


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()


@router.get(
    "/stats",
    response_model=AdminStatsResponse,
    summary="Dashboard totals",
    description="Display only; may lag by up to the configured cache TTL.",
)
@limiter.limit(settings.api_rate_limit)
async def get_stats(
    request: Request,
    ratings: RatingService = Depends(get_rating_service),
):
    return await ratings.admin_stats()


# ── Drivers ───────────────────────────────────────────────────────────


@router.get(
    "/drivers",
    response_model=list[DriverSummaryResponse],
    summary="All drivers with their stats",
)
@limiter.limit(settings.api_rate_limit)
async def list_drivers(
    request: Request,
    db: AsyncSession = Depends(get_db),
    ratings: RatingService = Depends(get_rating_service),
):
    result: list[DriverSummaryResponse] = []
    for driver in await UserRepository(db).list_by_role(UserRole.DRIVER):
        stats = await ratings.driver_stats(driver.id)
        profile = UserResponse.model_validate(driver).model_dump()
        result.append(
            DriverSummaryResponse(
                **profile,
                stats=DriverStatsResponse.model_validate(stats),
                badges=await ratings.driver_badges(driver.id),
            )
        )
    return result


@router.post(
    "/drivers/{driver_id}/block",
    response_model=UserResponse,
    summary="Block or unblock a driver",
)
@limiter.limit(settings.api_rate_limit)
async def toggle_block(
    request: Request,
    driver_id: str,
    db: AsyncSession = Depends(get_db),
):
    users = UserRepository(db)
    driver = await _get_driver(users, driver_id)
    driver = await users.update(driver, is_blocked=not driver.is_blocked)
    logger.info("Driver %s blocked=%s", driver_id, driver.is_blocked)
    return driver


@router.post(
    "/drivers/{driver_id}/warning",
    response_model=UserResponse,
    summary="Record a warning",
)
@limiter.limit(settings.api_rate_limit)
async def add_warning(
    request: Request,
    driver_id: str,
    body: NoteRequest,
    db: AsyncSession = Depends(get_db),
):
    users = UserRepository(db)
    driver = await _get_driver(users, driver_id)
    return await users.update(driver, warnings=[*(driver.warnings or []), body.text])


@router.post(
    "/drivers/{driver_id}/bonus",
    response_model=UserResponse,
    summary="Record a bonus",
)
@limiter.limit(settings.api_rate_limit)
async def add_bonus(
    request: Request,
    driver_id: str,
    body: NoteRequest,
    db: AsyncSession = Depends(get_db),
):
    users = UserRepository(db)
    driver = await _get_driver(users, driver_id)
    return await users.update(driver, bonuses=[*(driver.bonuses or []), body.text])


@router.post(
    "/drivers/{driver_id}/demote",
    response_model=UserResponse,
    summary="Turn a driver back into a client",
)
@limiter.limit(settings.api_rate_limit)
async def demote_driver(
    request: Request,
    driver_id: str,
    db: AsyncSession = Depends(get_db),
):
    users = UserRepository(db)
    driver = await _get_driver(users, driver_id)
    logger.info("Driver %s demoted to client", driver_id)
    return await users.update(driver, role=UserRole.CLIENT)


# ── Orders ────────────────────────────────────────────────────────────


@router.get(
    "/orders",
    response_model=list[OrderResponse],
    summary="Every order, newest first",
)
@limiter.limit(settings.api_rate_limit)
async def list_orders(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    return await OrderRepository(db).list_all()


@router.post(
    "/orders/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel any non-terminal order",
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


# ── Access codes ──────────────────────────────────────────────────────


@router.post(
    "/generate-code",
    status_code=201,
    response_model=AccessCodeResponse,
    summary="Issue a one-time driver access code",
)
@limiter.limit(settings.api_rate_limit)
async def generate_code(
    request: Request,
    body: GenerateCodeRequest,
    issuer: AccessCodeIssuer = Depends(get_code_issuer),
):
    return await issuer.generate(body.admin_id)


@router.get(
    "/codes",
    response_model=list[AccessCodeResponse],
    summary="All issued access codes",
)
@limiter.limit(settings.api_rate_limit)
async def list_codes(
    request: Request,
    issuer: AccessCodeIssuer = Depends(get_code_issuer),
):
    return await issuer.list_codes()


# ── Tariffs, finance, reviews ─────────────────────────────────────────


@router.get(
    "/tariffs",
    response_model=list[TariffResponse],
    summary="Current tariff table",
)
@limiter.limit(settings.api_rate_limit)
async def list_tariffs(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    return [
        TariffResponse(type=t.order_type, base_price=t.base_price, per_km=t.per_km)
        for t in await tariff_repository(db).list_all()
    ]


@router.post(
    "/tariffs",
    response_model=TariffResponse,
    summary="Override one tariff row",
)
@limiter.limit(settings.api_rate_limit)
async def update_tariff(
    request: Request,
    body: TariffUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    tariff = await tariff_repository(db).upsert(body.type, body.base_price, body.per_km)
    logger.info(
        "Tariff %s set to %s + %s/km",
        tariff.order_type.value, tariff.base_price, tariff.per_km,
    )
    return TariffResponse(
        type=tariff.order_type, base_price=tariff.base_price, per_km=tariff.per_km
    )


@router.post(
    "/finance",
    response_model=UserResponse,
    summary="Credit or debit a user's balance",
)
@limiter.limit(settings.api_rate_limit)
async def update_balance(
    request: Request,
    body: FinanceRequest,
    db: AsyncSession = Depends(get_db),
):
    users = UserRepository(db)
    user = await users.get_by_id(body.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return await users.update(user, balance=(user.balance or 0.0) + body.amount)


@router.get(
    "/reviews",
    response_model=list[RatingResponse],
    summary="All ratings, newest first",
)
@limiter.limit(settings.api_rate_limit)
async def list_reviews(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    return await RatingRepository(db).list_all()


@router.post(
    "/broadcast",
    status_code=202,
    response_model=BroadcastResponse,
    summary="Send an announcement to every user",
    responses={202: {"description": "Messages queued; delivery is async."}},
)
@limiter.limit(settings.api_rate_limit)
async def broadcast(
    request: Request,
    body: BroadcastRequest,
    db: AsyncSession = Depends(get_db),
    notifier: LifecycleNotifier = Depends(get_notifier),
):
    users = await UserRepository(db).list_all()
    queued = notifier.announcement([u.id for u in users], body.message)
    logger.info("Broadcast queued for %d of %d users", queued, len(users))
    return BroadcastResponse(queued=queued)
