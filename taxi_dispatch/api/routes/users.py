"""
User endpoints
==============

GET   /api/v1/users/{user_id}          -- fetch a profile
POST  /api/v1/users                    -- create or update own profile
PATCH /api/v1/users/{user_id}          -- edit profile fields
POST  /api/v1/users/register-driver    -- redeem an access code
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taxi_dispatch.api.dependencies import get_code_issuer, get_db, get_notifier
from taxi_dispatch.api.errors import unwrap
from taxi_dispatch.api.middleware import limiter
from taxi_dispatch.api.schemas import (
    RegisterDriverRequest,
    UserResponse,
    UserUpdateRequest,
    UserUpsertRequest,
)
from taxi_dispatch.config import settings
from taxi_dispatch.domain.enums import UserRole
from taxi_dispatch.infrastructure.repositories import UserRepository
from taxi_dispatch.services.access_codes import AccessCodeIssuer
from taxi_dispatch.services.notifications import LifecycleNotifier

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}", response_model=UserResponse, summary="Get a user")
@limiter.limit(settings.api_rate_limit)
async def get_user(
    request: Request,
    user_id: str,
    db: AsyncSession = Depends(get_db),
):
    user = await UserRepository(db).get_by_id(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.post(
    "",
    response_model=UserResponse,
    summary="Create or update a profile",
    description="New users start as clients. The role is never changed here.",
)
@limiter.limit(settings.api_rate_limit)
async def upsert_user(
    request: Request,
    body: UserUpsertRequest,
    db: AsyncSession = Depends(get_db),
):
    repo = UserRepository(db)
    user = await repo.get_by_id(body.id)
    if user is None:
        role = UserRole.ADMIN if body.id in settings.admin_ids else UserRole.CLIENT
        user = await repo.create(
            user_id=body.id,
            role=role,
            name=body.name,
            phone=body.phone,
            avatar_url=body.avatar_url,
        )
        return user

    changes = body.model_dump(exclude={"id"}, exclude_none=True)
    return await repo.update(user, **changes)


@router.patch("/{user_id}", response_model=UserResponse, summary="Edit a profile")
@limiter.limit(settings.api_rate_limit)
async def update_user(
    request: Request,
    user_id: str,
    body: UserUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    repo = UserRepository(db)
    user = await repo.get_by_id(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return await repo.update(user, **body.model_dump(exclude_none=True))


@router.post(
    "/register-driver",
    response_model=UserResponse,
    summary="Become a driver by redeeming an access code",
)
@limiter.limit(settings.api_rate_limit)
async def register_driver(
    request: Request,
    body: RegisterDriverRequest,
    issuer: AccessCodeIssuer = Depends(get_code_issuer),
    notifier: LifecycleNotifier = Depends(get_notifier),
):
    user = unwrap(
        await issuer.register_driver_with_code(
            body.user_id, body.code, body.name, body.phone
        )
    )
    notifier.driver_registered(user, settings.admin_ids)
    return user
