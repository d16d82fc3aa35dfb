"""Pydantic request / response schemas for the REST API (camelCase JSON)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from taxi_dispatch.domain.enums import OrderStatus, OrderType, UserRole


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        allow_inf_nan=False,
    )


# ── Requests ──────────────────────────────────────────────────────────


class UserUpsertRequest(CamelModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: Optional[str] = Field(None, max_length=120)
    phone: Optional[str] = Field(None, max_length=32)
    avatar_url: Optional[str] = Field(None, max_length=512)


class UserUpdateRequest(CamelModel):
    name: Optional[str] = Field(None, max_length=120)
    phone: Optional[str] = Field(None, max_length=32)
    avatar_url: Optional[str] = Field(None, max_length=512)


class RegisterDriverRequest(CamelModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    code: str = Field(..., min_length=1, max_length=16)
    name: Optional[str] = Field(None, max_length=120)
    phone: Optional[str] = Field(None, max_length=32)


class OrderCreateRequest(CamelModel):
    client_id: str = Field(..., min_length=1, max_length=64)
    type: OrderType
    from_address: str = Field(..., alias="from", min_length=1)
    to_address: str = Field(..., alias="to", min_length=1)
    comment: Optional[str] = None
    required_detail: Optional[str] = None
    distance_km: Optional[float] = Field(None, ge=0)
    price: Optional[float] = Field(None, ge=0)


class OrderUpdateRequest(CamelModel):
    from_address: Optional[str] = Field(None, alias="from", min_length=1)
    to_address: Optional[str] = Field(None, alias="to", min_length=1)
    comment: Optional[str] = None
    required_detail: Optional[str] = None
    distance_km: Optional[float] = Field(None, ge=0)


class AcceptOrderRequest(CamelModel):
    driver_id: str
    distance_km: Optional[float] = Field(None, gt=0)


class BidRequest(CamelModel):
    driver_id: str
    price: float


class BidResponseRequest(CamelModel):
    client_id: str
    accepted: bool


class RateOrderRequest(CamelModel):
    stars: float
    comment: Optional[str] = Field(None, max_length=1000)


class ChatMessageRequest(CamelModel):
    order_id: str
    sender_id: str
    message: str = Field(..., min_length=1, max_length=2000)


class GenerateCodeRequest(CamelModel):
    admin_id: str = Field("admin", min_length=1, max_length=64)


class NoteRequest(CamelModel):
    text: str = Field(..., min_length=1, max_length=500)


class TariffUpdateRequest(CamelModel):
    type: OrderType
    base_price: float = Field(..., ge=0)
    per_km: float = Field(..., ge=0)


class FinanceRequest(CamelModel):
    user_id: str
    amount: float


class BroadcastRequest(CamelModel):
    message: str = Field(..., min_length=1, max_length=4000)


# ── Responses ─────────────────────────────────────────────────────────


class UserResponse(CamelModel):
    id: str
    role: UserRole
    name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    is_blocked: bool = False
    warnings: list[str] = []
    bonuses: list[str] = []
    balance: float = 0.0
    created_at: Optional[datetime] = None


class OrderResponse(CamelModel):
    order_id: str
    type: OrderType
    client_id: str
    driver_id: Optional[str] = None
    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    comment: Optional[str] = None
    required_detail: Optional[str] = None
    status: OrderStatus
    price: float = 0.0
    driver_bid_price: Optional[float] = None
    distance_km: Optional[float] = None
    proposal_attempts: list[str] = []
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class AccessCodeResponse(CamelModel):
    code: str
    issued_by: str
    is_used: bool
    used_by: Optional[str] = None
    created_at: Optional[datetime] = None
    used_at: Optional[datetime] = None


class ChatMessageResponse(CamelModel):
    id: str
    order_id: str
    sender_id: str
    message: str
    created_at: Optional[datetime] = None


class RatingResponse(CamelModel):
    id: str
    order_id: str
    driver_id: str
    stars: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None


class RateResultResponse(CamelModel):
    success: bool


class DriverStatsResponse(CamelModel):
    completed_orders: int
    total_ratings: int
    average_rating: float


class DriverBadgesResponse(CamelModel):
    badges: Optional[str] = None


class DriverSummaryResponse(UserResponse):
    stats: DriverStatsResponse
    badges: Optional[str] = None


class AdminStatsResponse(CamelModel):
    total_orders: int
    completed_orders: int
    active_drivers: int
    pending_orders: int
    average_rating: float


class TariffResponse(CamelModel):
    type: OrderType
    base_price: float
    per_km: float


class BroadcastResponse(CamelModel):
    queued: int


class HealthResponse(BaseModel):
    status: str = "ok"


class TelegramUpdate(BaseModel):
    """The subset of a Bot API ``Update`` the webhook reads."""

    update_id: int
    message: Optional[dict[str, Any]] = None
