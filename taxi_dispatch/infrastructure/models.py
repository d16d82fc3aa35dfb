"""
SQLAlchemy ORM models.

Tables
------
* ``users``          -- clients, drivers and admins (Telegram user ids)
* ``orders``         -- ride / cargo / courier / towing requests
* ``access_codes``   -- one-time driver registration codes
* ``chat_messages``  -- per-order client <-> driver chat
* ``ratings``        -- at most one rating per completed order
* ``tariffs``        -- admin overrides of the default tariff table

Indexes
-------
* **B-Tree** on ``orders.status``, ``orders.client_id``, ``orders.driver_id``
  for the polling queries drivers and clients run constantly.
* **Unique** on ``ratings.order_id`` backs the one-rating-per-order rule.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
)

from .database import Base
from taxi_dispatch.domain.enums import OrderStatus, OrderType, UserRole


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _values(enum_cls):
    # persist "new" rather than "NEW"
    return [member.value for member in enum_cls]


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    role = Column(
        Enum(UserRole, name="user_role", values_callable=_values),
        default=UserRole.CLIENT,
        nullable=False,
    )
    name = Column(String(120), nullable=True)
    phone = Column(String(32), nullable=True)
    avatar_url = Column(String(512), nullable=True)
    is_blocked = Column(Boolean, default=False, nullable=False)
    warnings = Column(JSON, default=list, nullable=False)
    bonuses = Column(JSON, default=list, nullable=False)
    balance = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_users_role", "role"),)


class OrderModel(Base):
    __tablename__ = "orders"

    order_id = Column(String(36), primary_key=True, default=new_id)
    type = Column(
        Enum(OrderType, name="order_type", values_callable=_values),
        nullable=False,
    )
    client_id = Column(String(64), nullable=False)
    driver_id = Column(String(64), nullable=True)

    from_address = Column("from", Text, nullable=False)
    to_address = Column("to", Text, nullable=False)
    comment = Column(Text, nullable=True)
    required_detail = Column(Text, nullable=True)

    status = Column(
        Enum(OrderStatus, name="order_status", values_callable=_values),
        default=OrderStatus.NEW,
        nullable=False,
    )
    price = Column(Float, default=0.0, nullable=False)
    driver_bid_price = Column(Float, nullable=True)
    distance_km = Column(Float, nullable=True)
    # drivers whose bid the client rejected; they cannot claim again
    proposal_attempts = Column(JSON, default=list, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    arrived_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_orders_status", "status"),
        Index("idx_orders_client", "client_id"),
        Index("idx_orders_driver", "driver_id"),
    )


class AccessCodeModel(Base):
    __tablename__ = "access_codes"

    code = Column(String(16), primary_key=True)
    issued_by = Column(String(64), nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)
    used_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    used_at = Column(DateTime(timezone=True), nullable=True)


class ChatMessageModel(Base):
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), nullable=False)
    sender_id = Column(String(64), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_chat_order", "order_id"),)


class RatingModel(Base):
    __tablename__ = "ratings"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), unique=True, nullable=False)
    driver_id = Column(String(64), nullable=False)
    stars = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (Index("idx_ratings_driver", "driver_id"),)


class TariffModel(Base):
    __tablename__ = "tariffs"

    type = Column(
        Enum(OrderType, name="order_type", values_callable=_values),
        primary_key=True,
    )
    base_price = Column(Float, nullable=False)
    per_km = Column(Float, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
