"""Initial schema: users, orders, access codes, chat, ratings, tariffs.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

# created once up front; order_type is shared by orders and tariffs
user_role = postgresql.ENUM(
    "client", "driver", "admin", name="user_role", create_type=False
)
order_type = postgresql.ENUM(
    "taxi", "cargo", "courier", "towing", name="order_type", create_type=False
)
order_status = postgresql.ENUM(
    "new",
    "bidding",
    "accepted",
    "arrived",
    "in_progress",
    "completed",
    "cancelled",
    name="order_status",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (user_role, order_type, order_status):
        enum_type.create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("name", sa.String(120), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("avatar_url", sa.String(512), nullable=True),
        sa.Column("is_blocked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("warnings", sa.JSON, nullable=False),
        sa.Column("bonuses", sa.JSON, nullable=False),
        sa.Column("balance", sa.Float, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_users_role", "users", ["role"])

    # ── orders ────────────────────────────────────────────────────────
    op.create_table(
        "orders",
        sa.Column("order_id", sa.String(36), primary_key=True),
        sa.Column("type", order_type, nullable=False),
        sa.Column("client_id", sa.String(64), nullable=False),
        sa.Column("driver_id", sa.String(64), nullable=True),
        sa.Column("from", sa.Text, nullable=False),
        sa.Column("to", sa.Text, nullable=False),
        sa.Column("comment", sa.Text, nullable=True),
        sa.Column("required_detail", sa.Text, nullable=True),
        sa.Column("status", order_status, nullable=False),
        sa.Column("price", sa.Float, nullable=False, server_default="0"),
        sa.Column("driver_bid_price", sa.Float, nullable=True),
        sa.Column("distance_km", sa.Float, nullable=True),
        sa.Column("proposal_attempts", sa.JSON, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_orders_status", "orders", ["status"])
    op.create_index("idx_orders_client", "orders", ["client_id"])
    op.create_index("idx_orders_driver", "orders", ["driver_id"])

    # ── access_codes ──────────────────────────────────────────────────
    op.create_table(
        "access_codes",
        sa.Column("code", sa.String(16), primary_key=True),
        sa.Column("issued_by", sa.String(64), nullable=False),
        sa.Column("is_used", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("used_by", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── chat_messages ─────────────────────────────────────────────────
    op.create_table(
        "chat_messages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), nullable=False),
        sa.Column("sender_id", sa.String(64), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_chat_order", "chat_messages", ["order_id"])

    # ── ratings ───────────────────────────────────────────────────────
    op.create_table(
        "ratings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), unique=True, nullable=False),
        sa.Column("driver_id", sa.String(64), nullable=False),
        sa.Column("stars", sa.Integer, nullable=False),
        sa.Column("comment", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("stars BETWEEN 1 AND 5", name="ck_ratings_stars"),
    )
    op.create_index("idx_ratings_driver", "ratings", ["driver_id"])

    # ── tariffs ───────────────────────────────────────────────────────
    op.create_table(
        "tariffs",
        sa.Column("type", order_type, primary_key=True),
        sa.Column("base_price", sa.Float, nullable=False),
        sa.Column("per_km", sa.Float, nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("tariffs")
    op.drop_table("ratings")
    op.drop_table("chat_messages")
    op.drop_table("access_codes")
    op.drop_table("orders")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS order_status")
    op.execute("DROP TYPE IF EXISTS order_type")
    op.execute("DROP TYPE IF EXISTS user_role")
