"""initial portfolio schema

Revision ID: 3a91c0d7e2b4
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "3a91c0d7e2b4"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PRICE = sa.Numeric(20, 8)
ALERT_PRICE = sa.Numeric(18, 8)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("supabase_user_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_supabase_user_id", "users", ["supabase_user_id"], unique=True)

    op.create_table(
        "holdings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("quantity", PRICE, nullable=False),
        sa.Column("average_price", PRICE, nullable=False),
        sa.Column("current_price", PRICE, nullable=False),
        sa.Column("is_price_estimated", sa.Boolean(), nullable=False),
        sa.Column("brokers", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_holdings_id", "holdings", ["id"])
    op.create_index("ix_holdings_user_id", "holdings", ["user_id"])
    op.create_index("ix_holdings_symbol", "holdings", ["symbol"])
    op.create_index("ix_holdings_type", "holdings", ["type"])

    op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("holding_id", sa.Integer(), sa.ForeignKey("holdings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("holding_name", sa.String(length=120), nullable=False),
        sa.Column("holding_symbol", sa.String(length=32), nullable=False),
        sa.Column("initial_price", ALERT_PRICE, nullable=False),
        sa.Column("target_price", ALERT_PRICE, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_alerts_id", "alerts", ["id"])
    op.create_index("ix_alerts_user_id", "alerts", ["user_id"])
    op.create_index("ix_alerts_holding_id", "alerts", ["holding_id"])
    op.create_index("ix_alerts_is_active", "alerts", ["is_active"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("holding_id", sa.Integer(), sa.ForeignKey("holdings.id", ondelete="CASCADE"), nullable=True),
        sa.Column("holding_name", sa.String(length=120), nullable=False),
        sa.Column("holding_symbol", sa.String(length=32), nullable=False),
        sa.Column("target_price", ALERT_PRICE, nullable=False),
        sa.Column("current_price", ALERT_PRICE, nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_notifications_id", "notifications", ["id"])
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_holding_id", "notifications", ["holding_id"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("alerts")
    op.drop_table("holdings")
    op.drop_table("users")
