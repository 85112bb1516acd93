"""create rate limits table

Revision ID: 0002_create_rate_limits_table
Revises: 0001_create_api_keys_table
Create Date: 2026-10-18
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_create_rate_limits_table"
down_revision = "0001_create_api_keys_table"
branch_labels = None
depends_on = None

WINDOWS = ("minute", "hour", "day", "month")


def upgrade() -> None:
    columns = [
        sa.Column(
            "key_id",
            sa.String(length=32),
            sa.ForeignKey("api_keys.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("key_tier", sa.String(length=16), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
    ]
    columns += [sa.Column(f"builtin_{w}_limit", sa.Integer(), nullable=False) for w in WINDOWS]
    columns += [sa.Column(f"user_{w}_limit", sa.Integer(), nullable=True) for w in WINDOWS]
    columns += [
        sa.Column(f"usage_current_{w}", sa.Integer(), nullable=False, server_default="0")
        for w in WINDOWS
    ]
    columns += [
        sa.Column(f"usage_reset_{w}", sa.DateTime(timezone=True), nullable=False) for w in WINDOWS
    ]
    columns += [
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]
    op.create_table("rate_limits", *columns)


def downgrade() -> None:
    op.drop_table("rate_limits")
