"""SQLAlchemy ORM models."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ApiKey(Base):
    """API key credentials for external access (SQL-backed)."""

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    prefix: Mapped[str] = mapped_column(String(24), nullable=False, unique=True, index=True)
    hashed_key: Mapped[str] = mapped_column(String(64), nullable=False)
    key_tier: Mapped[str] = mapped_column(String(16), nullable=False, default="development")
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )


class RateLimit(Base):
    """Per-key limits and window counters.

    ``version`` is bumped on every write and used for compare-and-swap.
    """

    __tablename__ = "rate_limits"

    key_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("api_keys.id", ondelete="CASCADE"), primary_key=True
    )
    key_tier: Mapped[str] = mapped_column(String(16), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    builtin_minute_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    builtin_hour_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    builtin_day_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    builtin_month_limit: Mapped[int] = mapped_column(Integer, nullable=False)

    user_minute_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_hour_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_day_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_month_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)

    usage_current_minute: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_current_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_current_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_current_month: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    usage_reset_minute: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    usage_reset_hour: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    usage_reset_day: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    usage_reset_month: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
