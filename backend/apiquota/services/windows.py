"""Calendar arithmetic for the four accounting windows.

All boundaries are computed in UTC. Naive datetimes are assumed to already
be UTC.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum


class Window(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    MONTH = "month"


# Evaluation order used everywhere limits are checked or rendered.
WINDOWS: tuple[Window, ...] = (Window.MINUTE, Window.HOUR, Window.DAY, Window.MONTH)


def ensure_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def window_start(now: datetime, kind: Window) -> datetime:
    """Return the start of the window of ``kind`` containing ``now``."""

    now = ensure_utc(now)
    kind = Window(kind)
    if kind is Window.MINUTE:
        return now.replace(second=0, microsecond=0)
    if kind is Window.HOUR:
        return now.replace(minute=0, second=0, microsecond=0)
    if kind is Window.DAY:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if kind is Window.MONTH:
        return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    raise ValueError(f"Unknown window: {kind!r}")


def next_reset(now: datetime, kind: Window) -> datetime:
    """Return the first boundary of ``kind`` strictly after ``now``."""

    kind = Window(kind)
    start = window_start(now, kind)
    if kind is Window.MINUTE:
        return start + timedelta(minutes=1)
    if kind is Window.HOUR:
        return start + timedelta(hours=1)
    if kind is Window.DAY:
        return start + timedelta(days=1)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


__all__ = ["WINDOWS", "Window", "ensure_utc", "next_reset", "window_start"]
