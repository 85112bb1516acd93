"""Tests for window boundary arithmetic."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from apiquota.services.windows import WINDOWS, Window, ensure_utc, next_reset, window_start

UTC = timezone.utc


def test_window_order_is_minute_to_month() -> None:
    assert [w.value for w in WINDOWS] == ["minute", "hour", "day", "month"]


def test_window_start_truncates_to_boundary() -> None:
    now = datetime(2024, 5, 17, 13, 42, 7, 123456, tzinfo=UTC)

    assert window_start(now, Window.MINUTE) == datetime(2024, 5, 17, 13, 42, tzinfo=UTC)
    assert window_start(now, Window.HOUR) == datetime(2024, 5, 17, 13, tzinfo=UTC)
    assert window_start(now, Window.DAY) == datetime(2024, 5, 17, tzinfo=UTC)
    assert window_start(now, Window.MONTH) == datetime(2024, 5, 1, tzinfo=UTC)


def test_next_reset_returns_following_boundary() -> None:
    now = datetime(2024, 5, 17, 13, 42, 7, tzinfo=UTC)

    assert next_reset(now, Window.MINUTE) == datetime(2024, 5, 17, 13, 43, tzinfo=UTC)
    assert next_reset(now, Window.HOUR) == datetime(2024, 5, 17, 14, tzinfo=UTC)
    assert next_reset(now, Window.DAY) == datetime(2024, 5, 18, tzinfo=UTC)
    assert next_reset(now, Window.MONTH) == datetime(2024, 6, 1, tzinfo=UTC)


def test_next_reset_on_exact_boundary_is_strictly_later() -> None:
    boundary = datetime(2024, 5, 1, tzinfo=UTC)

    for window in WINDOWS:
        assert next_reset(boundary, window) > boundary
    assert next_reset(boundary, Window.MINUTE) == boundary + timedelta(minutes=1)
    assert next_reset(boundary, Window.MONTH) == datetime(2024, 6, 1, tzinfo=UTC)


def test_next_reset_rolls_december_into_next_year() -> None:
    now = datetime(2024, 12, 31, 23, 59, 59, tzinfo=UTC)

    assert next_reset(now, Window.MONTH) == datetime(2025, 1, 1, tzinfo=UTC)
    assert next_reset(now, Window.DAY) == datetime(2025, 1, 1, tzinfo=UTC)
    assert next_reset(now, Window.HOUR) == datetime(2025, 1, 1, tzinfo=UTC)
    assert next_reset(now, Window.MINUTE) == datetime(2025, 1, 1, tzinfo=UTC)


def test_next_reset_handles_leap_day() -> None:
    now = datetime(2024, 2, 29, 12, tzinfo=UTC)

    assert next_reset(now, Window.DAY) == datetime(2024, 3, 1, tzinfo=UTC)
    assert next_reset(now, Window.MONTH) == datetime(2024, 3, 1, tzinfo=UTC)


def test_naive_and_offset_datetimes_are_treated_as_utc() -> None:
    naive = datetime(2024, 5, 17, 13, 42)
    assert ensure_utc(naive) == datetime(2024, 5, 17, 13, 42, tzinfo=UTC)

    plus_two = timezone(timedelta(hours=2))
    local = datetime(2024, 6, 1, 1, 30, tzinfo=plus_two)
    # 01:30+02:00 is still May in UTC
    assert next_reset(local, Window.MONTH) == datetime(2024, 6, 1, tzinfo=UTC)
    assert next_reset(local, Window.DAY) == datetime(2024, 6, 1, tzinfo=UTC)


def test_string_window_names_are_accepted() -> None:
    now = datetime(2024, 5, 17, 13, 42, tzinfo=UTC)
    assert next_reset(now, "hour") == datetime(2024, 5, 17, 14, tzinfo=UTC)  # type: ignore[arg-type]

    with pytest.raises(ValueError):
        next_reset(now, "week")  # type: ignore[arg-type]
