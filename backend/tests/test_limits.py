"""Tests for the tier limit table and user limit validation."""
from __future__ import annotations

import pytest

from apiquota.core.config import DEFAULT_TIER_LIMITS
from apiquota.services.errors import ConfigurationError
from apiquota.services.limits import (
    KeyTier,
    LimitValidator,
    TierLimitTable,
    UserLimits,
    WindowLimits,
)
from apiquota.services.windows import Window


@pytest.fixture(name="table")
def table_fixture() -> TierLimitTable:
    return TierLimitTable.from_config(DEFAULT_TIER_LIMITS)


def test_builtin_limits_per_tier(table: TierLimitTable) -> None:
    assert table.builtin_limits_for("development") == WindowLimits(minute=1, hour=10, day=100, month=1000)
    assert table.builtin_limits_for(KeyTier.PRODUCTION) == WindowLimits(
        minute=10, hour=100, day=1000, month=1000
    )


def test_max_allowed_and_description(table: TierLimitTable) -> None:
    assert table.max_allowed("development") == {"minute": 1, "hour": 10, "day": 100, "month": 1000}
    assert table.describe("production")["hour"] == "Maximum 100 requests per hour"


def test_unknown_tier_is_configuration_error(table: TierLimitTable) -> None:
    with pytest.raises(ConfigurationError):
        table.builtin_limits_for("enterprise")


def test_table_requires_every_tier() -> None:
    with pytest.raises(ConfigurationError):
        TierLimitTable.from_config({"development": DEFAULT_TIER_LIMITS["development"]})


def test_table_rejects_unknown_tier_names() -> None:
    raw = dict(DEFAULT_TIER_LIMITS)
    raw["enterprise"] = {"minute": 1, "hour": 1, "day": 1, "month": 1}
    with pytest.raises(ConfigurationError):
        TierLimitTable.from_config(raw)


@pytest.mark.parametrize(
    "limits",
    [
        None,
        {"minute": 1, "hour": 10, "day": 100},
        {"minute": 0, "hour": 10, "day": 100, "month": 1000},
        {"minute": "lots", "hour": 10, "day": 100, "month": 1000},
    ],
)
def test_missing_or_malformed_builtin_limits_are_rejected(limits) -> None:
    with pytest.raises(ConfigurationError):
        WindowLimits.from_mapping(limits, source="test")


def test_user_limits_distinguish_zero_from_absent() -> None:
    limits = UserLimits.from_mapping({"minute": 0, "day": None})

    assert limits.minute == 0
    assert limits.day is None
    assert limits.present() == [(Window.MINUTE, 0)]
    assert UserLimits.from_mapping(None) == UserLimits()


def test_validate_rejects_limit_above_ceiling(table: TierLimitTable) -> None:
    result = LimitValidator(table).validate("development", {"day": 500})

    assert result.valid is False
    assert result.errors == ["Day limit cannot exceed 100 (maximum allowed)"]


def test_validate_reports_every_offending_window(table: TierLimitTable) -> None:
    result = LimitValidator(table).validate(
        KeyTier.DEVELOPMENT, UserLimits(minute=2, hour=10, day=101, month=5)
    )

    assert result.valid is False
    assert len(result.errors) == 2
    assert result.errors[0].startswith("Minute limit cannot exceed 1")
    assert result.errors[1].startswith("Day limit cannot exceed 100")


@pytest.mark.parametrize(
    ("tier", "limits", "valid"),
    [
        ("development", {}, True),
        ("development", {"minute": 1, "hour": 10, "day": 100, "month": 1000}, True),
        ("development", {"minute": 0}, True),
        ("development", {"month": 1001}, False),
        ("production", {"minute": 10, "month": 500}, True),
        ("production", {"hour": 101}, False),
    ],
)
def test_validate_is_invalid_iff_a_present_field_exceeds_ceiling(
    table: TierLimitTable, tier: str, limits: dict, valid: bool
) -> None:
    result = LimitValidator(table).validate(tier, limits)

    ceilings = table.builtin_limits_for(tier)
    expected = all(value <= ceilings.get(Window(w)) for w, value in limits.items())
    assert expected is valid
    assert result.valid is valid
    assert bool(result.errors) is not valid
