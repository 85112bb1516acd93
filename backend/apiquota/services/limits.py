"""Tier ceilings and validation of user-chosen limits.

The tier table is built once from settings and passed explicitly to the
validator and the rate-limit service; nothing here reads ambient state.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from apiquota.services.errors import ConfigurationError
from apiquota.services.windows import WINDOWS, Window

logger = logging.getLogger(__name__)


class KeyTier(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


@dataclass(frozen=True, slots=True)
class WindowLimits:
    """Built-in ceilings, one per window. Every value is required."""

    minute: int
    hour: int
    day: int
    month: int

    def get(self, window: Window) -> int:
        return getattr(self, Window(window).value)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None, *, source: str = "limits") -> "WindowLimits":
        if not payload:
            raise ConfigurationError(f"Built-in limits missing for {source}")
        values: dict[str, int] = {}
        for window in WINDOWS:
            raw = payload.get(window.value)
            if raw is None:
                raise ConfigurationError(f"Built-in {window.value} limit missing for {source}")
            try:
                value = int(raw)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(
                    f"Built-in {window.value} limit for {source} is not an integer: {raw!r}"
                ) from exc
            if value <= 0:
                raise ConfigurationError(
                    f"Built-in {window.value} limit for {source} must be positive, got {value}"
                )
            values[window.value] = value
        return cls(**values)


@dataclass(frozen=True, slots=True)
class UserLimits:
    """Optional user ceilings. ``None`` means no extra restriction."""

    minute: Optional[int] = None
    hour: Optional[int] = None
    day: Optional[int] = None
    month: Optional[int] = None

    def get(self, window: Window) -> Optional[int]:
        return getattr(self, Window(window).value)

    def present(self) -> list[tuple[Window, int]]:
        return [(w, v) for w in WINDOWS if (v := self.get(w)) is not None]

    def as_dict(self) -> dict[str, Optional[int]]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "UserLimits":
        if not payload:
            return cls()
        values: dict[str, Optional[int]] = {}
        for window in WINDOWS:
            raw = payload.get(window.value)
            values[window.value] = None if raw is None else int(raw)
        return cls(**values)


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


class TierLimitTable:
    """Read-only map of tier to built-in ceilings."""

    def __init__(self, table: Mapping[KeyTier, WindowLimits]) -> None:
        self._table = MappingProxyType(dict(table))

    @classmethod
    def from_config(cls, raw: Mapping[str, Mapping[str, Any]]) -> "TierLimitTable":
        table: dict[KeyTier, WindowLimits] = {}
        for name, limits in raw.items():
            try:
                tier = KeyTier(name)
            except ValueError as exc:
                raise ConfigurationError(f"Unknown key tier in limit table: {name!r}") from exc
            table[tier] = WindowLimits.from_mapping(limits, source=f"tier {tier.value}")
        missing = [t.value for t in KeyTier if t not in table]
        if missing:
            raise ConfigurationError(f"Limit table has no entry for tiers: {', '.join(missing)}")
        logger.debug("Loaded tier limit table", extra={"tiers": [t.value for t in table]})
        return cls(table)

    def builtin_limits_for(self, tier: KeyTier | str) -> WindowLimits:
        try:
            return self._table[KeyTier(tier)]
        except (KeyError, ValueError) as exc:
            raise ConfigurationError(f"No built-in limits configured for tier {tier!r}") from exc

    def max_allowed(self, tier: KeyTier | str) -> dict[str, int]:
        """Ceilings a user may choose for ``tier``, keyed by window name."""

        return self.builtin_limits_for(tier).as_dict()

    def describe(self, tier: KeyTier | str) -> dict[str, str]:
        limits = self.builtin_limits_for(tier)
        return {w.value: f"Maximum {limits.get(w)} requests per {w.value}" for w in WINDOWS}


class LimitValidator:
    """Check proposed user limits against a tier's built-in ceilings.

    Only used when keys are created or updated, never on the request path.
    """

    def __init__(self, table: TierLimitTable) -> None:
        self._table = table

    def validate(
        self, tier: KeyTier | str, user_limits: UserLimits | Mapping[str, Any] | None
    ) -> ValidationResult:
        if not isinstance(user_limits, UserLimits):
            user_limits = UserLimits.from_mapping(user_limits)
        builtin = self._table.builtin_limits_for(tier)
        errors: list[str] = []
        for window, value in user_limits.present():
            ceiling = builtin.get(window)
            if value > ceiling:
                errors.append(
                    f"{window.value.capitalize()} limit cannot exceed {ceiling} (maximum allowed)"
                )
        return ValidationResult(valid=not errors, errors=errors)


__all__ = [
    "KeyTier",
    "LimitValidator",
    "TierLimitTable",
    "UserLimits",
    "ValidationResult",
    "WindowLimits",
]
