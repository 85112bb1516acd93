"""Multi-window rate limiting keyed by API key id.

Each key is limited by two sets of ceilings, the tier's built-in limits and
optional user limits, over four independent windows. A request goes through
``check`` (reset expired windows, then decide) and, only if the caller
proceeds, ``commit`` (charge one unit to every window).

Windows roll over lazily: nothing runs in the background, expired counters are
reset the next time the key is checked or charged.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, TypeVar, Union

from apiquota.services.errors import LimitValidationError, StoreUnavailable
from apiquota.services.limits import (
    KeyTier,
    LimitValidator,
    TierLimitTable,
    UserLimits,
    WindowLimits,
)
from apiquota.services.usage_store import (
    RateLimitRecord,
    ResetSchedule,
    UsageStore,
    WindowCounts,
)
from apiquota.services.windows import WINDOWS, Window, ensure_utc, next_reset

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LimitSource(str, Enum):
    BUILTIN = "builtin"
    USER = "user"


@dataclass(frozen=True, slots=True)
class Allowed:
    current_usage: WindowCounts
    builtin_limits: WindowLimits
    user_limits: UserLimits
    usage_reset_at: ResetSchedule

    allowed = True


@dataclass(frozen=True, slots=True)
class Denied:
    limit_source: LimitSource
    window: Window
    limit: int
    current: int
    reset_at: datetime
    current_usage: WindowCounts
    builtin_limits: WindowLimits
    user_limits: UserLimits

    allowed = False

    @property
    def reason(self) -> str:
        return f"{self.limit_source.value.upper()}_{self.window.value.upper()}_LIMIT_EXCEEDED"

    def retry_after(self, now: datetime) -> int:
        """Whole seconds until the blocking window resets, never negative."""

        delta = (self.reset_at - ensure_utc(now)).total_seconds()
        return max(0, int(delta + 0.999))

    def to_body(self) -> dict[str, Any]:
        return {
            "error": "RATE_LIMIT_EXCEEDED",
            "reason": self.reason,
            "limit_type": self.limit_source.value,
            "window": self.window.value,
            "limit": self.limit,
            "current": self.current,
            "reset_at": self.reset_at.isoformat(),
        }


Decision = Union[Allowed, Denied]


# ---------------------
# Pure window/decision logic
# ---------------------


def reset_if_expired(record: RateLimitRecord, now: datetime) -> tuple[RateLimitRecord, bool]:
    """Zero every window whose reset instant is at or before ``now``.

    Windows are handled independently; a day rollover does not touch the hour
    counter. Applying this twice with the same ``now`` changes nothing the
    second time because every new reset instant is strictly after ``now``.
    """

    now = ensure_utc(now)
    usage = record.usage_current.as_dict()
    resets = record.usage_reset_at.as_dict()
    changed = False
    for window in WINDOWS:
        if resets[window.value] <= now:
            usage[window.value] = 0
            resets[window.value] = next_reset(now, window)
            changed = True
    if not changed:
        return record, False
    return (
        replace(record, usage_current=WindowCounts(**usage), usage_reset_at=ResetSchedule(**resets)),
        True,
    )


def decide(record: RateLimitRecord, now: datetime) -> Decision:
    """Evaluate admission for ``record`` at ``now``.

    Built-in ceilings are checked first, minute to month, then user ceilings
    in the same order. The first violation found is reported.
    """

    record, _ = reset_if_expired(record, now)
    usage = record.usage_current
    builtin = record.builtin_limits
    user = record.user_limits

    def _denied(source: LimitSource, window: Window, limit: int) -> Denied:
        return Denied(
            limit_source=source,
            window=window,
            limit=limit,
            current=usage.get(window),
            reset_at=record.usage_reset_at.get(window),
            current_usage=usage,
            builtin_limits=builtin,
            user_limits=user,
        )

    for window in WINDOWS:
        if usage.get(window) >= builtin.get(window):
            return _denied(LimitSource.BUILTIN, window, builtin.get(window))

    for window, limit in user.present():
        if usage.get(window) >= limit:
            return _denied(LimitSource.USER, window, limit)

    return Allowed(
        current_usage=usage,
        builtin_limits=builtin,
        user_limits=user,
        usage_reset_at=record.usage_reset_at,
    )


def apply_usage(record: RateLimitRecord, now: datetime) -> RateLimitRecord:
    """Charge one request to every window and stamp ``last_used_at``."""

    now = ensure_utc(now)
    record, _ = reset_if_expired(record, now)
    usage = record.usage_current
    return replace(
        record,
        usage_current=WindowCounts(**{w.value: usage.get(w) + 1 for w in WINDOWS}),
        last_used_at=now,
    )


def build_headers(
    current_usage: WindowCounts,
    builtin_limits: WindowLimits,
    user_limits: UserLimits,
) -> dict[str, str]:
    """Render the ``X-RateLimit-*`` header set.

    Built-in headers are always present; user headers only for windows that
    have a user limit.
    """

    headers: dict[str, str] = {}
    for window in WINDOWS:
        _add_triple(headers, "Builtin", window, builtin_limits.get(window), current_usage.get(window))
    for window, limit in user_limits.present():
        _add_triple(headers, "User", window, limit, current_usage.get(window))
    return headers


def _add_triple(headers: dict[str, str], source: str, window: Window, limit: int, used: int) -> None:
    prefix = f"X-RateLimit-{source}-{window.value.capitalize()}"
    headers[f"{prefix}-Limit"] = str(limit)
    headers[f"{prefix}-Remaining"] = str(max(0, limit - used))
    headers[f"{prefix}-Used"] = str(used)


def usage_statistics(record: RateLimitRecord, now: datetime) -> dict[str, Any]:
    """Summarize a key's usage for dashboards without persisting resets."""

    record, _ = reset_if_expired(record, now)
    usage = record.usage_current
    builtin = record.builtin_limits
    remaining = {w.value: max(0, builtin.get(w) - usage.get(w)) for w in WINDOWS}
    percentage = {
        w.value: round(usage.get(w) / builtin.get(w) * 100, 2) if builtin.get(w) > 0 else 0
        for w in WINDOWS
    }
    return {
        "key_id": record.key_id,
        "key_type": record.key_tier.value,
        "builtin_limits": builtin.as_dict(),
        "user_limits": record.user_limits.as_dict(),
        "usage": {
            "current": usage.as_dict(),
            "remaining": remaining,
            "percentage": percentage,
        },
        "reset_times": {k: v.isoformat() for k, v in record.usage_reset_at.as_dict().items()},
        "last_used": record.last_used_at.isoformat() if record.last_used_at else None,
        "status": "active" if remaining[Window.MONTH.value] > 0 else "limit_exceeded",
    }


# ---------------------
# Service facade
# ---------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimitService:
    """Entry point used by the HTTP layer.

    Every method performs bounded store round trips; no in-process lock is
    held across them, so correctness rests on the store's atomic update.
    """

    def __init__(
        self,
        store: UsageStore,
        limits: TierLimitTable,
        *,
        clock: Callable[[], datetime] = _utcnow,
        timeout_seconds: float | None = 5.0,
    ) -> None:
        self._store = store
        self._limits = limits
        self._validator = LimitValidator(limits)
        self._clock = clock
        self._timeout = timeout_seconds

    @property
    def limits(self) -> TierLimitTable:
        return self._limits

    async def check(self, key_id: str) -> Decision:
        """Reset expired windows, persist the resets, then decide."""

        now = self._clock()
        record = await self._call(self._store.get(key_id))
        _, needs_reset = reset_if_expired(record, now)
        if needs_reset:
            record = await self._call(
                self._store.atomic_update(key_id, lambda r: reset_if_expired(r, now)[0])
            )
        decision = decide(record, now)
        if isinstance(decision, Denied):
            logger.info(
                "Rate limit exceeded",
                extra={
                    "key_id": key_id,
                    "reason": decision.reason,
                    "limit": decision.limit,
                    "current": decision.current,
                },
            )
        return decision

    async def commit(self, key_id: str) -> Allowed:
        """Charge one request to ``key_id``. Call only after an ``Allowed`` check.

        Returns the post-charge snapshot for rendering headers.
        """

        now = self._clock()
        record = await self._call(
            self._store.atomic_update(key_id, lambda r: apply_usage(r, now))
        )
        return Allowed(
            current_usage=record.usage_current,
            builtin_limits=record.builtin_limits,
            user_limits=record.user_limits,
            usage_reset_at=record.usage_reset_at,
        )

    def headers_for(self, decision: Decision) -> dict[str, str]:
        return build_headers(decision.current_usage, decision.builtin_limits, decision.user_limits)

    async def create_record(
        self,
        key_id: str,
        tier: KeyTier | str,
        user_limits: UserLimits | Mapping[str, Any] | None = None,
    ) -> RateLimitRecord:
        """Create the record for a newly issued key after validating user limits."""

        user = self.validate_user_limits(tier, user_limits)
        record = RateLimitRecord.new(
            key_id=key_id,
            key_tier=tier,
            builtin_limits=self._limits.builtin_limits_for(tier),
            user_limits=user,
            now=self._clock(),
        )
        return await self._call(self._store.create(record))

    async def update_user_limits(
        self, key_id: str, user_limits: UserLimits | Mapping[str, Any] | None
    ) -> RateLimitRecord:
        record = await self._call(self._store.get(key_id))
        user = self.validate_user_limits(record.key_tier, user_limits)
        return await self._call(
            self._store.atomic_update(key_id, lambda r: replace(r, user_limits=user))
        )

    async def delete_record(self, key_id: str) -> bool:
        return await self._call(self._store.delete(key_id))

    async def statistics(self, key_id: str) -> dict[str, Any]:
        record = await self._call(self._store.get(key_id))
        return usage_statistics(record, self._clock())

    def validate_user_limits(
        self, tier: KeyTier | str, user_limits: UserLimits | Mapping[str, Any] | None
    ) -> UserLimits:
        """Return parsed user limits or raise ``LimitValidationError``."""

        if not isinstance(user_limits, UserLimits):
            user_limits = UserLimits.from_mapping(user_limits)
        result = self._validator.validate(tier, user_limits)
        if not result.valid:
            raise LimitValidationError(result.errors, self._limits.max_allowed(tier))
        return user_limits

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Usage store timed out", extra={"timeout": self._timeout})
            raise StoreUnavailable(f"Usage store timed out after {self._timeout}s") from exc


__all__ = [
    "Allowed",
    "Decision",
    "Denied",
    "LimitSource",
    "RateLimitService",
    "apply_usage",
    "build_headers",
    "decide",
    "reset_if_expired",
    "usage_statistics",
]
