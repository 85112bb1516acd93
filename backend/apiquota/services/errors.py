"""Error taxonomy for rate limiting and usage accounting.

Policy outcomes (``RateLimitDenied``) and evaluation failures
(``StoreUnavailable``) are deliberately separate types so callers can map
them to different HTTP statuses.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from apiquota.services.rate_limit import Denied


class RateLimitError(Exception):
    """Base class for all errors raised by the quota core."""


class LimitValidationError(RateLimitError):
    """Raised when user-chosen limits exceed the tier's built-in ceilings."""

    def __init__(self, errors: Sequence[str], max_allowed: Mapping[str, int] | None = None) -> None:
        super().__init__("; ".join(errors) or "Invalid user limits")
        self.errors = list(errors)
        self.max_allowed = dict(max_allowed or {})


class RateLimitDenied(RateLimitError):
    """Raised by the HTTP layer when a check returned a ``Denied`` decision."""

    def __init__(self, decision: "Denied") -> None:
        super().__init__(decision.reason)
        self.decision = decision

    def to_body(self) -> dict[str, Any]:
        return self.decision.to_body()


class StoreUnavailable(RateLimitError):
    """The usage store could not be reached or updated; retryable."""


class RecordNotFound(RateLimitError):
    """No rate-limit record exists for the given key id."""

    def __init__(self, key_id: str) -> None:
        super().__init__(f"No rate limit record for key {key_id}")
        self.key_id = key_id


class ConfigurationError(RateLimitError):
    """Built-in limits are missing or malformed."""


__all__ = [
    "ConfigurationError",
    "LimitValidationError",
    "RateLimitDenied",
    "RateLimitError",
    "RecordNotFound",
    "StoreUnavailable",
]
