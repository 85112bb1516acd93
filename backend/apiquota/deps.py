"""FastAPI dependency helpers."""
from __future__ import annotations

import json
from functools import lru_cache
from typing import Union

from fastapi import Depends

from apiquota.core.config import Settings, get_settings
from apiquota.db.session import get_session_maker
from apiquota.services.limits import TierLimitTable
from apiquota.services.rate_limit import RateLimitService
from apiquota.services.usage_store import FileUsageStore, SQLUsageStore


@lru_cache
def _create_tier_table(raw: str) -> TierLimitTable:
    return TierLimitTable.from_config(json.loads(raw))


@lru_cache
def _create_file_usage_store(path: str) -> FileUsageStore:
    return FileUsageStore(path)


def get_tier_table(settings: Settings = Depends(get_settings)) -> TierLimitTable:
    """Return the read-only built-in limit table, parsed once per configuration."""

    return _create_tier_table(json.dumps(settings.tier_limits, sort_keys=True))


def get_usage_store(
    settings: Settings = Depends(get_settings),
) -> Union[FileUsageStore, SQLUsageStore]:
    if settings.database_url:
        return SQLUsageStore(
            get_session_maker(settings), max_attempts=settings.store_cas_max_attempts
        )
    return _create_file_usage_store(settings.rate_limit_store_path)


def get_rate_limit_service(
    settings: Settings = Depends(get_settings),
    store: Union[FileUsageStore, SQLUsageStore] = Depends(get_usage_store),
    limits: TierLimitTable = Depends(get_tier_table),
) -> RateLimitService:
    """Provide a rate limit service bound to the configured store."""

    return RateLimitService(store, limits, timeout_seconds=settings.store_timeout_seconds)


__all__ = ["get_rate_limit_service", "get_tier_table", "get_usage_store"]
