"""Application-wide settings for the API quota service."""
from __future__ import annotations

from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Built-in ceilings per key tier. Operators may override them through
# TIER_LIMITS (JSON), but these literal values are the published defaults.
DEFAULT_TIER_LIMITS: Dict[str, Dict[str, int]] = {
    "development": {"minute": 1, "hour": 10, "day": 100, "month": 1000},
    "production": {"minute": 10, "hour": 100, "day": 1000, "month": 1000},
}


class Settings(BaseSettings):
    """Global application configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = Field(default="API Quota Service", env="APP_NAME")
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")
    # Basic auth for admin endpoints (optional)
    auth_basic_username: Optional[str] = Field(default=None, env="AUTH_BASIC_USERNAME")
    auth_basic_password_hash: Optional[str] = Field(
        default=None, env="AUTH_BASIC_PASSWORD_HASH"
    )
    auth_basic_password_plain: Optional[str] = Field(
        default=None, env="AUTH_BASIC_PASSWORD_PLAIN"
    )
    # JSONL fallback stores used when DATABASE_URL is not configured
    api_key_store_path: str = Field(
        default="storage/api_keys.jsonl", env="API_KEY_STORE_PATH"
    )
    rate_limit_store_path: str = Field(
        default="storage/rate_limits.jsonl", env="RATE_LIMIT_STORE_PATH"
    )
    # Usage store round trips
    store_timeout_seconds: float = Field(default=5.0, env="STORE_TIMEOUT_SECONDS")
    store_cas_max_attempts: int = Field(default=5, env="STORE_CAS_MAX_ATTEMPTS")
    # Built-in limit tables, keyed by tier then window
    tier_limits: Dict[str, Dict[str, int]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_TIER_LIMITS.items()},
        env="TIER_LIMITS",
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["DEFAULT_TIER_LIMITS", "Settings", "get_settings"]
