"""Pydantic schemas for key management, limits and usage endpoints."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from apiquota.services.limits import KeyTier, UserLimits


class UserLimitsPayload(BaseModel):
    """Optional per-window ceilings chosen by the key owner."""

    minute: Optional[int] = Field(default=None, ge=0, description="Requests per minute")
    hour: Optional[int] = Field(default=None, ge=0, description="Requests per hour")
    day: Optional[int] = Field(default=None, ge=0, description="Requests per day")
    month: Optional[int] = Field(default=None, ge=0, description="Requests per month")

    def to_user_limits(self) -> UserLimits:
        return UserLimits(minute=self.minute, hour=self.hour, day=self.day, month=self.month)


class ApiKeyCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="API key name")
    key_type: KeyTier = Field(default=KeyTier.DEVELOPMENT, description="Key tier")
    limits: Optional[UserLimitsPayload] = Field(default=None, description="Optional user limits")


class ApiKeyCreateResponse(BaseModel):
    id: str
    name: str
    prefix: str
    key_type: KeyTier
    is_active: bool
    created_at: str
    builtin_limits: Dict[str, int]
    user_limits: Dict[str, Optional[int]]
    api_key: str = Field(..., description="Plaintext API key, only returned on creation")


class ApiKeyListItem(BaseModel):
    id: str
    name: str
    prefix: str
    key_type: KeyTier
    is_active: bool
    created_at: str


class UserLimitsResponse(BaseModel):
    key_id: str
    key_type: KeyTier
    builtin_limits: Dict[str, int]
    user_limits: Dict[str, Optional[int]]


class MaxLimitsResponse(BaseModel):
    key_type: KeyTier
    max_limits: Dict[str, int]
    description: Dict[str, str]


class UsageBreakdown(BaseModel):
    current: Dict[str, int]
    remaining: Dict[str, int]
    percentage: Dict[str, float]


class UsageStatisticsResponse(BaseModel):
    key_id: str
    key_type: KeyTier
    builtin_limits: Dict[str, int]
    user_limits: Dict[str, Optional[int]]
    usage: UsageBreakdown
    reset_times: Dict[str, str]
    last_used: Optional[str] = None
    status: str


class ValidateResponse(BaseModel):
    key_id: str
    key_name: str
    key_type: KeyTier
    usage_recorded: bool


class LimitErrorResponse(BaseModel):
    error: str
    details: List[str]
    max_allowed: Dict[str, int]
