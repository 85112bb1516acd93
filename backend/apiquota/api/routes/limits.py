"""Public lookup of the ceilings a user may choose per key tier."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from apiquota.deps import get_tier_table
from apiquota.schemas.limits import MaxLimitsResponse
from apiquota.services.limits import KeyTier, TierLimitTable

router = APIRouter(prefix="/limits", tags=["limits"])


@router.get("/max", response_model=MaxLimitsResponse, summary="Maximum allowed user limits")
async def get_max_limits(
    key_type: KeyTier = Query(KeyTier.DEVELOPMENT, description="Key tier"),
    table: TierLimitTable = Depends(get_tier_table),
) -> MaxLimitsResponse:
    return MaxLimitsResponse(
        key_type=key_type,
        max_limits=table.max_allowed(key_type),
        description=table.describe(key_type),
    )
