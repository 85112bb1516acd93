"""Usage statistics for a single API key (requires Basic auth)."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from apiquota.deps import get_rate_limit_service
from apiquota.schemas.limits import UsageStatisticsResponse
from apiquota.security import require_basic_user
from apiquota.services.rate_limit import RateLimitService

router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("/{key_id}", response_model=UsageStatisticsResponse, summary="Usage statistics")
async def get_usage_statistics(
    key_id: str,
    _: dict = Depends(require_basic_user),
    service: RateLimitService = Depends(get_rate_limit_service),
) -> UsageStatisticsResponse:
    stats = await service.statistics(key_id)
    return UsageStatisticsResponse(**stats)
