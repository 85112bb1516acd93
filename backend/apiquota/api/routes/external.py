"""External-facing endpoints protected by API key and rate limits."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from apiquota.deps import get_rate_limit_service
from apiquota.schemas.limits import ValidateResponse
from apiquota.security import ApiKeyRecord, require_api_key
from apiquota.services.errors import RateLimitDenied, RecordNotFound, StoreUnavailable
from apiquota.services.rate_limit import Allowed, Denied, RateLimitService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/external", tags=["external"])


async def enforce_rate_limit(
    key: ApiKeyRecord = Depends(require_api_key),
    service: RateLimitService = Depends(get_rate_limit_service),
) -> tuple[ApiKeyRecord, Allowed]:
    """Admit the request or raise ``RateLimitDenied``. Usage is not charged here."""

    try:
        decision = await service.check(key.id)
    except RecordNotFound:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
    if isinstance(decision, Denied):
        raise RateLimitDenied(decision)
    return key, decision


@router.post("/validate", response_model=ValidateResponse, summary="Validate an API key")
async def validate_api_key(
    response: Response,
    admission: tuple[ApiKeyRecord, Allowed] = Depends(enforce_rate_limit),
    service: RateLimitService = Depends(get_rate_limit_service),
) -> ValidateResponse:
    key, decision = admission
    recorded = True
    try:
        decision = await service.commit(key.id)
    except StoreUnavailable:
        # admission already granted; headers fall back to the checked usage
        logger.exception("Failed to record API usage", extra={"key_id": key.id})
        recorded = False
    response.headers.update(service.headers_for(decision))
    return ValidateResponse(
        key_id=key.id,
        key_name=key.name,
        key_type=key.key_tier,
        usage_recorded=recorded,
    )
