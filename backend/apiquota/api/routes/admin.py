"""Admin endpoints for API key and limit management (requires Basic auth)."""
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from apiquota.deps import get_rate_limit_service
from apiquota.schemas.limits import (
    ApiKeyCreateRequest,
    ApiKeyCreateResponse,
    ApiKeyListItem,
    LimitErrorResponse,
    UserLimitsPayload,
    UserLimitsResponse,
)
from apiquota.security import AnyApiKeyStore, get_api_key_store, require_basic_user
from apiquota.services.errors import RateLimitError
from apiquota.services.rate_limit import RateLimitService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/api-keys",
    response_model=ApiKeyCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": LimitErrorResponse}},
    summary="Issue an API key",
)
async def create_api_key(
    payload: ApiKeyCreateRequest,
    _: dict = Depends(require_basic_user),
    store: AnyApiKeyStore = Depends(get_api_key_store),
    service: RateLimitService = Depends(get_rate_limit_service),
) -> ApiKeyCreateResponse:
    requested = payload.limits.to_user_limits() if payload.limits else None
    user_limits = service.validate_user_limits(payload.key_type, requested)

    rec, plaintext = await store.issue_key(name=payload.name, key_tier=payload.key_type)
    try:
        record = await service.create_record(rec.id, payload.key_type, user_limits)
    except RateLimitError:
        logger.exception("Could not create rate limit record; revoking key", extra={"key_id": rec.id})
        await store.set_active(rec.id, False)
        raise

    logger.info("Issued API key", extra={"key_id": rec.id, "key_tier": rec.key_tier})
    return ApiKeyCreateResponse(
        id=rec.id,
        name=rec.name,
        prefix=rec.prefix,
        key_type=payload.key_type,
        is_active=rec.is_active,
        created_at=rec.created_at,
        builtin_limits=record.builtin_limits.as_dict(),
        user_limits=record.user_limits.as_dict(),
        api_key=plaintext,
    )


@router.get("/api-keys", response_model=List[ApiKeyListItem], summary="List API keys")
async def list_api_keys(
    _: dict = Depends(require_basic_user),
    store: AnyApiKeyStore = Depends(get_api_key_store),
) -> list[ApiKeyListItem]:
    items = await store.list_keys()
    return [
        ApiKeyListItem(
            id=i.id,
            name=i.name,
            prefix=i.prefix,
            key_type=i.key_tier,
            is_active=i.is_active,
            created_at=i.created_at,
        )
        for i in items
    ]


@router.patch(
    "/api-keys/{key_id}/limits",
    response_model=UserLimitsResponse,
    responses={400: {"model": LimitErrorResponse}},
    summary="Replace the user limits of an API key",
)
async def update_user_limits(
    key_id: str,
    payload: UserLimitsPayload,
    _: dict = Depends(require_basic_user),
    service: RateLimitService = Depends(get_rate_limit_service),
) -> UserLimitsResponse:
    record = await service.update_user_limits(key_id, payload.to_user_limits())
    return UserLimitsResponse(
        key_id=record.key_id,
        key_type=record.key_tier,
        builtin_limits=record.builtin_limits.as_dict(),
        user_limits=record.user_limits.as_dict(),
    )


@router.delete(
    "/api-keys/{key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke an API key and drop its usage record",
)
async def revoke_api_key(
    key_id: str,
    _: dict = Depends(require_basic_user),
    store: AnyApiKeyStore = Depends(get_api_key_store),
    service: RateLimitService = Depends(get_rate_limit_service),
) -> None:
    if not await store.set_active(key_id, False):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="API key not found")
    await service.delete_record(key_id)
    logger.info("Revoked API key", extra={"key_id": key_id})
