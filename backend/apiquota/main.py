"""FastAPI application entrypoint for the API quota service."""
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from apiquota.api.routes import api_router
from apiquota.core.config import get_settings
from apiquota.services.errors import (
    ConfigurationError,
    LimitValidationError,
    RateLimitDenied,
    RecordNotFound,
    StoreUnavailable,
)
from apiquota.services.rate_limit import build_headers

logger = logging.getLogger(__name__)

app = FastAPI(title=get_settings().app_name, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.include_router(api_router, prefix="/api")


class HealthResponse(BaseModel):
    status: str = "ok"


@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check() -> HealthResponse:
    """Return service health information for monitoring and load-balancers."""
    return HealthResponse()


@app.exception_handler(RateLimitDenied)
async def rate_limit_denied_handler(request: Request, exc: RateLimitDenied) -> JSONResponse:
    decision = exc.decision
    headers = build_headers(decision.current_usage, decision.builtin_limits, decision.user_limits)
    headers["Retry-After"] = str(decision.retry_after(datetime.now(timezone.utc)))
    body = {"detail": "Rate limit exceeded", **exc.to_body()}
    return JSONResponse(status_code=429, content=body, headers=headers)


@app.exception_handler(LimitValidationError)
async def limit_validation_handler(request: Request, exc: LimitValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid user limits",
            "details": exc.errors,
            "max_allowed": exc.max_allowed,
        },
    )


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error("Usage store unavailable: %s", exc, extra={"path": request.url.path})
    return JSONResponse(
        status_code=503,
        content={"error": "STORE_UNAVAILABLE", "detail": "Rate limit state could not be evaluated"},
    )


@app.exception_handler(RecordNotFound)
async def record_not_found_handler(request: Request, exc: RecordNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "NOT_FOUND", "detail": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Rate limit configuration error: %s", exc)
    return JSONResponse(
        status_code=500, content={"error": "CONFIGURATION_ERROR", "detail": str(exc)}
    )


@app.middleware("http")
async def request_log_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000.0
    actor = getattr(request.state, "actor", None) or {"type": "anonymous", "id": "-"}
    logger.info(
        "%s %s -> %s",
        request.method,
        request.url.path,
        response.status_code,
        extra={
            "request_id": request_id,
            "actor_type": actor.get("type"),
            "actor_id": actor.get("id"),
            "duration_ms": round(elapsed_ms, 2),
        },
    )
    response.headers["X-Request-Id"] = request_id
    return response
