"""API route registrations."""
from fastapi import APIRouter

from apiquota.api.routes import admin, external, limits, usage


api_router = APIRouter()
api_router.include_router(admin.router)
api_router.include_router(limits.router)
api_router.include_router(usage.router)
api_router.include_router(external.router)

__all__ = ["api_router"]
