"""API endpoints module."""

from fastapi import APIRouter

from calmirror.api.subscriptions import router as subscriptions_router
from calmirror.api.sync import router as sync_router

api_router = APIRouter(prefix="/api")

api_router.include_router(sync_router)
api_router.include_router(subscriptions_router)

__all__ = ["api_router"]
