from __future__ import annotations

from fastapi import APIRouter

from ballotguide.api.guide import router as guide_router
from ballotguide.api.health import router as health_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(guide_router)
