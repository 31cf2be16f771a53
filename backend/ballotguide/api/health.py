from __future__ import annotations

from fastapi import APIRouter

from ballotguide.config import settings
from ballotguide.services.providers.registry import VALID_PROVIDERS

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "electionId": settings.ELECTION_ID,
        "providers": list(VALID_PROVIDERS),
    }
