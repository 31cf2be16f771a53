from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ballotguide.db.session import get_store
from ballotguide.schemas.guide import GuideRequest, GuideResult
from ballotguide.services.exceptions import (
    BallotNotFoundError,
    GuideParseError,
    ProviderError,
)
from ballotguide.services.guide_pipeline import GuidePipeline
from ballotguide.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/guide", tags=["guide"])

_pipeline: Optional[GuidePipeline] = None


def get_pipeline() -> GuidePipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = GuidePipeline(get_store())
    return _pipeline


def _with_nocache(request: GuideRequest, nocache: bool) -> GuideRequest:
    return request.model_copy(update={"nocache": True}) if nocache else request


@router.post("", response_model=GuideResult)
async def generate_guide(
    request: GuideRequest,
    nocache: bool = False,
    pipeline: GuidePipeline = Depends(get_pipeline),
):
    """Generate a complete personalized guide in one response."""
    try:
        return await pipeline.generate(_with_nocache(request, nocache))
    except BallotNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ProviderError as exc:
        logger.error("Guide generation failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc))
    except GuideParseError as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@router.post("/stream")
async def stream_guide(
    request: GuideRequest,
    nocache: bool = False,
    pipeline: GuidePipeline = Depends(get_pipeline),
):
    """Server-sent events: meta, profile, race*, proposition*, then complete or error."""

    async def body():
        async for event in pipeline.stream(_with_nocache(request, nocache)):
            yield event.to_sse()

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
