from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_analysis_store
from app.models.schemas import SimilarLine, SimilarResponse
from app.services.analysis_store import AnalysisStore
from app.services.logger import logger
from app.services.similarity import clamp_limit

router = APIRouter(prefix="/api/similar", tags=["similar"])


@router.get("", response_model=SimilarResponse)
async def find_similar(
    line_text: str | None = Query(default=None),
    limit: int = Query(default=5),
    exclude_analysis_id: str | None = Query(default=None),
    store: AnalysisStore = Depends(get_analysis_store),
):
    """Previously analyzed lines that resemble ``line_text``."""
    if not line_text or not line_text.strip():
        raise HTTPException(status_code=400, detail="line_text is required")

    try:
        results = await store.similarity_search(
            line_text, clamp_limit(limit), exclude=exclude_analysis_id or None
        )
    except Exception as e:
        logger.error(f"Similarity search failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to find similar lines: {e}") from e

    similar = [SimilarLine(**r) for r in results]
    return SimilarResponse(similar=similar, count=len(similar))
