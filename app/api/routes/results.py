from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_analysis_store
from app.models.analysis import DEFAULT_UNIT_ID, split_documents
from app.models.schemas import ResultsResponse
from app.services.analysis_store import AnalysisStore
from app.services.logger import logger

router = APIRouter(prefix="/api/results", tags=["results"])


@router.get("", response_model=ResultsResponse)
async def get_results(
    analysis_id: str | None = Query(default=None),
    unit_id: str | None = Query(default=None),
    store: AnalysisStore = Depends(get_analysis_store),
):
    """Fetch the stored perspectives and synthesis for one analysis."""
    if not analysis_id:
        raise HTTPException(status_code=400, detail="analysis_id query parameter is required")

    unit_id = unit_id or DEFAULT_UNIT_ID
    try:
        docs = await store.query(analysis_id, unit_id)
    except Exception as e:
        logger.error(f"Failed to fetch results for {analysis_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to fetch results: {e}") from e

    grouped = split_documents(docs)
    return ResultsResponse(
        analysis_id=analysis_id,
        unit_id=unit_id,
        primary=grouped["primary"],
        secondary=grouped["secondary"],
        synthesis=grouped["synthesis"],
    )
