from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_analysis_store
from app.models.schemas import DeleteResponse, HistoryItem, HistoryResponse
from app.services.analysis_store import AnalysisStore
from app.services.logger import logger

router = APIRouter(prefix="/api/history", tags=["history"])


@router.get("", response_model=HistoryResponse)
async def list_history(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    store: AnalysisStore = Depends(get_analysis_store),
):
    """Previously analyzed lines, newest first."""
    try:
        items, total = await store.list_distinct_by_recency(limit, offset)
    except Exception as e:
        logger.error(f"Failed to fetch history: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to fetch history: {e}") from e

    return HistoryResponse(
        items=[HistoryItem(**item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(items) < total,
    )


@router.delete("/{analysis_id}", response_model=DeleteResponse)
async def delete_history(analysis_id: str, store: AnalysisStore = Depends(get_analysis_store)):
    try:
        deleted = await store.delete_by_key(analysis_id)
    except Exception as e:
        logger.error(f"Failed to delete {analysis_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to delete: {e}") from e
    return DeleteResponse(deleted=deleted, message=f"Deleted {deleted} documents")
