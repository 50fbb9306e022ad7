from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import get_analysis_store
from app.services.analysis_store import AnalysisStore
from app.services.analytics import get_all_insights

router = APIRouter(prefix="/api/insights", tags=["insights"])


@router.get("")
async def insights(store: AnalysisStore = Depends(get_analysis_store)):
    """Trends across every stored analysis. Unavailable parts come back empty."""
    return await get_all_insights(store)
