from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from app.api.deps import get_analysis_store, get_session_factory
from app.models.schemas import AnalyzeRequest
from app.services import logger as log_service
from app.services import streaming
from app.services.analysis_store import AnalysisStore

router = APIRouter(prefix="/api/analyze", tags=["analyze"])


@router.post("")
async def analyze_line(
    request: AnalyzeRequest,
    store: AnalysisStore = Depends(get_analysis_store),
    session_factory=Depends(get_session_factory),
):
    """Run every perspective against one line and stream progress as SSE."""
    if not request.line_text.strip():
        raise HTTPException(
            status_code=400,
            detail="line_text is required and must be a non-empty string",
        )

    session = session_factory(request.line_text, store)

    async def event_generator():
        log_service.log_event(
            event_type="analysis_started",
            message="Analysis started",
            analysis_id=session.analysis_id,
            line_text=request.line_text[:100],
        )
        try:
            async for event in session.stream():
                yield event.to_sse()
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in analysis stream",
                error=str(e),
                analysis_id=session.analysis_id,
            )
            yield streaming.error("Analysis stream failed unexpectedly.", fatal=True).to_sse()
            yield streaming.done(session.analysis_id).to_sse()

    return EventSourceResponse(event_generator())
