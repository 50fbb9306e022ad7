from __future__ import annotations

from fastapi import HTTPException

from app.agents.capability import get_perspective_capability, get_reviewer_capability
from app.agents.orchestrator import FanOutOrchestrator
from app.agents.perspective import PerspectiveWorker
from app.agents.reviewer import ReviewerAgent
from app.config import settings
from app.services.analysis_session import AnalysisSession
from app.services.analysis_store import AnalysisStore, StoreUnavailableError, get_store


def get_analysis_store() -> AnalysisStore:
    """FastAPI dependency for the configured document store."""
    try:
        return get_store()
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


def get_perspective_roles() -> list[str]:
    return settings.perspective_list


def create_session(line_text: str, store: AnalysisStore) -> AnalysisSession:
    """Wire one analysis session from the current settings."""
    worker = PerspectiveWorker(get_perspective_capability())
    synthesis_enabled = settings.reviewer_configured
    reviewer = ReviewerAgent(get_reviewer_capability()) if synthesis_enabled else None
    return AnalysisSession(
        line_text,
        orchestrator=FanOutOrchestrator(worker, store),
        reviewer=reviewer,
        store=store,
        synthesis_enabled=synthesis_enabled,
        roles=get_perspective_roles(),
        keepalive_interval=settings.keepalive_interval_seconds,
    )


def get_session_factory():
    return create_session
