from __future__ import annotations

from typing import Any

from pydantic import BaseModel


# --- Requests ---


class AnalyzeRequest(BaseModel):
    line_text: str


# --- Responses ---


class ResultsResponse(BaseModel):
    analysis_id: str
    unit_id: str
    primary: list[dict[str, Any]]
    secondary: list[dict[str, Any]]
    synthesis: dict[str, Any] | None = None


class HistoryItem(BaseModel):
    analysis_id: str
    line_text: str
    created_at: str | None = None


class HistoryResponse(BaseModel):
    items: list[HistoryItem]
    total: int
    limit: int
    offset: int
    has_more: bool


class DeleteResponse(BaseModel):
    deleted: int
    message: str


class SimilarLine(BaseModel):
    analysis_id: str
    line_text: str
    score: float
    divergence_score: float | None = None
    risk_level: str | None = None
    crowd_energy: str | None = None
    created_at: str | None = None


class SimilarResponse(BaseModel):
    similar: list[SimilarLine]
    count: int


class PerspectivesResponse(BaseModel):
    perspectives: list[dict[str, str]]
