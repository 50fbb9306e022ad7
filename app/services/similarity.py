from __future__ import annotations

import re
from typing import Any, Awaitable, Callable

from rank_bm25 import BM25Okapi

from app.services import logger as log_service
from app.services.line_index import ChromaLineIndex

MAX_SIMILAR = 10

_TOKEN = re.compile(r"[a-z0-9]+")

LexicalSearch = Callable[[str, int, str | None], Awaitable[list[dict[str, Any]]]]
Summaries = Callable[[list[str]], Awaitable[dict[str, dict[str, Any]]]]


def tokenize(text: str) -> list[str]:
    return _TOKEN.findall(text.lower())


def clamp_limit(limit: int | None) -> int:
    return min(max(int(limit or 5), 1), MAX_SIMILAR)


def compute_bm25_scores(query: str, documents: list[str]) -> list[float]:
    """BM25 scores normalized to the 0-1 range."""
    if not documents:
        return []
    tokenized_docs = [tokenize(doc) or [""] for doc in documents]
    bm25 = BM25Okapi(tokenized_docs)
    scores = [float(s) for s in bm25.get_scores(tokenize(query))]

    # Tiny corpora can produce negative idf values.
    floor = min(scores)
    if floor < 0:
        scores = [s - floor for s in scores]
    max_score = max(scores)
    if max_score > 0:
        scores = [s / max_score for s in scores]
    return scores


async def semantic_or_lexical(
    *,
    index: ChromaLineIndex | None,
    text: str,
    limit: int,
    exclude: str | None,
    lexical: LexicalSearch,
    summaries: Summaries,
) -> list[dict[str, Any]]:
    """Rank previously analyzed lines by similarity to ``text``.

    The semantic index is tried first; when it is disabled or fails, the
    store's lexical search answers instead. Callers cannot tell which one did.
    """
    limit = clamp_limit(limit)
    results: list[dict[str, Any]] | None = None

    if index is not None:
        try:
            hits = await index.query(text, limit=limit + (1 if exclude else 0), exclude=exclude)
            hits = [h for h in hits if h.analysis_id != exclude][:limit]
            details = await summaries([h.analysis_id for h in hits]) if hits else {}
            results = []
            for hit in hits:
                detail = details.get(hit.analysis_id, {})
                results.append(
                    {
                        "analysis_id": hit.analysis_id,
                        "line_text": detail.get("line_text") or hit.line_text or "Unknown",
                        "score": round(hit.score, 4),
                        "divergence_score": detail.get("divergence_score"),
                        "risk_level": detail.get("risk_level"),
                        "crowd_energy": detail.get("crowd_energy"),
                        "created_at": detail.get("created_at"),
                    }
                )
        except Exception as e:
            log_service.log_event(
                event_type="similarity_fallback",
                message="Semantic search failed, falling back to lexical search",
                error=str(e),
            )
            results = None

    if results is None:
        results = await lexical(text, limit, exclude)

    return [r for r in results if r.get("analysis_id") != exclude][:limit]
