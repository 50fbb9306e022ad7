from __future__ import annotations

import asyncio
from collections import Counter, defaultdict
from datetime import datetime
from typing import Any

from app.models.analysis import Stage
from app.services import logger as log_service
from app.services.line_index import ChromaLineIndex
from app.services.similarity import compute_bm25_scores, semantic_or_lexical, tokenize


def _parse_iso(raw: Any) -> datetime | None:
    if not isinstance(raw, str):
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


class InMemoryAnalysisStore:
    """Process-local document store for development and tests.

    Holds the same flat stage-tagged documents the Postgres store writes.
    """

    def __init__(self, line_index: ChromaLineIndex | None = None):
        self._docs: list[dict[str, Any]] = []
        self._index = line_index
        self._lock = asyncio.Lock()

    async def ensure_schema(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def bulk_store(self, docs: list[dict[str, Any]]) -> int:
        if not docs:
            log_service.log_db_operation("bulk_store", "memory", "skipped", details="no documents")
            return 0
        async with self._lock:
            self._docs.extend(dict(doc) for doc in docs)
        log_service.log_db_operation("bulk_store", "memory", "success", details=f"{len(docs)} documents")
        await self._index_lines(docs)
        return len(docs)

    async def query(self, analysis_id: str, unit_id: str | None = None) -> list[dict[str, Any]]:
        rows = [
            dict(doc)
            for doc in self._docs
            if doc.get("analysis_id") == analysis_id
            and (unit_id is None or doc.get("unit_id") == unit_id)
        ]
        rows.sort(key=lambda d: d.get("created_at") or "")
        return rows

    async def list_distinct_by_recency(self, limit: int, offset: int) -> tuple[list[dict[str, Any]], int]:
        latest: dict[str, dict[str, Any]] = {}
        for doc in self._docs:
            key = doc["analysis_id"]
            current = latest.get(key)
            if current is None or (doc.get("created_at") or "") > (current.get("created_at") or ""):
                latest[key] = doc
        items = [
            {
                "analysis_id": key,
                "line_text": doc.get("line_text") or "Unknown",
                "created_at": doc.get("created_at"),
            }
            for key, doc in latest.items()
        ]
        items.sort(key=lambda item: item["created_at"] or "", reverse=True)
        return items[offset : offset + limit], len(items)

    async def delete_by_key(self, analysis_id: str) -> int:
        async with self._lock:
            before = len(self._docs)
            self._docs = [d for d in self._docs if d.get("analysis_id") != analysis_id]
            deleted = before - len(self._docs)
        if self._index is not None:
            try:
                await self._index.delete(analysis_id)
            except Exception as e:
                log_service.log_db_operation("delete", "line_index", "error", error=str(e))
        log_service.log_db_operation("delete", "memory", "success", details=f"{deleted} documents")
        return deleted

    async def similarity_search(
        self, text: str, limit: int, exclude: str | None = None
    ) -> list[dict[str, Any]]:
        return await semantic_or_lexical(
            index=self._index,
            text=text,
            limit=limit,
            exclude=exclude,
            lexical=self.lexical_search,
            summaries=self.summaries,
        )

    async def lexical_search(self, text: str, limit: int, exclude: str | None = None) -> list[dict[str, Any]]:
        grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for doc in self._docs:
            if doc.get("stage") != Stage.PRIMARY.value or doc.get("analysis_id") == exclude:
                continue
            grouped[doc["analysis_id"]].append(doc)
        if not grouped:
            return []

        ids = list(grouped)
        corpus = [
            " ".join([grouped[i][0].get("line_text") or ""] + [d.get("feedback_text") or "" for d in grouped[i]])
            for i in ids
        ]
        scores = compute_bm25_scores(text, corpus)
        query_terms = set(tokenize(text))

        ranked = []
        for analysis_id, document, score in zip(ids, corpus, scores):
            overlap = len(query_terms & set(tokenize(document)))
            if overlap == 0:
                continue
            sample = grouped[analysis_id][0]
            ranked.append(
                (
                    score,
                    overlap,
                    {
                        "analysis_id": analysis_id,
                        "line_text": sample.get("line_text") or "Unknown",
                        "score": round(score, 4),
                        "crowd_energy": sample.get("crowd_energy"),
                        "created_at": sample.get("created_at"),
                    },
                )
            )
        ranked.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [item[2] for item in ranked[:limit]]

    async def summaries(self, analysis_ids: list[str]) -> dict[str, dict[str, Any]]:
        wanted = set(analysis_ids)
        details: dict[str, dict[str, Any]] = {}
        for doc in self._docs:
            key = doc.get("analysis_id")
            if key not in wanted:
                continue
            entry = details.setdefault(
                key,
                {"line_text": doc.get("line_text"), "created_at": doc.get("created_at")},
            )
            if doc.get("stage") == Stage.SYNTHESIS.value:
                entry["divergence_score"] = doc.get("divergence_score")
                entry["risk_level"] = doc.get("risk_level")
            elif doc.get("stage") == Stage.PRIMARY.value and not entry.get("crowd_energy"):
                entry["crowd_energy"] = doc.get("crowd_energy")
        return details

    # --- aggregates ---

    async def count_by(self, stage: int, column: str) -> list[dict[str, Any]]:
        counts = Counter(
            doc.get(column)
            for doc in self._docs
            if doc.get("stage") == stage and doc.get(column) is not None
        )
        return [{"value": value, "count": count} for value, count in counts.most_common()]

    async def daily_divergence(self, days: int) -> list[dict[str, Any]]:
        buckets: dict[str, list[float]] = defaultdict(list)
        for doc in self._docs:
            if doc.get("stage") != Stage.SYNTHESIS.value or doc.get("divergence_score") is None:
                continue
            created = _parse_iso(doc.get("created_at"))
            if created is None:
                continue
            buckets[created.date().isoformat()].append(float(doc["divergence_score"]))
        newest_first = sorted(buckets.items(), reverse=True)[:days]
        return [
            {"day": day, "avg_divergence": sum(values) / len(values), "joke_count": len(values)}
            for day, values in newest_first
        ]

    async def high_laugh_modes(self) -> list[dict[str, Any]]:
        counts = Counter(
            doc.get("agent_mode")
            for doc in self._docs
            if doc.get("stage") == Stage.PRIMARY.value and doc.get("laugh_potential") == "high"
        )
        return [{"agent_mode": mode, "high_laugh_count": count} for mode, count in counts.most_common()]

    async def overall_stats(self) -> dict[str, Any]:
        jokes = {d["analysis_id"] for d in self._docs if d.get("stage") == Stage.PRIMARY.value}
        scores = [
            float(d["divergence_score"])
            for d in self._docs
            if d.get("stage") == Stage.SYNTHESIS.value and d.get("divergence_score") is not None
        ]
        return {
            "unique_jokes": len(jokes),
            "avg_divergence": sum(scores) / len(scores) if scores else 0,
        }

    async def _index_lines(self, docs: list[dict[str, Any]]) -> None:
        if self._index is None:
            return
        seen: set[str] = set()
        for doc in docs:
            if doc.get("stage") != Stage.PRIMARY.value or doc["analysis_id"] in seen:
                continue
            seen.add(doc["analysis_id"])
            try:
                await self._index.add(doc["analysis_id"], doc["line_text"], doc.get("created_at") or "")
            except Exception as e:
                log_service.log_db_operation("index_line", "line_index", "error", error=str(e))
