"""PostgreSQL document store using asyncpg."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import asyncpg

from app.services import logger as log_service
from app.services.line_index import ChromaLineIndex
from app.services.similarity import semantic_or_lexical, tokenize

TABLE = "analysis_docs"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    id BIGSERIAL PRIMARY KEY,
    analysis_id TEXT NOT NULL,
    unit_id TEXT NOT NULL DEFAULT 'l1',
    line_text TEXT NOT NULL,
    stage SMALLINT NOT NULL,
    feedback_id TEXT,
    agent_mode TEXT,
    feedback_text TEXT,
    reason_codes JSONB NOT NULL DEFAULT '[]'::jsonb,
    relatability TEXT,
    laugh_potential TEXT,
    crowd_energy TEXT,
    concept_id TEXT,
    parent_feedback_id TEXT,
    angle_name TEXT,
    explanation TEXT,
    exploration_direction TEXT,
    divergence_score DOUBLE PRECISION,
    risk_level TEXT,
    primary_conflict TEXT,
    conflict_summary TEXT,
    recommendation TEXT,
    reasoning TEXT,
    hypothesis BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS {TABLE}_analysis_idx ON {TABLE} (analysis_id, unit_id);
CREATE INDEX IF NOT EXISTS {TABLE}_stage_idx ON {TABLE} (stage);
CREATE INDEX IF NOT EXISTS {TABLE}_created_idx ON {TABLE} (created_at DESC);
"""

COLUMNS = (
    "analysis_id",
    "unit_id",
    "line_text",
    "stage",
    "feedback_id",
    "agent_mode",
    "feedback_text",
    "reason_codes",
    "relatability",
    "laugh_potential",
    "crowd_energy",
    "concept_id",
    "parent_feedback_id",
    "angle_name",
    "explanation",
    "exploration_direction",
    "divergence_score",
    "risk_level",
    "primary_conflict",
    "conflict_summary",
    "recommendation",
    "reasoning",
    "hypothesis",
    "created_at",
)

# Columns the insights endpoint may group by.
GROUPABLE = {"risk_level", "crowd_energy", "primary_conflict", "agent_mode", "laugh_potential"}

SEARCH_VECTOR = "to_tsvector('english', line_text || ' ' || coalesce(feedback_text, ''))"


def _to_row(doc: dict[str, Any]) -> tuple[Any, ...]:
    values: list[Any] = []
    for column in COLUMNS:
        value = doc.get(column)
        if column == "reason_codes":
            value = json.dumps(value or [])
        elif column == "created_at" and isinstance(value, str):
            value = datetime.fromisoformat(value)
        elif column == "hypothesis" and value is None:
            value = True
        elif column == "unit_id" and not value:
            value = "l1"
        values.append(value)
    return tuple(values)


def _from_row(row: asyncpg.Record) -> dict[str, Any]:
    doc = {k: v for k, v in dict(row).items() if v is not None}
    raw_codes = doc.get("reason_codes")
    if isinstance(raw_codes, str):
        try:
            doc["reason_codes"] = json.loads(raw_codes)
        except json.JSONDecodeError:
            doc["reason_codes"] = []
    if isinstance(doc.get("created_at"), datetime):
        doc["created_at"] = doc["created_at"].isoformat()
    return doc


def _iso(value: Any) -> str | None:
    return value.isoformat() if isinstance(value, datetime) else value


class PostgresAnalysisStore:
    def __init__(self, database_url: str, line_index: ChromaLineIndex | None = None):
        self.database_url = database_url
        self._index = line_index
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=1,
                max_size=10,
            )
        return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        log_service.log_db_operation("ensure_schema", TABLE, "success")

    async def bulk_store(self, docs: list[dict[str, Any]]) -> int:
        if not docs:
            log_service.log_db_operation("bulk_store", TABLE, "skipped", details="no documents")
            return 0
        placeholders = ", ".join(f"${i + 1}" for i in range(len(COLUMNS)))
        sql = f"INSERT INTO {TABLE} ({', '.join(COLUMNS)}) VALUES ({placeholders})"
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(sql, [_to_row(doc) for doc in docs])
        except Exception as e:
            log_service.log_db_operation("bulk_store", TABLE, "error", error=str(e))
            raise
        log_service.log_db_operation("bulk_store", TABLE, "success", details=f"{len(docs)} documents")
        await self._index_lines(docs)
        return len(docs)

    async def query(self, analysis_id: str, unit_id: str | None = None) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {', '.join(COLUMNS)}
                FROM {TABLE}
                WHERE analysis_id = $1 AND ($2::text IS NULL OR unit_id = $2)
                ORDER BY created_at ASC, id ASC
                """,
                analysis_id,
                unit_id,
            )
        return [_from_row(r) for r in rows]

    async def list_distinct_by_recency(self, limit: int, offset: int) -> tuple[list[dict[str, Any]], int]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT analysis_id, MAX(line_text) AS line_text, MAX(created_at) AS created_at
                FROM {TABLE}
                GROUP BY analysis_id
                ORDER BY MAX(created_at) DESC, analysis_id
                LIMIT $1 OFFSET $2
                """,
                limit,
                offset,
            )
            total = await conn.fetchval(f"SELECT COUNT(DISTINCT analysis_id) FROM {TABLE}")
        items = [
            {
                "analysis_id": r["analysis_id"],
                "line_text": r["line_text"] or "Unknown",
                "created_at": _iso(r["created_at"]),
            }
            for r in rows
        ]
        return items, int(total or 0)

    async def delete_by_key(self, analysis_id: str) -> int:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(f"DELETE FROM {TABLE} WHERE analysis_id = $1", analysis_id)
        # asyncpg returns e.g. "DELETE 7"
        deleted = int(status.split()[-1]) if status else 0
        if self._index is not None:
            try:
                await self._index.delete(analysis_id)
            except Exception as e:
                log_service.log_db_operation("delete", "line_index", "error", error=str(e))
        log_service.log_db_operation("delete", TABLE, "success", details=f"{deleted} documents")
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
        terms = tokenize(text)
        if not terms:
            return []
        ts_query = " | ".join(dict.fromkeys(terms))
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT DISTINCT ON (analysis_id)
                    analysis_id, line_text, crowd_energy, created_at,
                    ts_rank({SEARCH_VECTOR}, to_tsquery('english', $1)) AS score
                FROM {TABLE}
                WHERE stage = 1
                  AND {SEARCH_VECTOR} @@ to_tsquery('english', $1)
                  AND ($2::text IS NULL OR analysis_id <> $2)
                ORDER BY analysis_id, score DESC
                """,
                ts_query,
                exclude,
            )
        results = [
            {
                "analysis_id": r["analysis_id"],
                "line_text": r["line_text"] or "Unknown",
                "score": round(float(r["score"] or 0), 4),
                "crowd_energy": r["crowd_energy"],
                "created_at": _iso(r["created_at"]),
            }
            for r in rows
        ]
        results.sort(key=lambda item: item["score"], reverse=True)
        return results[:limit]

    async def summaries(self, analysis_ids: list[str]) -> dict[str, dict[str, Any]]:
        if not analysis_ids:
            return {}
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT analysis_id,
                       MAX(line_text) AS line_text,
                       MAX(divergence_score) FILTER (WHERE stage = 3) AS divergence_score,
                       MAX(risk_level) FILTER (WHERE stage = 3) AS risk_level,
                       MAX(crowd_energy) FILTER (WHERE stage = 1) AS crowd_energy,
                       MIN(created_at) AS created_at
                FROM {TABLE}
                WHERE analysis_id = ANY($1::text[])
                GROUP BY analysis_id
                """,
                analysis_ids,
            )
        return {
            r["analysis_id"]: {
                "line_text": r["line_text"],
                "divergence_score": r["divergence_score"],
                "risk_level": r["risk_level"],
                "crowd_energy": r["crowd_energy"],
                "created_at": _iso(r["created_at"]),
            }
            for r in rows
        }

    # --- aggregates ---

    async def count_by(self, stage: int, column: str) -> list[dict[str, Any]]:
        if column not in GROUPABLE:
            raise ValueError(f"Cannot group by column: {column}")
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {column} AS value, COUNT(*) AS count
                FROM {TABLE}
                WHERE stage = $1 AND {column} IS NOT NULL
                GROUP BY {column}
                ORDER BY count DESC
                """,
                stage,
            )
        return [{"value": r["value"], "count": int(r["count"])} for r in rows]

    async def daily_divergence(self, days: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT date_trunc('day', created_at) AS day,
                       AVG(divergence_score) AS avg_divergence,
                       COUNT(*) AS joke_count
                FROM {TABLE}
                WHERE stage = 3 AND divergence_score IS NOT NULL
                GROUP BY day
                ORDER BY day DESC
                LIMIT $1
                """,
                days,
            )
        return [
            {
                "day": _iso(r["day"]),
                "avg_divergence": float(r["avg_divergence"] or 0),
                "joke_count": int(r["joke_count"]),
            }
            for r in rows
        ]

    async def high_laugh_modes(self) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT agent_mode, COUNT(*) AS high_laugh_count
                FROM {TABLE}
                WHERE stage = 1 AND laugh_potential = 'high'
                GROUP BY agent_mode
                ORDER BY high_laugh_count DESC
                """
            )
        return [
            {"agent_mode": r["agent_mode"], "high_laugh_count": int(r["high_laugh_count"])}
            for r in rows
        ]

    async def overall_stats(self) -> dict[str, Any]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            unique_jokes = await conn.fetchval(
                f"SELECT COUNT(DISTINCT analysis_id) FROM {TABLE} WHERE stage = 1"
            )
            avg_divergence = await conn.fetchval(
                f"SELECT AVG(divergence_score) FROM {TABLE} WHERE stage = 3 AND divergence_score IS NOT NULL"
            )
        return {
            "unique_jokes": int(unique_jokes or 0),
            "avg_divergence": float(avg_divergence or 0),
        }

    async def _index_lines(self, docs: list[dict[str, Any]]) -> None:
        if self._index is None:
            return
        seen: set[str] = set()
        for doc in docs:
            if doc.get("stage") != 1 or doc["analysis_id"] in seen:
                continue
            seen.add(doc["analysis_id"])
            try:
                await self._index.add(doc["analysis_id"], doc["line_text"], doc.get("created_at") or "")
            except Exception as e:
                log_service.log_db_operation("index_line", "line_index", "error", error=str(e))
