from __future__ import annotations

from typing import Any, Protocol

from app.config import settings


class StoreUnavailableError(RuntimeError):
    """The configured document store cannot be used."""


class AnalysisStore(Protocol):
    async def ensure_schema(self) -> None: ...
    async def bulk_store(self, docs: list[dict[str, Any]]) -> int: ...
    async def query(self, analysis_id: str, unit_id: str | None = None) -> list[dict[str, Any]]: ...
    async def list_distinct_by_recency(self, limit: int, offset: int) -> tuple[list[dict[str, Any]], int]: ...
    async def delete_by_key(self, analysis_id: str) -> int: ...
    async def similarity_search(
        self, text: str, limit: int, exclude: str | None = None
    ) -> list[dict[str, Any]]: ...

    # Aggregate reads backing the insights endpoint
    async def count_by(self, stage: int, column: str) -> list[dict[str, Any]]: ...
    async def daily_divergence(self, days: int) -> list[dict[str, Any]]: ...
    async def high_laugh_modes(self) -> list[dict[str, Any]]: ...
    async def overall_stats(self) -> dict[str, Any]: ...
    async def close(self) -> None: ...


_store: AnalysisStore | None = None


def get_store() -> AnalysisStore:
    global _store
    if _store is None:
        from app.services.line_index import get_line_index

        backend = settings.store_backend.lower().strip()
        index = get_line_index()
        if backend == "postgres":
            from app.services.database import PostgresAnalysisStore

            if not settings.database_url:
                raise StoreUnavailableError("Database not configured. Set DATABASE_URL in .env")
            _store = PostgresAnalysisStore(settings.database_url, line_index=index)
        elif backend == "memory":
            from app.services.store_memory import InMemoryAnalysisStore

            _store = InMemoryAnalysisStore(line_index=index)
        else:
            raise ValueError(f"Unsupported STORE_BACKEND: {settings.store_backend}")
    return _store


async def close_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
