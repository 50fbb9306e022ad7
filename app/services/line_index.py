from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from app.config import settings
from app.services.embeddings_local import get_embedder

COLLECTION_NAME = "analysis_lines"


@dataclass(slots=True)
class LineHit:
    analysis_id: str
    line_text: str
    score: float


class ChromaLineIndex:
    """Semantic index of analyzed lines, one vector per analysis."""

    def __init__(self, persist_dir: str, embedder: Any | None = None, client: Any | None = None):
        self.persist_dir = Path(persist_dir)
        self._embedder = embedder or get_embedder()
        self._client = client
        self._client_lock = asyncio.Lock()

    async def add(self, analysis_id: str, line_text: str, created_at: str) -> None:
        vector = await self._embedder.embed_text(line_text)
        client = await self._get_client()

        def _sync_upsert() -> None:
            collection = client.get_or_create_collection(name=COLLECTION_NAME)
            collection.upsert(
                ids=[analysis_id],
                documents=[line_text],
                metadatas=[{"analysis_id": analysis_id, "created_at": created_at}],
                embeddings=[vector],
            )

        await asyncio.to_thread(_sync_upsert)

    async def query(self, text: str, limit: int, exclude: str | None = None) -> list[LineHit]:
        vector = await self._embedder.embed_text(text)
        client = await self._get_client()

        def _sync_query() -> list[LineHit]:
            collection = client.get_or_create_collection(name=COLLECTION_NAME)
            kwargs: dict[str, Any] = {
                "query_embeddings": [vector],
                "n_results": max(int(limit), 1),
                "include": ["documents", "metadatas", "distances"],
            }
            if exclude:
                kwargs["where"] = {"analysis_id": {"$ne": exclude}}
            result = collection.query(**kwargs)

            docs = (result.get("documents") or [[]])[0]
            distances = (result.get("distances") or [[]])[0]
            ids = (result.get("ids") or [[]])[0]
            hits: list[LineHit] = []
            for idx, doc in enumerate(docs):
                if not isinstance(doc, str) or idx >= len(ids):
                    continue
                distance = float(distances[idx]) if idx < len(distances) else 1.0
                score = 1.0 / (1.0 + max(distance, 0.0))
                hits.append(LineHit(analysis_id=ids[idx], line_text=doc, score=score))
            return hits

        return await asyncio.to_thread(_sync_query)

    async def delete(self, analysis_id: str) -> None:
        client = await self._get_client()

        def _sync_delete() -> None:
            collection = client.get_or_create_collection(name=COLLECTION_NAME)
            collection.delete(ids=[analysis_id])

        await asyncio.to_thread(_sync_delete)

    async def _get_client(self) -> Any:
        async with self._client_lock:
            if self._client is None:
                import chromadb

                self.persist_dir.mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=str(self.persist_dir))
            return self._client


_index: ChromaLineIndex | None = None


def get_line_index() -> ChromaLineIndex | None:
    """Shared semantic index, or None when semantic search is switched off."""
    global _index
    if not settings.semantic_search_enabled:
        return None
    if _index is None:
        _index = ChromaLineIndex(settings.chroma_persist_dir)
    return _index
