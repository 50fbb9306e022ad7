from __future__ import annotations

import asyncio
import hashlib
import math
import re
from typing import Any

from app.config import settings

_TOKEN = re.compile(r"[a-z0-9']+")


class LocalEmbeddingService:
    """sentence-transformers embeddings computed off the event loop."""

    def __init__(self, model_name: str | None = None, batch_size: int | None = None):
        self.model_name = model_name or settings.local_embed_model
        self.batch_size = batch_size or int(settings.local_embed_batch_size)
        self._model: Any | None = None
        self._lock = asyncio.Lock()

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        async with self._lock:
            if self._model is None:
                await asyncio.to_thread(self._load_model)
        return await asyncio.to_thread(self._embed_sync, texts)

    async def embed_text(self, text: str) -> list[float]:
        vectors = await self.embed_texts([text])
        return vectors[0]

    def _load_model(self) -> None:
        from sentence_transformers import SentenceTransformer

        self._model = SentenceTransformer(self.model_name)

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        vectors = self._model.encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [list(map(float, row)) for row in vectors]


class HashedEmbeddingService:
    """Dependency-free bag-of-words embeddings (feature hashing).

    Lines sharing words land close together, which is enough for development
    setups that do not want to download a model.
    """

    def __init__(self, dim: int = 384):
        self.dim = dim

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        return [hashed_embedding(text, self.dim) for text in texts]

    async def embed_text(self, text: str) -> list[float]:
        return hashed_embedding(text, self.dim)


def hashed_embedding(text: str, dim: int = 384) -> list[float]:
    values = [0.0] * dim
    for token in _TOKEN.findall(text.lower()):
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        bucket = int.from_bytes(digest[:4], "big") % dim
        sign = 1.0 if digest[4] % 2 == 0 else -1.0
        values[bucket] += sign
    norm = math.sqrt(sum(v * v for v in values))
    if norm <= 0:
        return values
    return [v / norm for v in values]


def get_embedder() -> LocalEmbeddingService | HashedEmbeddingService:
    backend = settings.embedding_backend.lower().strip()
    if backend == "local":
        return LocalEmbeddingService()
    if backend == "hashed":
        return HashedEmbeddingService()
    raise ValueError(f"Unsupported EMBEDDING_BACKEND: {settings.embedding_backend}")
