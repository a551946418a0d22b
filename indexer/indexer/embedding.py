import asyncio
import logging
from typing import Iterable, Protocol, Sequence

from llama_index.core.base.embeddings.base import BaseEmbedding
from llama_index.embeddings.openai import OpenAIEmbedding

from .config import EMBED_CONCURRENCY, MODEL_DIMENSIONS, OPENROUTER_API_BASE, OPENROUTER_HEADERS
from .errors import CollaboratorError
from .models import Chunk

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class ChunkIndex(Protocol):
    async def fetch_existing_ids(self, chunk_ids: Iterable[str]) -> set[str]: ...

    async def upsert(self, vectors: Sequence[tuple[Chunk, list[float]]]) -> int: ...


class OpenRouterEmbedder:
    """Text embeddings through an OpenAI-compatible llama_index embedding model."""

    def __init__(self, embed_model: BaseEmbedding):
        self.embed_model = embed_model

    @classmethod
    def from_settings(cls, model: str, api_key: str, timeout: float = 60.0) -> "OpenRouterEmbedder":
        return cls(OpenAIEmbedding(
            model=model,
            dimensions=MODEL_DIMENSIONS[model],
            api_base=OPENROUTER_API_BASE,
            api_key=api_key,
            timeout=timeout,
            default_headers=OPENROUTER_HEADERS,
        ))

    async def embed(self, text: str) -> list[float]:
        try:
            vector = await self.embed_model.aget_text_embedding(text)
        except Exception as e:
            raise CollaboratorError(f"Embedding request failed: {e}") from e
        if not vector:
            raise CollaboratorError("Embedding model returned an empty vector")
        return vector


def unique_chunks(chunks: Iterable[Chunk]) -> list[Chunk]:
    """Drop repeated ids, keeping the first occurrence."""
    seen: dict[str, Chunk] = {}
    for chunk in chunks:
        seen.setdefault(chunk.id, chunk)
    return list(seen.values())


class EmbeddingDeduplicator:
    """Embeds and stores only the chunks the index does not have yet.

    Chunk ids are content addresses (repo, path, commit, offset), so a chunk that is
    already stored never needs to be embedded again.
    """

    def __init__(self, index: ChunkIndex, embedder: Embedder, concurrency: int = EMBED_CONCURRENCY):
        self.index = index
        self.embedder = embedder
        self.concurrency = concurrency

    async def embed_missing(self, chunks: Iterable[Chunk]) -> int:
        """Embed and upsert chunks missing from the index; return how many were stored."""
        candidates = unique_chunks(chunks)
        if not candidates:
            return 0

        existing = await self.index.fetch_existing_ids([c.id for c in candidates])
        pending = [c for c in candidates if c.id not in existing]
        if not pending:
            return 0

        vectors = await self._embed_all(pending)
        if not vectors:
            return 0
        return await self.index.upsert(vectors)

    async def _embed_all(self, chunks: list[Chunk]) -> list[tuple[Chunk, list[float]]]:
        limit = asyncio.Semaphore(self.concurrency)

        async def embed_one(chunk: Chunk) -> tuple[Chunk, list[float]] | None:
            async with limit:
                try:
                    return chunk, await self.embedder.embed(chunk.content)
                except CollaboratorError as e:
                    logger.warning(f"Skipping chunk {chunk.id}: {e}")
                    return None

        results = await asyncio.gather(*(embed_one(c) for c in chunks))
        return [r for r in results if r is not None]
