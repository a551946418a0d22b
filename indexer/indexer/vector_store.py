import asyncio
import logging
import uuid
from typing import Iterable, Sequence

from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from .config import UPSERT_BATCH_SIZE, UPSERT_CONCURRENCY
from .errors import CollaboratorError
from .models import Chunk, ContextMatch

logger = logging.getLogger(__name__)

QDRANT_ERRORS = (UnexpectedResponse, ResponseHandlingException)


def point_id(chunk_id: str) -> str:
    """Qdrant only accepts UUIDs or integers as point ids."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, chunk_id))


def _batches(items: Sequence, size: int) -> list[Sequence]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _repo_filter(repo: str, sha: str | None = None) -> Filter:
    conditions = [FieldCondition(key="repo", match=MatchValue(value=repo))]
    if sha:
        conditions.append(FieldCondition(key="sha", match=MatchValue(value=sha)))
    return Filter(must=conditions)


class VectorIndex:
    """Chunk vectors for every repository, stored in one Qdrant collection.

    Points are tagged with ``repo`` and ``sha`` payload fields so a whole repository,
    or one commit of it, can be purged with a filter.
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection_name: str,
        dimensions: int,
        batch_size: int = UPSERT_BATCH_SIZE,
        concurrency: int = UPSERT_CONCURRENCY,
    ):
        self.client = client
        self.collection_name = collection_name
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._limit = asyncio.Semaphore(concurrency)
        self._ready = False
        self._setup_lock = asyncio.Lock()

    async def ensure_collection(self) -> None:
        if self._ready:
            return
        # Concurrent first users must not race each other into create_collection.
        async with self._setup_lock:
            if self._ready:
                return
            try:
                if not await self.client.collection_exists(self.collection_name):
                    await self._create_collection()
            except QDRANT_ERRORS as e:
                raise CollaboratorError(f"Cannot prepare collection '{self.collection_name}': {e}") from e
            self._ready = True

    async def _create_collection(self) -> None:
        logger.info(f"Creating collection '{self.collection_name}' ({self.dimensions} dims)")
        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=self.dimensions, distance=Distance.COSINE),
        )
        for field in ("repo", "sha"):
            await self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name=field,
                field_schema=PayloadSchemaType.KEYWORD,
            )

    async def fetch_existing_ids(self, chunk_ids: Iterable[str]) -> set[str]:
        """Return the subset of ``chunk_ids`` that already have a point."""
        by_point = {point_id(cid): cid for cid in chunk_ids}
        if not by_point:
            return set()
        await self.ensure_collection()

        async def fetch(batch: Sequence[str]):
            async with self._limit:
                return await self.client.retrieve(
                    collection_name=self.collection_name,
                    ids=list(batch),
                    with_payload=False,
                    with_vectors=False,
                )

        try:
            responses = await asyncio.gather(
                *(fetch(batch) for batch in _batches(list(by_point), self.batch_size))
            )
        except QDRANT_ERRORS as e:
            raise CollaboratorError(f"Failed to fetch existing vectors: {e}") from e

        existing = set()
        for records in responses:
            for record in records:
                cid = by_point.get(str(record.id))
                if cid is not None:
                    existing.add(cid)
        return existing

    async def upsert(self, vectors: Sequence[tuple[Chunk, list[float]]]) -> int:
        if not vectors:
            return 0

        points = [
            PointStruct(
                id=point_id(chunk.id),
                vector=vector,
                payload={**chunk.metadata.model_dump(), "chunk_id": chunk.id, "text": chunk.content},
            )
            for chunk, vector in vectors
        ]
        await self.ensure_collection()

        async def upsert_batch(batch: Sequence[PointStruct]) -> None:
            async with self._limit:
                await self.client.upsert(collection_name=self.collection_name, points=list(batch))

        try:
            await asyncio.gather(*(upsert_batch(b) for b in _batches(points, self.batch_size)))
        except QDRANT_ERRORS as e:
            raise CollaboratorError(f"Failed to upsert vectors: {e}") from e
        return len(points)

    async def delete_by_filter(self, repo: str, sha: str | None = None) -> None:
        """Delete every point of ``repo``, or only those indexed at commit ``sha``."""
        await self.ensure_collection()
        try:
            await self.client.delete(
                collection_name=self.collection_name,
                points_selector=FilterSelector(filter=_repo_filter(repo, sha)),
            )
        except QDRANT_ERRORS as e:
            raise CollaboratorError(f"Failed to delete vectors for {repo}@{sha or '*'}: {e}") from e

    async def query_nearest(self, vector: list[float], repo: str, top_k: int) -> list[ContextMatch]:
        await self.ensure_collection()
        try:
            response = await self.client.query_points(
                collection_name=self.collection_name,
                query=vector,
                limit=top_k,
                query_filter=_repo_filter(repo),
                with_payload=True,
            )
        except QDRANT_ERRORS as e:
            raise CollaboratorError(f"Nearest-neighbour query failed for {repo}: {e}") from e

        return [
            ContextMatch(
                id=(point.payload or {}).get("chunk_id", str(point.id)),
                score=point.score,
                metadata=point.payload or {},
            )
            for point in response.points
        ]

    async def close(self) -> None:
        await self.client.close()
