import asyncio
import logging
from typing import Protocol

from pydantic_ai import Agent

from indexer.config import CONTEXT_TOP_K, FETCH_CONCURRENCY
from indexer.embedding import Embedder
from indexer.errors import CollaboratorError
from indexer.models import Chunk, ContextMatch

from .models import EnrichedChunk, ReviewRequest
from .prompt import build_user_prompt

logger = logging.getLogger(__name__)

NO_CHUNKS_MESSAGE = "No PR code chunks were available for review."
EMPTY_REVIEW_MESSAGE = "Automated review was unable to generate comments."
FAILED_REVIEW_MESSAGE = "Automated review failed to run."


class ContextIndex(Protocol):
    async def query_nearest(self, vector: list[float], repo: str, top_k: int) -> list[ContextMatch]: ...


class ReviewService:
    """Builds a review comment from PR chunks and their nearest indexed neighbours."""

    def __init__(
        self,
        agent: Agent[None, str],
        embedder: Embedder,
        index: ContextIndex,
        top_k: int = CONTEXT_TOP_K,
        concurrency: int = FETCH_CONCURRENCY,
    ):
        self.agent = agent
        self.embedder = embedder
        self.index = index
        self.top_k = top_k
        self.concurrency = concurrency

    async def retrieve_context(self, repo_slug: str, chunks: list[Chunk]) -> list[EnrichedChunk]:
        limit = asyncio.Semaphore(self.concurrency)

        async def enrich(chunk: Chunk) -> EnrichedChunk:
            async with limit:
                try:
                    vector = await self.embedder.embed(chunk.content)
                    matches = await self.index.query_nearest(vector, repo_slug, self.top_k)
                except CollaboratorError as e:
                    logger.warning(f"No context for {chunk.id}: {e}")
                    matches = []
            return EnrichedChunk(chunk=chunk, matches=matches)

        return list(await asyncio.gather(*(enrich(c) for c in chunks)))

    async def generate_review(self, req: ReviewRequest) -> str:
        """Return review text. Never raises: failures produce a fixed fallback message."""
        chunks = [chunk for file in req.files for chunk in file.chunks]
        if not chunks:
            return NO_CHUNKS_MESSAGE

        enriched = await self.retrieve_context(req.repo_slug, chunks)
        prompt = build_user_prompt(req, enriched)
        try:
            result = await self.agent.run(prompt)
        except Exception:
            logger.exception(f"Review generation failed for {req.repo_slug}#{req.pr_number}")
            return FAILED_REVIEW_MESSAGE
        return result.output.strip() or EMPTY_REVIEW_MESSAGE
