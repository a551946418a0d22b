from contextlib import asynccontextmanager
from typing import AsyncIterator

from qdrant_client import AsyncQdrantClient

from reviewer.agent import build_review_agent
from reviewer.service import ReviewService

from .config import Settings
from .embedding import EmbeddingDeduplicator, OpenRouterEmbedder
from .github import GitHubApp
from .orchestrator import PullRequestProcessor
from .state import SyncStateStore
from .vector_store import VectorIndex


def build_index(settings: Settings) -> VectorIndex:
    client = AsyncQdrantClient(url=settings.qdrant_url, timeout=int(settings.http_timeout))
    return VectorIndex(client, settings.qdrant_collection, settings.embedding_dimensions)


@asynccontextmanager
async def build_processor(settings: Settings) -> AsyncIterator[PullRequestProcessor]:
    """Wire a PullRequestProcessor to the real collaborators and close them afterwards."""
    index = build_index(settings)
    try:
        embedder = OpenRouterEmbedder.from_settings(
            settings.embedding_model, settings.openrouter_api_key, timeout=settings.http_timeout * 2
        )
        agent = build_review_agent(
            settings.review_model,
            settings.openrouter_api_key,
            max_tokens=settings.max_tokens,
            timeout=settings.http_timeout * 4,
        )
        yield PullRequestProcessor(
            github=GitHubApp(
                settings.github_app_id,
                settings.github_private_key,
                api_url=settings.github_api_url,
                timeout=settings.http_timeout,
            ),
            index=index,
            deduplicator=EmbeddingDeduplicator(index, embedder),
            state=SyncStateStore(settings.state_dir),
            reviewer=ReviewService(agent, embedder, index),
        )
    finally:
        await index.close()
