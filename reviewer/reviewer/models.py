from pydantic import BaseModel, Field

from indexer.models import Chunk, ContextMatch


class ReviewFile(BaseModel):
    path: str
    chunks: list[Chunk]


class ReviewRequest(BaseModel):
    repo_slug: str
    pr_number: int
    head_sha: str
    base_sha: str
    files: list[ReviewFile]


class EnrichedChunk(BaseModel):
    chunk: Chunk
    matches: list[ContextMatch] = Field(default_factory=list)
