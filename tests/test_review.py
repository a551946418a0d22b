"""
Tests for review generation: context retrieval, prompt assembly and fallbacks
"""
import pytest
from pydantic_ai import Agent
from pydantic_ai.messages import ModelMessage, ModelResponse, TextPart, UserPromptPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from fakes import FakeEmbedder, FakeIndex, make_chunk
from indexer.chunker import chunk_file_content
from indexer.models import ContextMatch
from reviewer.models import EnrichedChunk, ReviewFile, ReviewRequest
from reviewer.prompt import build_user_prompt
from reviewer.service import FAILED_REVIEW_MESSAGE, NO_CHUNKS_MESSAGE, ReviewService


def review_request(files=None) -> ReviewRequest:
    if files is None:
        files = [ReviewFile(path="a.ts", chunks=chunk_file_content("octo/repo", "a.ts", "export const a = 1;", "h1"))]
    return ReviewRequest(repo_slug="octo/repo", pr_number=7, head_sha="h1", base_sha="b1", files=files)


class RecordingModel:
    """Collects the user prompts the agent sends and answers with a canned review."""

    def __init__(self, reply: str = "- a.ts: consider a test"):
        self.prompts: list[str] = []
        self.reply = reply

    def respond(self, messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        for message in messages:
            for part in getattr(message, "parts", []):
                if isinstance(part, UserPromptPart):
                    self.prompts.append(part.content)
        return ModelResponse(parts=[TextPart(self.reply)])


def service_with(model_fn, index=None, embedder=None) -> ReviewService:
    return ReviewService(
        agent=Agent(FunctionModel(model_fn), output_type=str),
        embedder=embedder or FakeEmbedder(),
        index=index or FakeIndex(),
        top_k=3,
    )


def test_prompt_lists_context_scores():
    chunk = make_chunk("octo/repo:a.ts:h1:chunk-0", "export const a = 1;")
    match = ContextMatch(
        id="octo/repo:b.ts:b1:chunk-0",
        score=0.91234,
        metadata={"repo": "octo/repo", "path": "b.ts", "sha": "b1"},
    )

    prompt = build_user_prompt(review_request(), [EnrichedChunk(chunk=chunk, matches=[match])])

    assert "**PR Number:** 7" in prompt
    assert "File: a.ts | Chunk 0" in prompt
    assert "Context (score 0.912): octo/repo b.ts @ b1" in prompt


def test_prompt_without_context():
    chunk = make_chunk("octo/repo:a.ts:h1:chunk-0")

    prompt = build_user_prompt(review_request(), [EnrichedChunk(chunk=chunk)])

    assert "Context: No relevant base embeddings found." in prompt


@pytest.mark.asyncio
async def test_review_includes_retrieved_context():
    index = FakeIndex()
    index.matches = [ContextMatch(id="m", score=0.5, metadata={"repo": "octo/repo", "path": "b.ts", "sha": "b1"})]
    model = RecordingModel()

    review = await service_with(model.respond, index=index).generate_review(review_request())

    assert review == "- a.ts: consider a test"
    assert index.queries == [("octo/repo", 3)]
    [prompt] = model.prompts
    assert "Context (score 0.500): octo/repo b.ts @ b1" in prompt


@pytest.mark.asyncio
async def test_context_failure_degrades_to_no_context():
    index = FakeIndex()
    index.fail_queries = True
    model = RecordingModel()

    review = await service_with(model.respond, index=index).generate_review(review_request())

    assert review == "- a.ts: consider a test"
    assert "Context: No relevant base embeddings found." in model.prompts[0]


@pytest.mark.asyncio
async def test_embedding_failure_degrades_to_no_context():
    model = RecordingModel()
    embedder = FakeEmbedder(fail_on={"export const a = 1;"})

    await service_with(model.respond, embedder=embedder).generate_review(review_request())

    assert "Context: No relevant base embeddings found." in model.prompts[0]


@pytest.mark.asyncio
async def test_no_chunks_skips_the_model():
    model = RecordingModel()

    review = await service_with(model.respond).generate_review(review_request(files=[ReviewFile(path="a.ts", chunks=[])]))

    assert review == NO_CHUNKS_MESSAGE
    assert model.prompts == []


@pytest.mark.asyncio
async def test_model_failure_returns_fallback():
    def broken(messages, info):
        raise RuntimeError("provider unavailable")

    review = await service_with(broken).generate_review(review_request())

    assert review == FAILED_REVIEW_MESSAGE


@pytest.mark.asyncio
async def test_review_text_is_stripped():
    review = await service_with(RecordingModel("\n  Looks good.  \n").respond).generate_review(review_request())

    assert review == "Looks good."
