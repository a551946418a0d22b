"""
Tests for the restate worker: retry policy, handler registration and job execution
"""
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest

from fakes import FakeEmbedder, FakeGitHubApp, FakeIndex, FakeReviewer, pr_payload
from indexer import service
from indexer.config import Settings
from indexer.embedding import EmbeddingDeduplicator
from indexer.models import ChangedFile, PullRequestJob
from indexer.orchestrator import PullRequestProcessor
from indexer.queue import PROCESS_HANDLER
from indexer.state import SyncStateStore


def test_retry_policy():
    policy = service.PROCESS_RETRY_POLICY

    assert policy.max_attempts == 3
    assert policy.initial_interval == timedelta(seconds=5)
    assert policy.exponentiation_factor == 2.0
    assert policy.on_max_attempts == "pause"


def test_handler_is_registered_under_process():
    assert PROCESS_HANDLER in service.processor_object.handlers


@pytest.fixture
def wired(tmp_path, monkeypatch):
    github = FakeGitHubApp()
    index = FakeIndex()
    state = SyncStateStore(tmp_path)
    opened = []

    @asynccontextmanager
    async def fake_build_processor(settings):
        opened.append(settings)
        yield PullRequestProcessor(
            github=github,
            index=index,
            deduplicator=EmbeddingDeduplicator(index, FakeEmbedder()),
            state=state,
            reviewer=FakeReviewer(),
        )

    monkeypatch.setattr(service, "build_processor", fake_build_processor)
    monkeypatch.setattr(service, "load_settings", lambda: Settings())
    return github, state, opened


@pytest.mark.asyncio
async def test_run_job_processes_payload(wired):
    github, state, opened = wired
    github.client.files = [ChangedFile(filename="a.ts")]
    github.client.contents[("a.ts", "h1")] = "export const a = 1;\n"

    result = await service.run_job("octo/repo", PullRequestJob(payload=pr_payload(), delivery_id="d-1"))

    assert result.outcome == "indexed"
    assert result.repo_slug == "octo/repo"
    assert state.get("octo/repo") == "b1"
    assert len(opened) == 1


@pytest.mark.asyncio
async def test_run_job_ignored_action(wired):
    github, state, _ = wired

    result = await service.run_job("octo/repo", PullRequestJob(payload=pr_payload(action="labeled")))

    assert result.outcome == "ignored"
    assert github.installations == []
