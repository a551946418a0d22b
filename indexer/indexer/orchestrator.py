import asyncio
import logging
from typing import Any, AsyncContextManager, Protocol

from reviewer.models import ReviewFile, ReviewRequest

from .chunker import chunk_file_content
from .config import DEPENDENCY_BATCH_SIZE, FETCH_CONCURRENCY
from .embedding import EmbeddingDeduplicator
from .errors import CollaboratorError, ValidationError
from .github import GitHubClient
from .imports import extract_imports, resolve_dependencies
from .models import (
    BatchReport,
    ChangedFile,
    ItemResult,
    ProcessResult,
    PullRequestEvent,
    RepositoryBlob,
    SourceFile,
    WebhookPayload,
)
from .state import SyncStateStore

logger = logging.getLogger(__name__)

BASE_DIFF_ACTIONS = frozenset({"opened", "synchronize", "reopened", "ready_for_review"})


class InstallationProvider(Protocol):
    def installation(self, installation_id: int) -> AsyncContextManager[GitHubClient]: ...


class Reviewer(Protocol):
    async def generate_review(self, req: ReviewRequest) -> str: ...


class PurgeableIndex(Protocol):
    async def delete_by_filter(self, repo: str, sha: str | None = None) -> None: ...


class PullRequestProcessor:
    """Drives one pull_request webhook event through the index.

    Open/sync events index the PR's imported dependencies at the base commit and post
    a review; merged PRs re-index the changed files at the merge commit. The sync
    state is written last, so a failed pass can simply be retried.
    """

    def __init__(
        self,
        github: InstallationProvider,
        index: PurgeableIndex,
        deduplicator: EmbeddingDeduplicator,
        state: SyncStateStore,
        reviewer: Reviewer,
        fetch_concurrency: int = FETCH_CONCURRENCY,
        dependency_batch_size: int = DEPENDENCY_BATCH_SIZE,
    ):
        self.github = github
        self.index = index
        self.deduplicator = deduplicator
        self.state = state
        self.reviewer = reviewer
        self.fetch_concurrency = fetch_concurrency
        self.dependency_batch_size = dependency_batch_size

    async def process(self, payload: dict[str, Any]) -> ProcessResult:
        # Routing reads the raw payload: an ignored event is never rejected for
        # fields it does not use.
        action = payload.get("action")
        if not action or not isinstance(action, str):
            raise ValidationError("Missing required pull request payload field: action")

        pull_request = payload.get("pull_request")
        merged_close = action == "closed" and isinstance(pull_request, dict) and pull_request.get("merged") is True
        if action not in BASE_DIFF_ACTIONS and not merged_close:
            logger.info(f"Ignoring pull_request action '{action}'")
            return ProcessResult(outcome="ignored")

        event = PullRequestEvent.from_payload(WebhookPayload.parse(payload))
        if merged_close:
            return await self.reconcile_merge(event)

        if not event.head_sha or not event.base_sha:
            raise ValidationError("Missing head/base SHAs for pull request event")
        return await self.index_base_diff(event)

    async def index_base_diff(self, event: PullRequestEvent) -> ProcessResult:
        logger.info(
            f"Indexing {event.slug}#{event.number} (head {event.head_sha}, base {event.base_sha})"
        )
        async with self.github.installation(event.installation_id) as gh:
            changed = await gh.list_pull_files(event.owner, event.repo, event.number)
            pr_files, report = await self._fetch_changed(gh, event, changed, event.head_sha)
            for item in report.failed:
                logger.warning(f"Could not fetch {item.path}@{event.head_sha}: {item.detail}")

            dependencies = await self._find_dependencies(gh, event, pr_files)
            dep_report = await self._index_dependencies(gh, event, dependencies)

            review = await self.reviewer.generate_review(ReviewRequest(
                repo_slug=event.slug,
                pr_number=event.number,
                head_sha=event.head_sha,
                base_sha=event.base_sha,
                files=[
                    ReviewFile(
                        path=f.path,
                        chunks=chunk_file_content(event.slug, f.path, f.content, event.head_sha),
                    )
                    for f in pr_files
                ],
            ))
            await gh.create_issue_comment(event.owner, event.repo, event.number, review)

        self.state.set(event.slug, event.base_sha)
        logger.info(
            f"Indexed {len(dep_report.succeeded)}/{len(dependencies)} dependencies for "
            f"{event.slug}#{event.number} ({dep_report.chunks_upserted} new chunks)"
        )
        return ProcessResult(
            outcome="indexed",
            repo_slug=event.slug,
            commit=event.base_sha,
            files_processed=len(pr_files),
            dependencies_indexed=len(dep_report.succeeded),
            chunks_upserted=dep_report.chunks_upserted,
            dependency_failures=[item.path for item in dep_report.failed],
        )

    async def reconcile_merge(self, event: PullRequestEvent) -> ProcessResult:
        merge_sha = event.merge_commit_sha
        if not merge_sha:
            logger.warning(
                f"Merge event for {event.slug}#{event.number} has no merge_commit_sha; skipping index update"
            )
            return ProcessResult(outcome="skipped", repo_slug=event.slug)

        previous = self.state.get(event.slug)
        if previous and previous != merge_sha:
            logger.info(f"Purging stale embeddings for {event.slug}@{previous}")
            await self.index.delete_by_filter(event.slug, previous)

        async with self.github.installation(event.installation_id) as gh:
            changed = await gh.list_pull_files(event.owner, event.repo, event.number)
            merged_files, report = await self._fetch_changed(gh, event, changed, merge_sha)

        # A file we could not read would be missing from the index while the state
        # claims the merge commit is fully indexed.
        if report.failed:
            failed = ", ".join(item.path for item in report.failed)
            raise CollaboratorError(f"Could not fetch merged files for {event.slug}: {failed}")

        chunks = [
            chunk
            for f in merged_files
            for chunk in chunk_file_content(event.slug, f.path, f.content, merge_sha)
        ]
        inserted = await self.deduplicator.embed_missing(chunks)

        self.state.set(event.slug, merge_sha)
        logger.info(f"Reconciled {event.slug}@{merge_sha}: {len(merged_files)} files, {inserted} new chunks")
        return ProcessResult(
            outcome="reconciled",
            repo_slug=event.slug,
            commit=merge_sha,
            files_processed=len(merged_files),
            chunks_upserted=inserted,
        )

    async def _fetch_changed(
        self,
        gh: GitHubClient,
        event: PullRequestEvent,
        changed: list[ChangedFile],
        ref: str,
    ) -> tuple[list[SourceFile], BatchReport]:
        limit = asyncio.Semaphore(self.fetch_concurrency)

        async def fetch(file: ChangedFile) -> tuple[SourceFile | None, ItemResult]:
            if file.status == "removed":
                return None, ItemResult(path=file.filename, status="skipped", detail="removed")
            async with limit:
                try:
                    content = await gh.get_file(event.owner, event.repo, file.filename, ref)
                except CollaboratorError as e:
                    return None, ItemResult(path=file.filename, status="error", detail=str(e))
            if content is None:
                return None, ItemResult(path=file.filename, status="skipped", detail="not a text file")
            return SourceFile(path=file.filename, content=content), ItemResult(path=file.filename, status="ok")

        results = await asyncio.gather(*(fetch(f) for f in changed))
        files = [source for source, _ in results if source is not None]
        return files, BatchReport(items=[item for _, item in results])

    async def _find_dependencies(
        self,
        gh: GitHubClient,
        event: PullRequestEvent,
        pr_files: list[SourceFile],
    ) -> list[RepositoryBlob]:
        edges = extract_imports(pr_files)
        if not edges:
            return []
        tree = await gh.get_tree(event.owner, event.repo, event.base_sha)
        return resolve_dependencies(edges, tree, exclude={f.path for f in pr_files})

    async def _index_dependencies(
        self,
        gh: GitHubClient,
        event: PullRequestEvent,
        dependencies: list[RepositoryBlob],
    ) -> BatchReport:
        limit = asyncio.Semaphore(self.fetch_concurrency)

        async def index_one(blob: RepositoryBlob) -> ItemResult:
            async with limit:
                try:
                    content = await gh.get_blob(event.owner, event.repo, blob.sha)
                    if content is None:
                        return ItemResult(path=blob.path, status="skipped", detail="binary")
                    chunks = chunk_file_content(event.slug, blob.path, content, event.base_sha)
                    inserted = await self.deduplicator.embed_missing(chunks)
                except CollaboratorError as e:
                    logger.warning(f"Skipping dependency {blob.path}: {e}")
                    return ItemResult(path=blob.path, status="error", detail=str(e))
            return ItemResult(path=blob.path, status="ok", chunks_upserted=inserted)

        report = BatchReport()
        size = self.dependency_batch_size
        for start in range(0, len(dependencies), size):
            batch = dependencies[start:start + size]
            report.items.extend(await asyncio.gather(*(index_one(b) for b in batch)))
        return report
