from datetime import datetime, timezone
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .errors import ValidationError

ImportKind = Literal["static", "side-effect", "dynamic", "require"]
ItemStatus = Literal["ok", "skipped", "error"]
Outcome = Literal["ignored", "indexed", "reconciled", "skipped"]


class ChunkMetadata(BaseModel):
    repo: str
    path: str
    sha: str
    content_hash: str    # sha1 of the whole file
    chunk_hash: str      # sha1 of this slice
    start: int
    end: int


class Chunk(BaseModel):
    id: str
    content: str
    metadata: ChunkMetadata


class ImportEdge(BaseModel):
    source: str
    target: str          # normalized, relative to the repository root
    kind: ImportKind


class RepositoryBlob(BaseModel):
    path: str
    sha: str             # blob sha, usable with the git blobs API


class ChangedFile(BaseModel):
    filename: str
    status: str = "modified"


class SourceFile(BaseModel):
    path: str
    content: str


class ContextMatch(BaseModel):
    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class ItemResult(BaseModel):
    path: str
    status: ItemStatus
    detail: str = ""
    chunks_upserted: int = 0


class BatchReport(BaseModel):
    items: list[ItemResult] = Field(default_factory=list)

    def by_status(self, status: ItemStatus) -> list[ItemResult]:
        return [item for item in self.items if item.status == status]

    @property
    def succeeded(self) -> list[ItemResult]:
        return self.by_status("ok")

    @property
    def failed(self) -> list[ItemResult]:
        return self.by_status("error")

    @property
    def chunks_upserted(self) -> int:
        return sum(item.chunks_upserted for item in self.items)


class ProcessResult(BaseModel):
    outcome: Outcome
    repo_slug: str | None = None
    commit: str | None = None
    files_processed: int = 0
    dependencies_indexed: int = 0
    chunks_upserted: int = 0
    dependency_failures: list[str] = Field(default_factory=list)


class RepoRegistration(BaseModel):
    installation_id: int
    owner: str
    repo: str
    repo_slug: str
    installation_account: str | None = None
    last_action: str | None = None
    last_event_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class PullRequestJob(BaseModel):
    payload: dict[str, Any]
    delivery_id: str | None = None


# Webhook payload shapes. Everything is optional here; PullRequestEvent decides
# what is required.

class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _Account(_Lenient):
    login: str | None = None


class _Installation(_Lenient):
    id: int | None = None
    account: _Account | None = None


class _Repository(_Lenient):
    name: str | None = None
    owner: _Account | None = None


class _CommitRef(_Lenient):
    sha: str | None = None


class _PullRequest(_Lenient):
    number: int | None = None
    merged: bool | None = None
    merge_commit_sha: str | None = None
    head: _CommitRef | None = None
    base: _CommitRef | None = None


class WebhookPayload(_Lenient):
    action: str | None = None
    installation: _Installation | None = None
    repository: _Repository | None = None
    pull_request: _PullRequest | None = None

    @classmethod
    def parse(cls, payload: dict[str, Any]) -> "WebhookPayload":
        try:
            return cls.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Malformed pull request payload: {e}") from e


class PullRequestEvent(BaseModel):
    """A pull_request event whose correlation fields are known to be present."""

    action: str
    installation_id: int
    owner: str
    repo: str
    number: int
    installation_account: str | None = None
    head_sha: str | None = None
    base_sha: str | None = None
    merged: bool = False
    merge_commit_sha: str | None = None

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    @classmethod
    def from_payload(cls, payload: WebhookPayload) -> "PullRequestEvent":
        installation = payload.installation or _Installation()
        repository = payload.repository or _Repository()
        owner = repository.owner.login if repository.owner else None
        pr = payload.pull_request or _PullRequest()

        missing = [
            name
            for name, value in (
                ("action", payload.action),
                ("installation.id", installation.id),
                ("repository.owner.login", owner),
                ("repository.name", repository.name),
                ("pull_request.number", pr.number),
            )
            if not value
        ]
        if missing:
            raise ValidationError(
                f"Missing required pull request payload fields: {', '.join(missing)}"
            )

        return cls(
            action=payload.action,
            installation_id=installation.id,
            owner=owner,
            repo=repository.name,
            number=pr.number,
            installation_account=installation.account.login if installation.account else None,
            head_sha=pr.head.sha if pr.head else None,
            base_sha=pr.base.sha if pr.base else None,
            merged=bool(pr.merged),
            merge_commit_sha=pr.merge_commit_sha,
        )
