"""
GitHub webhook receiver.

Verifies the payload signature, records the repository, and queues the event for
the indexer worker. Responses never wait for indexing.
"""
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Protocol

import pydantic
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse

from indexer.errors import IndexerError
from indexer.models import RepoRegistration
from indexer.state import RepoRegistry

from .signature import verify_signature

logger = logging.getLogger(__name__)


class JobQueue(Protocol):
    async def enqueue(self, payload: dict[str, Any], delivery_id: str | None = None) -> str | None: ...

    async def close(self) -> None: ...


def _section(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


def registration_from_payload(payload: dict[str, Any]) -> RepoRegistration | None:
    """Repository record for a pull_request payload; None when the payload lacks one."""
    installation = _section(payload, "installation")
    repository = _section(payload, "repository")
    owner = _section(repository, "owner").get("login")
    repo = repository.get("name")
    installation_id = installation.get("id")
    if not (installation_id and owner and repo):
        return None
    try:
        return RepoRegistration(
            installation_id=installation_id,
            owner=owner,
            repo=repo,
            repo_slug=f"{owner}/{repo}",
            installation_account=_section(installation, "account").get("login"),
            last_action=payload.get("action"),
        )
    except pydantic.ValidationError as e:
        logger.warning(f"Ignoring malformed repository fields in webhook payload: {e}")
        return None


def record_registration(registry: RepoRegistry, payload: dict[str, Any]) -> None:
    registration = registration_from_payload(payload)
    if registration is None:
        return
    try:
        registry.store(registration)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not record repository {registration.repo_slug}: {e}")


def create_app(secret: str, registry: RepoRegistry, queue: JobQueue) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await queue.close()

    app = FastAPI(title="pr-index-sync-webhook", lifespan=lifespan)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/webhook")
    async def handle_webhook(request: Request):
        body = await request.body()
        signature = request.headers.get("x-hub-signature-256")
        if not signature:
            return PlainTextResponse("Invalid or missing signature", status_code=400)
        if not body:
            return PlainTextResponse("Missing raw body", status_code=400)
        if not verify_signature(body, signature, secret):
            return PlainTextResponse("Unauthorized", status_code=401)

        event = request.headers.get("x-github-event")
        if event != "pull_request":
            return PlainTextResponse("Ignored non-PR event", status_code=200)

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return PlainTextResponse("Malformed JSON body", status_code=400)
        if not isinstance(payload, dict) or not payload.get("pull_request"):
            return PlainTextResponse("Missing pull_request payload", status_code=400)

        # The registry fsyncs on every write; keep it off the event loop.
        await run_in_threadpool(record_registration, registry, payload)

        try:
            await queue.enqueue(payload, request.headers.get("x-github-delivery"))
        except IndexerError as e:
            logger.error(f"Failed to queue pull request event: {e}")
            return PlainTextResponse("Internal Server Error", status_code=500)
        return PlainTextResponse("Queued pull request processing", status_code=202)

    return app
