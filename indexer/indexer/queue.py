import logging
from typing import Any
from urllib.parse import quote

import httpx

from .errors import CollaboratorError
from .models import PullRequestJob

logger = logging.getLogger(__name__)

PROCESSOR_NAME = "PullRequestProcessor"
PROCESS_HANDLER = "Process"


def job_key(payload: dict[str, Any]) -> str:
    """Jobs for the same repository share a key and run one at a time."""
    repository = payload.get("repository") or {}
    owner = (repository.get("owner") or {}).get("login")
    name = repository.get("name")
    if owner and name:
        return f"{owner}/{name}"
    return "unknown"


class PullRequestQueue:
    """Hands pull request jobs to the restate ingress without waiting for them to run."""

    def __init__(self, ingress_url: str, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self.http = httpx.AsyncClient(base_url=ingress_url.rstrip("/"), timeout=timeout, transport=transport)

    async def enqueue(self, payload: dict[str, Any], delivery_id: str | None = None) -> str | None:
        """Submit a job and return its invocation id.

        The GitHub delivery id doubles as the idempotency key, so redelivered webhooks
        attach to the existing invocation instead of starting a new one.
        """
        job = PullRequestJob(payload=payload, delivery_id=delivery_id)
        key = quote(job_key(payload), safe="")
        headers = {"idempotency-key": delivery_id} if delivery_id else {}
        try:
            response = await self.http.post(
                f"/{PROCESSOR_NAME}/{key}/{PROCESS_HANDLER}/send",
                json=job.model_dump(),
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Failed to enqueue pull request job: {e}") from e

        invocation_id = response.json().get("invocationId")
        logger.info(f"Queued pull request job {invocation_id} for {job_key(payload)}")
        return invocation_id

    async def close(self) -> None:
        await self.http.aclose()
