import base64
import binascii
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator
from urllib.parse import quote

import httpx
import jwt

from .errors import CollaboratorError, ConfigurationError
from .models import ChangedFile, RepositoryBlob

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
PER_PAGE = 100
MAX_FILE_PAGES = 30  # GitHub stops listing PR files at 3000


def decode_content(encoded: str) -> str | None:
    """Decode a base64 payload from the contents/blobs APIs.

    Returns None for binary (non UTF-8) content.
    """
    try:
        raw = base64.b64decode(encoded)
    except (binascii.Error, ValueError):
        return None
    try:
        return raw.decode("utf-8", errors="strict")
    except UnicodeDecodeError:
        return None


def _raise_for_status(response: httpx.Response, what: str) -> None:
    if response.is_error:
        raise CollaboratorError(
            f"GitHub {what} failed: {response.status_code} {response.text[:200]}",
            status_code=response.status_code,
        )


class GitHubClient:
    """REST calls scoped to one installation token."""

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def _request(self, method: str, url: str, what: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise CollaboratorError(f"GitHub {what} failed: {e}") from e

    async def list_pull_files(self, owner: str, repo: str, number: int) -> list[ChangedFile]:
        files: list[ChangedFile] = []
        for page in range(1, MAX_FILE_PAGES + 1):
            response = await self._request(
                "GET",
                f"/repos/{owner}/{repo}/pulls/{number}/files",
                "list pull request files",
                params={"per_page": PER_PAGE, "page": page},
            )
            _raise_for_status(response, "list pull request files")
            batch = response.json()
            files.extend(
                ChangedFile(filename=item["filename"], status=item.get("status") or "modified")
                for item in batch
                if item.get("filename")
            )
            if len(batch) < PER_PAGE:
                break
        return files

    async def get_file(self, owner: str, repo: str, path: str, ref: str) -> str | None:
        """Text content of ``path`` at ``ref``; None if absent, not a file, or binary."""
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/contents/{quote(path)}",
            f"fetch {path}@{ref}",
            params={"ref": ref},
        )
        if response.status_code == 404:
            return None
        _raise_for_status(response, f"fetch {path}@{ref}")

        data = response.json()
        if isinstance(data, list) or data.get("type") != "file" or not data.get("content"):
            return None
        return decode_content(data["content"])

    async def get_tree(self, owner: str, repo: str, sha: str) -> list[RepositoryBlob]:
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/git/trees/{sha}",
            f"fetch tree {sha}",
            params={"recursive": "1"},
        )
        _raise_for_status(response, f"fetch tree {sha}")

        data = response.json()
        if data.get("truncated"):
            logger.warning(f"Tree for {owner}/{repo}@{sha} is truncated; some imports may not resolve")
        return [
            RepositoryBlob(path=entry["path"], sha=entry["sha"])
            for entry in data.get("tree", [])
            if entry.get("type") == "blob"
        ]

    async def get_blob(self, owner: str, repo: str, sha: str) -> str | None:
        response = await self._request(
            "GET", f"/repos/{owner}/{repo}/git/blobs/{sha}", f"fetch blob {sha}"
        )
        _raise_for_status(response, f"fetch blob {sha}")
        data = response.json()
        if data.get("encoding") != "base64":
            return data.get("content")
        return decode_content(data.get("content", ""))

    async def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> None:
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/comments",
            "post comment",
            json={"body": body},
        )
        _raise_for_status(response, "post comment")

    async def aclose(self) -> None:
        await self.http.aclose()


class GitHubApp:
    """Mints installation-scoped clients for a GitHub App."""

    def __init__(
        self,
        app_id: str,
        private_key: str,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not app_id or not private_key:
            raise ConfigurationError("GITHUB_APP_ID and GITHUB_PRIVATE_KEY are required")
        self.app_id = app_id
        self.private_key = private_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self, token: str, scheme: str = "token") -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"{scheme} {token}",
                "X-GitHub-Api-Version": API_VERSION,
            },
        )

    def app_jwt(self) -> str:
        now = int(time.time())
        # Backdated to tolerate clock drift; GitHub caps lifetime at 10 minutes.
        claims = {"iat": now - 60, "exp": now + 540, "iss": self.app_id}
        return jwt.encode(claims, self.private_key, algorithm="RS256")

    async def installation_token(self, installation_id: int) -> str:
        async with self._client(self.app_jwt(), scheme="Bearer") as http:
            try:
                response = await http.post(f"/app/installations/{installation_id}/access_tokens")
            except httpx.HTTPError as e:
                raise CollaboratorError(f"GitHub installation token request failed: {e}") from e
        _raise_for_status(response, f"token for installation {installation_id}")
        return response.json()["token"]

    @asynccontextmanager
    async def installation(self, installation_id: int) -> AsyncIterator[GitHubClient]:
        client = GitHubClient(self._client(await self.installation_token(installation_id)))
        try:
            yield client
        finally:
            await client.aclose()
