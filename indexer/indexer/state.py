"""JSON documents on local disk for per-repository bookkeeping.

Writes go through a temp file and ``os.replace`` so a crash never leaves a
half-written document behind. Unreadable documents are treated as empty.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from .models import RepoRegistration

logger = logging.getLogger(__name__)

SYNC_STATE_FILE = "embedding-state.json"
REPOSITORIES_FILE = "repositories.json"


class JsonDocument:
    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def read(self) -> dict[str, Any]:
        if not self.path.exists():
            self._write({})
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            data = None
        if not isinstance(data, dict):
            logger.warning(f"Resetting unreadable state file {self.path}")
            self._write({})
            return {}
        return data

    def write(self, data: dict[str, Any]) -> None:
        self._write(data)


class SyncStateStore:
    """Last commit fully reflected in the index, per ``owner/name``."""

    def __init__(self, state_dir: str | Path):
        self.document = JsonDocument(Path(state_dir) / SYNC_STATE_FILE)

    def get(self, repo_slug: str) -> str | None:
        value = self.document.read().get(repo_slug)
        return value if isinstance(value, str) and value else None

    def set(self, repo_slug: str, sha: str) -> None:
        state = self.document.read()
        state[repo_slug] = sha
        self.document.write(state)

    def clear(self, repo_slug: str) -> None:
        state = self.document.read()
        if repo_slug in state:
            del state[repo_slug]
            self.document.write(state)

    def all(self) -> dict[str, str]:
        return {k: v for k, v in self.document.read().items() if isinstance(v, str)}


class RepoRegistry:
    """Installation and ownership records for repositories that sent events."""

    def __init__(self, state_dir: str | Path):
        self.document = JsonDocument(Path(state_dir) / REPOSITORIES_FILE)

    def store(self, registration: RepoRegistration) -> RepoRegistration:
        state = self.document.read()
        previous = state.get(registration.repo_slug)
        merged = previous if isinstance(previous, dict) else {}
        merged.update(registration.model_dump(exclude_none=True))
        state[registration.repo_slug] = merged
        self.document.write(state)
        return RepoRegistration.model_validate(merged)

    def get(self, repo_slug: str) -> RepoRegistration | None:
        record = self.document.read().get(repo_slug)
        if not isinstance(record, dict):
            return None
        return RepoRegistration.model_validate(record)

    def list_repos(self) -> list[RepoRegistration]:
        repos = []
        for slug, record in self.document.read().items():
            try:
                repos.append(RepoRegistration.model_validate(record))
            except ValueError:
                logger.warning(f"Ignoring malformed registration for {slug}")
        return repos
