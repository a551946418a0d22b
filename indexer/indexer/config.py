import os
from datetime import timedelta

from pydantic import BaseModel, Field

from .errors import ConfigurationError

MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "openai/text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "openai/text-embedding-3-large": 3072,
}

OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"
OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://github.com/pr-index-sync",
    "X-Title": "pr-index-sync",
}

CHUNK_SIZE = 1500
CHUNK_OVERLAP = 200

# Fan-out limits for calls to external services.
FETCH_CONCURRENCY = 5
DEPENDENCY_BATCH_SIZE = 10
EMBED_CONCURRENCY = 5
UPSERT_BATCH_SIZE = 100
UPSERT_CONCURRENCY = 3
CONTEXT_TOP_K = 5

# Worker retry policy: 3 attempts, 5s, 10s back-off, then the job is paused for inspection.
JOB_MAX_ATTEMPTS = 3
JOB_INITIAL_BACKOFF = timedelta(seconds=5)
JOB_BACKOFF_FACTOR = 2.0


class Settings(BaseModel):
    openrouter_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    review_model: str = "anthropic/claude-sonnet-4-20250514"
    max_tokens: int = 16384
    qdrant_url: str = "http://localhost:6333"
    qdrant_collection: str = "repo-code-embeddings"
    state_dir: str = "data"
    github_app_id: str = ""
    github_private_key: str = ""
    github_api_url: str = "https://api.github.com"
    github_webhook_secret: str = ""
    restate_ingress_url: str = "http://localhost:8080"
    http_timeout: float = Field(default=30.0, gt=0)

    @property
    def embedding_dimensions(self) -> int:
        return MODEL_DIMENSIONS[self.embedding_model]


def load_settings(env: dict[str, str] | None = None) -> Settings:
    """Build Settings from environment variables.

    Unset variables fall back to the model defaults. Raises ConfigurationError for
    unknown embedding models and malformed numbers.
    """
    env = os.environ if env is None else env
    mapping = {
        "openrouter_api_key": "OPENROUTER_API_KEY",
        "embedding_model": "EMBEDDING_MODEL",
        "review_model": "REVIEW_MODEL",
        "max_tokens": "MAX_TOKENS",
        "qdrant_url": "QDRANT_URL",
        "qdrant_collection": "QDRANT_COLLECTION",
        "state_dir": "STATE_DIR",
        "github_app_id": "GITHUB_APP_ID",
        "github_private_key": "GITHUB_PRIVATE_KEY",
        "github_api_url": "GITHUB_API_URL",
        "github_webhook_secret": "GITHUB_WEBHOOK_SECRET",
        "restate_ingress_url": "RESTATE_INGRESS_URL",
        "http_timeout": "HTTP_TIMEOUT_SECONDS",
    }
    values = {field: env[var] for field, var in mapping.items() if env.get(var)}
    # Keys stored in env files usually carry literal "\n" sequences.
    if "github_private_key" in values:
        values["github_private_key"] = values["github_private_key"].replace("\\n", "\n")

    try:
        settings = Settings(**values)
    except ValueError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e

    if settings.embedding_model not in MODEL_DIMENSIONS:
        raise ConfigurationError(
            f"Unknown model '{settings.embedding_model}'. Supported: {', '.join(MODEL_DIMENSIONS)}"
        )
    return settings
