class IndexerError(Exception):
    """Base class for errors raised while syncing a repository into the index."""


class ValidationError(IndexerError):
    """The webhook payload is missing fields needed to correlate the job."""


class ConfigurationError(IndexerError):
    """Settings or call parameters are unusable."""


class CollaboratorError(IndexerError):
    """An external service (GitHub, embeddings, text model, vector index) failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
