"""Custom exception hierarchy for storyshelf.

All application exceptions inherit from :class:`StoryShelfError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "supabase-storage", "chromadb") caused the
failure, and a ``status_code`` the API layer uses when rendering the error.

The hierarchy is organized by failure kind:

    StoryShelfError  (base -- catch-all for any storyshelf error)
    +-- ValidationError          (malformed input to any stage)
    +-- NotFoundError            (missing book / chunk / character)
    +-- ConflictError            (duplicate insert, job already running)
    +-- ConfigurationError       (startup / missing config)
    +-- PipelineError            (illegal status transition, stage failure)
    +-- ExternalServiceError     (storage / LLM / search call failure)
        +-- LLMError             (chat-completion call failure)
        +-- EmbeddingError       (embedding call or write-back failure)
        +-- StorageError         (object / relational storage failure)
        +-- NetworkError         (retry client exhausted on network errors)
        +-- RequestTimeoutError  (retry client exhausted on timeouts)

Ingestion stages let these propagate; the job orchestrator is the single
place that turns them into an ``error`` status on the book record.
"""


class StoryShelfError(Exception):
    """Base exception for all storyshelf errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Request / data errors
# ---------------------------------------------------------------------------

class ValidationError(StoryShelfError):
    """Raised when input to any stage is malformed (bad ids, empty PDF, bad config values)."""

    status_code = 400

    def __init__(
        self,
        message: str = "Invalid input",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NotFoundError(StoryShelfError):
    """Raised when a book, chunk, or character does not exist."""

    status_code = 404

    def __init__(
        self,
        message: str = "Resource not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConflictError(StoryShelfError):
    """Raised on duplicate inserts or when a processing job is already active."""

    status_code = 409

    def __init__(
        self,
        message: str = "Conflicting request",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class PipelineError(StoryShelfError):
    """Raised when pipeline orchestration fails (invalid status transition, etc.)."""

    def __init__(
        self,
        message: str = "Pipeline orchestration failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(StoryShelfError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service errors
# ---------------------------------------------------------------------------

class ExternalServiceError(StoryShelfError):
    """Raised when an external dependency (storage, LLM, search) call fails.

    ``status`` holds the last HTTP status observed, when there was one.
    """

    status_code = 502

    def __init__(
        self,
        message: str = "External service call failed",
        provider_name: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._status = status

    @property
    def status(self) -> int | None:
        return self._status


class LLMError(ExternalServiceError):
    """Raised when an LLM API call fails or returns an unusable response."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, status=status)


class EmbeddingError(ExternalServiceError):
    """Raised when embedding generation or write-back fails."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, status=status)


class StorageError(ExternalServiceError):
    """Raised when object storage, the relational store, or the vector index fails."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, status=status)


class NetworkError(ExternalServiceError):
    """Raised when every retry attempt failed at the network level."""

    def __init__(
        self,
        message: str = "Network request failed",
        provider_name: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, status=status)


class RequestTimeoutError(ExternalServiceError):
    """Raised when every retry attempt timed out."""

    status_code = 504

    def __init__(
        self,
        message: str = "Request timed out",
        provider_name: str | None = None,
        status: int | None = 408,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, status=status)
