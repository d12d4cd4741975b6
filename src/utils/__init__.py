"""Utility modules for storyshelf.

- **errors** -- Domain exception hierarchy rooted at StoryShelfError; each
  class carries the HTTP status the API layer maps it to.
- **retry** -- RetryClient: retried outbound HTTP calls and arbitrary async
  callables with exponential backoff and Retry-After support.
- **concurrency** -- ``run_bounded``, the semaphore-limited fan-out used by
  the embedding stage.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
"""

# -- Domain exception hierarchy --------------------------------------------
from src.utils.errors import (
    ConfigurationError,
    ConflictError,
    EmbeddingError,
    ExternalServiceError,
    LLMError,
    NetworkError,
    NotFoundError,
    PipelineError,
    RequestTimeoutError,
    StorageError,
    StoryShelfError,
    ValidationError,
)

# -- Async concurrency helpers ---------------------------------------------
from src.utils.concurrency import run_bounded

# -- Structured logging setup ----------------------------------------------
from src.utils.logging import bind_book_context, configure_logging, get_logger

# -- Retried outbound calls ------------------------------------------------
from src.utils.retry import RetryClient, RetryPolicy

__all__ = [
    "ConfigurationError",
    "ConflictError",
    "EmbeddingError",
    "ExternalServiceError",
    "LLMError",
    "NetworkError",
    "NotFoundError",
    "PipelineError",
    "RequestTimeoutError",
    "RetryClient",
    "RetryPolicy",
    "StorageError",
    "StoryShelfError",
    "ValidationError",
    "bind_book_context",
    "configure_logging",
    "get_logger",
    "run_bounded",
]
