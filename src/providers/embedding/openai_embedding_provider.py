"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
Batching across requests is the caller's job (see
``src/services/ingestion/embedding_service.py``); this adapter only guards
the per-request input limit.
"""

from __future__ import annotations

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.providers.llm.openai_provider import classify_openai_error, wrap_openai_error
from src.utils.errors import EmbeddingError, ValidationError
from src.utils.retry import RetryClient

logger = structlog.get_logger(logger_name=__name__)

# Inputs per embeddings.create call accepted by the OpenAI API.
_MAX_INPUTS_PER_REQUEST = 2048

# Vector width per model; unknown models on compatible endpoints are assumed
# to match text-embedding-3-small.
_VECTOR_WIDTH: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}
_DEFAULT_WIDTH = 1536


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embeds chunk contents and queries through ``embeddings.create``.

    One request per call; the SDK's own retries are disabled so the shared
    RetryClient governs backoff.
    """

    def __init__(
        self,
        settings: Settings,
        retry_client: RetryClient,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._api_key = settings.openai_api_key
        self._retry = retry_client

        if client is None:
            client_kwargs: dict = {
                "api_key": self._api_key or "unset",
                "timeout": openai.Timeout(settings.openai_timeout_seconds, connect=5.0),
                "max_retries": 0,
            }
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            client = openai.AsyncOpenAI(**client_kwargs)
        self._client = client
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _VECTOR_WIDTH.get(self._model, _DEFAULT_WIDTH)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed up to :meth:`max_batch_size` texts in a single request."""
        if not texts:
            return []
        if len(texts) > _MAX_INPUTS_PER_REQUEST:
            raise ValidationError(
                message=f"Embedding batch of {len(texts)} exceeds limit {_MAX_INPUTS_PER_REQUEST}",
                provider_name=self._provider_label,
            )

        async def _call():  # noqa: ANN202
            return await self._client.embeddings.create(input=texts, model=self._model)

        try:
            response = await self._retry.execute(
                _call, classify=classify_openai_error, operation="openai.embeddings"
            )
        except openai.APIError as exc:
            raise wrap_openai_error(
                exc, self._provider_label, EmbeddingError, "embeddings"
            ) from exc

        # The API may return items out of order; ``index`` is authoritative.
        items = sorted(response.data, key=lambda item: item.index)
        vectors = [list(item.embedding) for item in items]
        if len(vectors) != len(texts):
            raise EmbeddingError(
                message=f"Expected {len(texts)} embeddings, got {len(vectors)}",
                provider_name=self._provider_label,
            )
        logger.info(
            "openai_embedding_batch",
            model=self._model,
            provider=self._provider_label,
            batch_size=len(texts),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return vectors

    def max_batch_size(self) -> int:
        return _MAX_INPUTS_PER_REQUEST

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
