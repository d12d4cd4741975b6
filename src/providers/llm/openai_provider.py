"""OpenAI-compatible LLM provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
When a custom ``openai_base_url`` is configured (e.g. TogetherAI,
Fireworks, a local vLLM server), the client points at that URL instead of
the default OpenAI endpoint.

The SDK's own retry loop is disabled (``max_retries=0``); every call runs
through the shared :class:`~src.utils.retry.RetryClient` so chat and
embedding calls obey the same policy as the storage and trigger requests.
"""

from __future__ import annotations

from collections.abc import Sequence

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.llm_provider import ChatMessage, ILLMProvider
from src.utils.errors import (
    ExternalServiceError,
    LLMError,
    NetworkError,
    RequestTimeoutError,
)
from src.utils.retry import TIMEOUT_STATUS, FailureInfo, RetryClient, parse_retry_after

logger = structlog.get_logger(logger_name=__name__)


def classify_openai_error(exc: BaseException) -> FailureInfo | None:
    """Map ``openai`` SDK exceptions onto retry statuses."""
    # APITimeoutError subclasses APIConnectionError, so it is checked first.
    if isinstance(exc, openai.APITimeoutError):
        return FailureInfo(TIMEOUT_STATUS)
    if isinstance(exc, openai.APIConnectionError):
        return FailureInfo(None)
    if isinstance(exc, openai.APIStatusError):
        return FailureInfo(
            exc.status_code,
            parse_retry_after(exc.response.headers.get("retry-after")),
        )
    return None


def wrap_openai_error(
    exc: openai.APIError,
    provider_name: str,
    error_cls: type[ExternalServiceError],
    action: str,
) -> ExternalServiceError:
    """Translate a final SDK exception into the storyshelf error hierarchy."""
    if isinstance(exc, openai.APITimeoutError):
        return RequestTimeoutError(
            message=f"{provider_name} {action} timed out after retries",
            provider_name=provider_name,
        )
    if isinstance(exc, openai.APIConnectionError):
        return NetworkError(
            message=f"{provider_name} {action} failed: {exc}",
            provider_name=provider_name,
        )
    status = exc.status_code if isinstance(exc, openai.APIStatusError) else None
    return error_cls(
        message=f"{provider_name} {action} API error: {exc}",
        provider_name=provider_name,
        status=status,
    )


class OpenAILLMProvider(ILLMProvider):
    """LLM provider backed by an OpenAI-compatible chat completions API.

    Uses ``gpt-4o-mini`` by default; override with ``OPENAI_CHAT_MODEL``.
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
        self._model = settings.openai_chat_model or "gpt-4o-mini"
        self._provider_label = "openai-compatible" if settings.openai_base_url else "openai"

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        """Send the message list to the chat completions endpoint."""
        payload = [dict(m) for m in messages]

        async def _call():  # noqa: ANN202
            return await self._client.chat.completions.create(
                model=self._model,
                messages=payload,
                temperature=temperature,
                max_tokens=max_tokens,
            )

        try:
            response = await self._retry.execute(
                _call, classify=classify_openai_error, operation="openai.chat"
            )
        except openai.APIError as exc:
            raise wrap_openai_error(exc, self._provider_label, LLMError, "chat") from exc

        if not response.choices:
            raise LLMError(
                message=f"{self._provider_label} returned no choices",
                provider_name=self._provider_label,
            )
        content = response.choices[0].message.content
        if content is None or not content.strip():
            raise LLMError(
                message=f"{self._provider_label} returned empty response",
                provider_name=self._provider_label,
            )
        logger.info(
            "openai_completion",
            model=self._model,
            provider=self._provider_label,
            messages=len(payload),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return content.strip()

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured (doesn't verify it works)."""
        return bool(self._api_key)

    def get_provider_name(self) -> str:
        return self._provider_label
