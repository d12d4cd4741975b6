"""Unit tests for the OpenAI-compatible LLM provider and SDK error mapping."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from src.config.settings import Settings
from src.providers.llm.openai_provider import (
    OpenAILLMProvider,
    classify_openai_error,
    wrap_openai_error,
)
from src.utils.errors import LLMError, NetworkError, RequestTimeoutError
from src.utils.retry import FailureInfo, RetryClient, RetryPolicy

_REQUEST = httpx.Request("POST", "https://api.openai.test/v1/chat/completions")


# ======================================================================
# Shared helpers
# ======================================================================


def _settings(**overrides) -> Settings:  # noqa: ANN003
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_chat_model": "gpt-4o-mini",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def _status_error(status: int, headers: dict | None = None) -> openai.APIStatusError:
    response = httpx.Response(status, request=_REQUEST, headers=headers or {})
    cls = openai.RateLimitError if status == 429 else openai.InternalServerError
    return cls(f"status {status}", response=response, body=None)


def _completion(content: str | None) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    response.usage = MagicMock(total_tokens=42)
    return response


@pytest.fixture
def retry_client(recording_sleep) -> RetryClient:  # noqa: ANN001
    return RetryClient(MagicMock(spec=httpx.AsyncClient), RetryPolicy(jitter=False), sleep=recording_sleep)


# ======================================================================
# Error classification
# ======================================================================


class TestClassifyOpenAIError:
    def test_timeout(self) -> None:
        assert classify_openai_error(openai.APITimeoutError(request=_REQUEST)) == FailureInfo(408)

    def test_connection(self) -> None:
        assert classify_openai_error(openai.APIConnectionError(request=_REQUEST)) == FailureInfo(None)

    def test_status_with_retry_after(self) -> None:
        info = classify_openai_error(_status_error(429, {"retry-after": "3"}))
        assert info == FailureInfo(429, 3000.0)

    def test_unrelated_exception(self) -> None:
        assert classify_openai_error(ValueError("nope")) is None

    def test_wrap_timeout(self) -> None:
        err = wrap_openai_error(openai.APITimeoutError(request=_REQUEST), "openai", LLMError, "chat")
        assert isinstance(err, RequestTimeoutError)

    def test_wrap_connection(self) -> None:
        err = wrap_openai_error(openai.APIConnectionError(request=_REQUEST), "openai", LLMError, "chat")
        assert isinstance(err, NetworkError)

    def test_wrap_status_keeps_code(self) -> None:
        err = wrap_openai_error(_status_error(500), "openai", LLMError, "chat")
        assert isinstance(err, LLMError)
        assert err.status == 500


# ======================================================================
# OpenAI LLM Provider
# ======================================================================


class TestOpenAILLMProvider:
    def test_provider_name(self, retry_client: RetryClient) -> None:
        assert OpenAILLMProvider(_settings(), retry_client).get_provider_name() == "openai"
        custom = OpenAILLMProvider(_settings(openai_base_url="http://vllm.local/v1"), retry_client)
        assert custom.get_provider_name() == "openai-compatible"

    def test_is_available(self, retry_client: RetryClient) -> None:
        assert OpenAILLMProvider(_settings(), retry_client).is_available() is True
        assert OpenAILLMProvider(_settings(openai_api_key=""), retry_client).is_available() is False

    def test_sdk_retries_disabled(self, retry_client: RetryClient) -> None:
        with patch("src.providers.llm.openai_provider.openai.AsyncOpenAI") as factory:
            OpenAILLMProvider(_settings(), retry_client)
        assert factory.call_args.kwargs["max_retries"] == 0

    @pytest.mark.asyncio
    async def test_complete_success(self, retry_client: RetryClient) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create = AsyncMock(return_value=_completion("  Hello there.  "))
        provider = OpenAILLMProvider(_settings(), retry_client, client=mock_client)

        result = await provider.complete("system prompt", "user prompt", temperature=0.0, max_tokens=50)

        assert result == "Hello there."
        kwargs = mock_client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == [
            {"role": "system", "content": "system prompt"},
            {"role": "user", "content": "user prompt"},
        ]
        assert (kwargs["temperature"], kwargs["max_tokens"]) == (0.0, 50)

    @pytest.mark.asyncio
    async def test_retries_rate_limit_then_succeeds(self, retry_client: RetryClient, recording_sleep) -> None:  # noqa: ANN001
        mock_client = MagicMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=[_status_error(429, {"retry-after": "2"}), _completion("ok")]
        )
        provider = OpenAILLMProvider(_settings(), retry_client, client=mock_client)

        assert await provider.chat([{"role": "user", "content": "hi"}]) == "ok"
        assert recording_sleep.delays == [2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_llm_error(self, retry_client: RetryClient) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create = AsyncMock(side_effect=_status_error(500))
        provider = OpenAILLMProvider(_settings(), retry_client, client=mock_client)

        with pytest.raises(LLMError) as exc_info:
            await provider.chat([{"role": "user", "content": "hi"}])

        assert exc_info.value.status == 500
        assert mock_client.chat.completions.create.await_count == 4

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self, retry_client: RetryClient) -> None:
        response = httpx.Response(400, request=_REQUEST)
        mock_client = MagicMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=openai.BadRequestError("bad", response=response, body=None)
        )
        provider = OpenAILLMProvider(_settings(), retry_client, client=mock_client)

        with pytest.raises(LLMError):
            await provider.chat([{"role": "user", "content": "hi"}])
        assert mock_client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_content(self, retry_client: RetryClient) -> None:
        mock_client = MagicMock()
        mock_client.chat.completions.create = AsyncMock(return_value=_completion("   "))
        provider = OpenAILLMProvider(_settings(), retry_client, client=mock_client)

        with pytest.raises(LLMError, match="empty response"):
            await provider.chat([{"role": "user", "content": "hi"}])
