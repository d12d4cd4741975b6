"""Client for kicking off book processing through a serverless function.

Posts ``{"book_id": ...}`` to ``{base_url}/functions/v1/{name}`` with the
service credentials, an optional ``Idempotency-Key``, and the shared retry
policy.  The result is always a :class:`TriggerResult`; whether a failed
trigger should be retried later, surfaced, or ignored is up to the caller.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

import structlog

from src.models.trigger import TriggerResult
from src.utils.errors import ConfigurationError, ValidationError
from src.utils.logging import get_logger
from src.utils.retry import RetryClient, RetryPolicy

_CLIENT_INFO = "storyshelf-trigger/1.0"


class ProcessingTriggerClient:
    """Invokes named functions on the processing backend."""

    def __init__(
        self,
        retry_client: RetryClient,
        base_url: str,
        api_key: str,
        *,
        function_name: str = "booksProcessor",
        timeout_s: float = 30.0,
    ) -> None:
        self._retry = retry_client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._function_name = function_name
        self._timeout_s = timeout_s
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def trigger_function(
        self,
        name: str,
        payload: Any = None,
        *,
        idempotency_key: str | None = None,
        headers: Mapping[str, str] | None = None,
        timeout_s: float | None = None,
        deadline: float | None = None,
        policy: RetryPolicy | None = None,
    ) -> TriggerResult:
        """POST *payload* to the function *name* and return the structured result."""
        if not name or not name.strip():
            raise ValidationError(message="function name must be a non-empty string")
        if not self._base_url:
            raise ConfigurationError(message="SUPABASE_URL is not set")
        if not self._api_key:
            raise ConfigurationError(message="Processing trigger API key is not set")

        url = f"{self._base_url}/functions/v1/{quote(name, safe='')}"
        request_headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
            "apikey": self._api_key,
            "x-client-info": _CLIENT_INFO,
            **(headers or {}),
        }
        result = await self._retry.request(
            "POST",
            url,
            json_body=payload,
            headers=request_headers,
            idempotency_key=idempotency_key,
            timeout_s=timeout_s if timeout_s is not None else self._timeout_s,
            deadline=deadline,
            policy=policy,
        )
        self._logger.info(
            "function_triggered",
            function=name,
            ok=result.ok,
            status=result.status,
            attempt=result.attempt,
            duration_ms=result.duration_ms,
        )
        return result

    async def trigger_book_processing(
        self,
        book_id: str,
        *,
        idempotency_key: str | None = None,
        deadline: float | None = None,
    ) -> TriggerResult:
        """Ask the backend to (re)process *book_id*."""
        if not book_id or not book_id.strip():
            raise ValidationError(message="book_id is required")
        return await self.trigger_function(
            self._function_name,
            {"book_id": book_id},
            idempotency_key=idempotency_key,
            deadline=deadline,
        )
