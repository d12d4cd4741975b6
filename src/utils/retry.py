"""Retry policy and the single retrying client for outbound calls.

Every external call in storyshelf (object storage, the processing trigger,
OpenAI chat and embeddings) goes through :class:`RetryClient`, so there is
exactly one retry loop and one policy to tune.

# ─── RETRY BEHAVIOUR ───────────────────────────────────────────────────
#
#   attempt 1 ──fail──> sleep backoff(1) ──> attempt 2 ──fail──> ...
#
#   backoff(k) = min(cap, base * 2**(k-1))      base=500ms, cap=5000ms
#              + up to 30% random jitter, still clamped to cap
#   attempts 1..4 without jitter -> 500, 1000, 2000, 4000 ms
#
#   A ``Retry-After: <seconds>`` header replaces the computed delay.
#
#   Retried by default: network failures (no status), 5xx, 408, 425, 429.
#   Everything else returns (or raises) immediately.
#
#   Per-attempt timeout (default 30 s) maps to status 408.  An optional
#   absolute ``deadline`` (monotonic seconds) bounds both attempt timeouts
#   and backoff sleeps; task cancellation always propagates.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import json
import random
import re
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, NamedTuple, TypeVar

import httpx
import structlog

from src.models.trigger import TriggerResult
from src.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)

_MIN_BACKOFF_MS = 100
_JITTER_RATIO = 0.3
_RETRYABLE_STATUSES = frozenset({408, 425, 429})
_RETRY_AFTER_RE = re.compile(r"^\s*(\d+)")

# Status used for a timed-out attempt, mirroring HTTP 408.
TIMEOUT_STATUS = 408


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def default_retry_on(status: int | None, error: BaseException | None) -> bool:
    """Decide whether a failed attempt is worth retrying.

    ``status`` is ``None`` when no HTTP response was received at all.
    """
    if status is None:
        return True
    if status >= 500:
        return True
    return status in _RETRYABLE_STATUSES


@dataclass(frozen=True)
class RetryPolicy:
    """Retry tunables, normalised on construction.

    ``retries`` counts retries after the first attempt, so the total number
    of attempts is ``1 + retries``.
    """

    retries: int = 3
    backoff_base_ms: int = 500
    backoff_max_ms: int = 5000
    jitter: bool = True
    retry_on: Callable[[int | None, BaseException | None], bool] = field(
        default=default_retry_on, compare=False
    )

    def __post_init__(self) -> None:
        retries = max(0, self.retries)
        base = max(_MIN_BACKOFF_MS, self.backoff_base_ms)
        cap = max(base, self.backoff_max_ms)
        object.__setattr__(self, "retries", retries)
        object.__setattr__(self, "backoff_base_ms", base)
        object.__setattr__(self, "backoff_max_ms", cap)

    @property
    def max_attempts(self) -> int:
        return 1 + self.retries

    @classmethod
    def from_config(cls, section: Mapping[str, Any] | None) -> RetryPolicy:
        """Build a policy from the ``retry`` section of the merged config."""
        section = section or {}
        return cls(
            retries=int(section.get("retries", 3)),
            backoff_base_ms=int(section.get("backoff_base_ms", 500)),
            backoff_max_ms=int(section.get("backoff_max_ms", 5000)),
            jitter=bool(section.get("jitter", True)),
        )


def compute_backoff(
    attempt: int,
    base_ms: float,
    max_ms: float,
    jitter: bool = True,
    rng: random.Random | None = None,
) -> float:
    """Return the delay in milliseconds before retrying after *attempt* (1-indexed)."""
    exp = min(max_ms, base_ms * 2 ** (attempt - 1))
    if not jitter:
        return exp
    rand = (rng or random).random() * exp * _JITTER_RATIO
    return min(max_ms, exp + rand)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given in whole seconds into milliseconds.

    HTTP-date values are not supported and yield ``None``.
    """
    if not value:
        return None
    match = _RETRY_AFTER_RE.match(value)
    if match is None:
        return None
    return int(match.group(1)) * 1000.0


class FailureInfo(NamedTuple):
    """How a failed SDK call maps onto the retry predicate."""

    status: int | None
    retry_after_ms: float | None = None


def classify_httpx_error(exc: BaseException) -> FailureInfo | None:
    """Map httpx exceptions onto retry statuses; ``None`` means "not a transport failure"."""
    if isinstance(exc, httpx.TimeoutException):
        return FailureInfo(TIMEOUT_STATUS)
    if isinstance(exc, httpx.TransportError):
        return FailureInfo(None)
    if isinstance(exc, httpx.HTTPStatusError):
        return FailureInfo(
            exc.response.status_code,
            parse_retry_after(exc.response.headers.get("retry-after")),
        )
    return None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RetryClient:
    """Runs outbound calls under a :class:`RetryPolicy`.

    Parameters
    ----------
    http_client:
        Shared ``httpx.AsyncClient`` used by :meth:`request`.
    policy:
        Default policy; individual calls may pass their own.
    default_timeout_s:
        Per-attempt timeout when a call does not specify one.
    sleep, clock, rng:
        Injection points for tests (``asyncio.sleep``, ``time.monotonic``,
        a ``random.Random``).
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        policy: RetryPolicy | None = None,
        *,
        default_timeout_s: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self._http = http_client
        self._policy = policy or RetryPolicy()
        self._default_timeout_s = default_timeout_s
        self._sleep = sleep
        self._clock = clock
        self._rng = rng

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # HTTP requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
        idempotency_key: str | None = None,
        timeout_s: float | None = None,
        deadline: float | None = None,
        policy: RetryPolicy | None = None,
    ) -> TriggerResult:
        """Send an HTTP request with retries and return a :class:`TriggerResult`.

        Never raises after exhausting retries; only cancellation escapes.
        """
        response, error, attempt, duration_ms = await self._send_with_retry(
            method,
            url,
            json_body=json_body,
            headers=headers,
            idempotency_key=idempotency_key,
            timeout_s=timeout_s,
            deadline=deadline,
            policy=policy,
        )
        if response is not None:
            text = response.text
            return TriggerResult(
                ok=response.is_success,
                status=response.status_code,
                data=_parse_json(text),
                raw=text,
                attempt=attempt,
                duration_ms=duration_ms,
            )
        return TriggerResult(
            ok=False,
            status=TIMEOUT_STATUS if isinstance(error, httpx.TimeoutException) else 0,
            data=None,
            raw=str(error) if error is not None else "Unknown error",
            attempt=attempt,
            duration_ms=duration_ms,
        )

    async def fetch_bytes(
        self,
        url: str,
        *,
        timeout_s: float | None = None,
        deadline: float | None = None,
    ) -> tuple[int, bytes]:
        """GET *url* with retries and return ``(status, body)``.

        ``status`` is 0 on network failure and 408 on timeout, with an
        empty body.
        """
        response, error, _attempt, _ = await self._send_with_retry(
            "GET", url, timeout_s=timeout_s, deadline=deadline
        )
        if response is None:
            status = TIMEOUT_STATUS if isinstance(error, httpx.TimeoutException) else 0
            return status, b""
        return response.status_code, response.content

    async def _send_with_retry(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
        idempotency_key: str | None = None,
        timeout_s: float | None = None,
        deadline: float | None = None,
        policy: RetryPolicy | None = None,
    ) -> tuple[httpx.Response | None, BaseException | None, int, int]:
        policy = policy or self._policy
        started = self._clock()
        request_headers = dict(headers or {})
        if idempotency_key:
            request_headers["Idempotency-Key"] = idempotency_key

        response: httpx.Response | None = None
        error: BaseException | None = None
        attempt = 0
        for attempt in range(1, policy.max_attempts + 1):
            response, error = None, None
            attempt_timeout = self._attempt_timeout(timeout_s, deadline)
            try:
                response = await self._http.request(
                    method,
                    url,
                    json=json_body,
                    headers=request_headers,
                    timeout=attempt_timeout,
                )
            except httpx.TimeoutException as exc:
                error = exc
            except httpx.TransportError as exc:
                error = exc

            if response is not None and response.is_success:
                break

            if response is not None:
                status: int | None = response.status_code
                retry_after = parse_retry_after(response.headers.get("retry-after"))
            else:
                status = TIMEOUT_STATUS if isinstance(error, httpx.TimeoutException) else None
                retry_after = None

            if attempt >= policy.max_attempts or not policy.retry_on(status, error):
                break
            delay_ms = retry_after if retry_after is not None else self._backoff(policy, attempt)
            if not await self._pause(delay_ms, deadline, url=url, attempt=attempt, status=status):
                break

        duration_ms = int((self._clock() - started) * 1000)
        if response is None or not response.is_success:
            _logger.warning(
                "outbound_request_failed",
                method=method,
                url=url,
                status=response.status_code if response is not None else None,
                error=str(error) if error is not None else None,
                attempts=attempt,
                duration_ms=duration_ms,
            )
        return response, error, attempt, duration_ms

    # ------------------------------------------------------------------
    # Arbitrary awaitables (SDK calls)
    # ------------------------------------------------------------------

    async def execute(
        self,
        fn: Callable[[], Awaitable[_T]],
        *,
        classify: Callable[[BaseException], FailureInfo | None] = classify_httpx_error,
        deadline: float | None = None,
        policy: RetryPolicy | None = None,
        operation: str = "call",
    ) -> _T:
        """Await ``fn()`` under the retry policy.

        ``classify`` maps an exception to a :class:`FailureInfo`; exceptions
        it returns ``None`` for are not retried.  When retries run out the
        last exception is re-raised unchanged so the adapter can wrap it in
        its own error type.
        """
        policy = policy or self._policy
        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await fn()
            except Exception as exc:
                info = classify(exc)
                if info is None or attempt >= policy.max_attempts:
                    raise
                if not policy.retry_on(info.status, exc):
                    raise
                delay_ms = (
                    info.retry_after_ms
                    if info.retry_after_ms is not None
                    else self._backoff(policy, attempt)
                )
                if not await self._pause(
                    delay_ms, deadline, url=operation, attempt=attempt, status=info.status
                ):
                    raise
        # max_attempts >= 1, so the loop always returns or raises.
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _backoff(self, policy: RetryPolicy, attempt: int) -> float:
        return compute_backoff(
            attempt,
            policy.backoff_base_ms,
            policy.backoff_max_ms,
            policy.jitter,
            self._rng,
        )

    def _attempt_timeout(self, timeout_s: float | None, deadline: float | None) -> float:
        timeout = timeout_s if timeout_s is not None else self._default_timeout_s
        if deadline is not None:
            timeout = max(0.0, min(timeout, deadline - self._clock()))
        return timeout

    async def _pause(
        self,
        delay_ms: float,
        deadline: float | None,
        *,
        url: str,
        attempt: int,
        status: int | None,
    ) -> bool:
        """Sleep before the next attempt; return False when the deadline forbids it."""
        if deadline is not None and self._clock() + delay_ms / 1000.0 >= deadline:
            _logger.info(
                "retry_abandoned_deadline",
                target=url,
                attempt=attempt,
                status=status,
                delay_ms=round(delay_ms),
            )
            return False
        _logger.info(
            "retry_scheduled",
            target=url,
            attempt=attempt,
            status=status,
            delay_ms=round(delay_ms),
        )
        await self._sleep(delay_ms / 1000.0)
        return True


def _parse_json(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None
