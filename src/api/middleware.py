"""HTTP middleware for the StoryShelf API.

# ─── STACK ORDER ──────────────────────────────────────────────────────
#
# create_app() adds, in this order:
#     ErrorHandlingMiddleware    innermost, next to the routes
#     RequestLoggingMiddleware
#     CORSMiddleware             outermost
#
# A StoryShelfError raised by a route becomes a JSON ErrorResponse inside
# ErrorHandling, so the access log line written by RequestLogging carries
# the status the client actually received.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import re
import time
import uuid

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.api.schemas import ErrorResponse
from src.utils.errors import StoryShelfError
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Caller-supplied ids are echoed into logs and headers, so keep them tame.
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Allow the reader app's origins; every origin when none are given.

    Credentials are only allowed alongside an explicit origin list, since
    browsers reject a wildcard origin on credentialed requests.
    """
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "Idempotency-Key", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )


def _request_id(request: Request) -> str:
    supplied = request.headers.get(REQUEST_ID_HEADER, "")
    if _SAFE_REQUEST_ID.match(supplied):
        return supplied
    return uuid.uuid4().hex


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Write one access log line per request, tagged with a request id.

    The id is taken from ``X-Request-ID`` when the caller sends a sane one,
    otherwise generated, then bound into the structlog context for the rest
    of the request and returned in the same header.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = _request_id(request)
        start = time.perf_counter()
        status = 500

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            try:
                response = await call_next(request)
                status = response.status_code
                response.headers[REQUEST_ID_HEADER] = request_id
                return response
            finally:
                _logger.info(
                    "http_request",
                    method=request.method,
                    path=request.url.path,
                    status=status,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )


def error_response(exc: StoryShelfError) -> JSONResponse:
    """Render *exc* as an :class:`ErrorResponse` with its declared status."""
    body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn ``StoryShelfError`` into a JSON body with the class's status code.

    Clients see the error class name and message.  The provider name stays
    in the server log.  Other exceptions fall through to FastAPI's 500.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except StoryShelfError as exc:
            log = _logger.error if exc.status_code >= 500 else _logger.warning
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                status=exc.status_code,
                path=request.url.path,
            )
            return error_response(exc)
