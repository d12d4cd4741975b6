"""FastAPI API routes for the StoryShelf book pipeline.

Provides REST endpoints for the processing trigger, status polling, media
URLs, characters, tutor Q&A, character chat, an admin book list, and a
health check.  Service dependencies are resolved from ``app.state`` via
FastAPI's ``Depends`` using the ``Annotated`` pattern.

# ─── API ROUTE MAP ────────────────────────────────────────────────────
#
# Endpoint                                    Method  Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/health                              GET     Health + provider status
# /api/v1/books/{id}/process                  POST    Trigger receiver (202)
# /api/v1/books/{id}/reset                    POST    Restart a failed or interrupted book
# /api/v1/books/{id}/status                   GET     Poll processing state
# /api/v1/books/{id}/media                    GET     Signed PDF / cover URLs
# /api/v1/books/{id}/characters               GET     Extracted personas
# /api/v1/books/{id}/qa                       POST    Tutor-mode answer
# /api/v1/books/{id}/characters/{cid}/chat    POST    In-character reply
# /api/v1/admin/books                         GET     Books + processing state
#
# Dependencies are populated at startup by main.py's build_components().
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import secrets
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from src.api.schemas import (
    AnswerResponse,
    AskQuestionRequest,
    BookListResponse,
    BookStatusResponse,
    BookSummary,
    CharacterChatRequest,
    CharacterListResponse,
    CharacterResponse,
    ErrorResponse,
    HealthResponse,
    MediaUrlsResponse,
    ProcessAcceptedResponse,
    ProcessBookRequest,
)
from src.config.settings import Settings
from src.interfaces.book_store import IBookStore
from src.models.pipeline import StatusSnapshot
from src.models.rag import AnswerResult
from src.pipeline.job_dispatcher import JobDispatcher
from src.pipeline.status_tracker import StatusTracker
from src.services.book_chat_service import BookChatService
from src.services.ingestion.document_loader import DocumentLoader
from src.utils.errors import NotFoundError, ValidationError
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

APP_VERSION = "0.1.0"

router = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _get_book_store(request: Request) -> IBookStore:
    return request.app.state.book_store


def _get_dispatcher(request: Request) -> JobDispatcher:
    return request.app.state.job_dispatcher


def _get_status_tracker(request: Request) -> StatusTracker:
    return request.app.state.status_tracker


def _get_document_loader(request: Request) -> DocumentLoader:
    return request.app.state.document_loader


def _get_chat_service(request: Request) -> BookChatService:
    return request.app.state.chat_service


SettingsDep = Annotated[Settings, Depends(_get_settings)]
BookStoreDep = Annotated[IBookStore, Depends(_get_book_store)]
DispatcherDep = Annotated[JobDispatcher, Depends(_get_dispatcher)]
TrackerDep = Annotated[StatusTracker, Depends(_get_status_tracker)]
LoaderDep = Annotated[DocumentLoader, Depends(_get_document_loader)]
ChatServiceDep = Annotated[BookChatService, Depends(_get_chat_service)]


def _require_trigger_token(
    settings: SettingsDep,
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Check the bearer token on the processing trigger, when one is configured."""
    expected = settings.trigger_auth_token
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), expected):
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def _status_response(snapshot: StatusSnapshot) -> BookStatusResponse:
    return BookStatusResponse(
        book_id=snapshot.book_id,
        processing_status=snapshot.processing_status,
        processing_progress=snapshot.processing_progress,
        error_message=snapshot.error_message,
    )


def _answer_response(result: AnswerResult) -> AnswerResponse:
    return AnswerResponse(
        answer=result.answer,
        sources=result.sources,
        prompt_variant=result.prompt_variant,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Return application health, version, and provider availability."""
    state = request.app.state
    providers: dict[str, Any] = {
        "llm": state.llm_provider.is_available(),
        "embedding": state.embedding_provider.is_available(),
        "vector_store": state.search_provider.is_available(),
        "object_storage": state.settings.storage_configured,
        "llm_provider": state.llm_provider.get_provider_name(),
    }
    critical_ok = providers["llm"] and providers["embedding"] and providers["vector_store"]
    if critical_ok and providers["object_storage"]:
        status = "healthy"
    elif critical_ok:
        status = "degraded"
    else:
        status = "unhealthy"
    return HealthResponse(status=status, version=APP_VERSION, providers=providers)


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


@router.post(
    "/books/{book_id}/process",
    response_model=ProcessAcceptedResponse,
    status_code=202,
    dependencies=[Depends(_require_trigger_token)],
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Schedule background processing for a book",
)
async def process_book(
    book_id: str,
    dispatcher: DispatcherDep,
    body: ProcessBookRequest | None = None,
    force: Annotated[bool, Query()] = False,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> ProcessAcceptedResponse:
    """Accept the trigger and return immediately; the job runs in the background."""
    if body is not None and body.book_id and body.book_id != book_id:
        raise ValidationError(message="book_id in body does not match the URL")
    acceptance = await dispatcher.submit(
        book_id,
        idempotency_key=idempotency_key or None,
        force=force or (body is not None and body.force),
    )
    return ProcessAcceptedResponse(
        status=acceptance.status,
        book_id=acceptance.book_id,
        forced=acceptance.forced,
        duplicate=acceptance.duplicate,
        idempotency_key=acceptance.idempotency_key,
        accepted_at=acceptance.accepted_at,
    )


@router.post(
    "/books/{book_id}/reset",
    response_model=BookStatusResponse,
    dependencies=[Depends(_require_trigger_token)],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Restart a failed or interrupted book",
)
async def reset_book(book_id: str, dispatcher: DispatcherDep) -> BookStatusResponse:
    """Clear a failed book's chunks and put it back to ``uploaded``.

    A book left in an active status with no job running here (the process
    died mid-job) is recorded as interrupted, then reset the same way.
    """
    snapshot = await dispatcher.reset(book_id)
    return _status_response(snapshot)


@router.get(
    "/books/{book_id}/status",
    response_model=BookStatusResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get current processing state",
)
async def get_book_status(book_id: str, tracker: TrackerDep) -> BookStatusResponse:
    snapshot = await tracker.get_status(book_id)
    return _status_response(snapshot)


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


@router.get(
    "/books/{book_id}/media",
    response_model=MediaUrlsResponse,
    responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    summary="Signed URLs for the book PDF and cover",
)
async def get_book_media(
    book_id: str,
    store: BookStoreDep,
    loader: LoaderDep,
) -> MediaUrlsResponse:
    """Return short-lived signed URLs; ``cover_url`` is null when there is no cover."""
    if await store.get_book(book_id) is None:
        raise NotFoundError(message=f"Book {book_id} not found")
    pdf_url, cover_url = await loader.get_media_urls(book_id)
    return MediaUrlsResponse(
        book_id=book_id,
        pdf_url=pdf_url,
        cover_url=cover_url,
        expires_in=loader.signed_url_ttl,
    )


@router.get(
    "/books/{book_id}/characters",
    response_model=CharacterListResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Characters extracted from a book",
)
async def list_book_characters(book_id: str, store: BookStoreDep) -> CharacterListResponse:
    if await store.get_book(book_id) is None:
        raise NotFoundError(message=f"Book {book_id} not found")
    characters = await store.list_characters(book_id)
    return CharacterListResponse(
        book_id=book_id,
        characters=[
            CharacterResponse(
                id=c.id,
                name=c.name,
                short_description=c.short_description,
                persona=c.persona,
                example_phrases=list(c.example_phrases),
            )
            for c in characters
        ],
    )


# ---------------------------------------------------------------------------
# Q&A and character chat
# ---------------------------------------------------------------------------


@router.post(
    "/books/{book_id}/qa",
    response_model=AnswerResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Ask the tutor a question about a book",
)
async def ask_book_question(
    book_id: str,
    body: AskQuestionRequest,
    chat_service: ChatServiceDep,
) -> AnswerResponse:
    """Answer a question from the book's own excerpts, with source citations."""
    result = await chat_service.ask(
        book_id, body.question, body.history, k=body.match_count
    )
    return _answer_response(result)


@router.post(
    "/books/{book_id}/characters/{character_id}/chat",
    response_model=AnswerResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Talk to a character from the book",
)
async def chat_with_character(
    book_id: str,
    character_id: str,
    body: CharacterChatRequest,
    chat_service: ChatServiceDep,
) -> AnswerResponse:
    result = await chat_service.chat(
        book_id, character_id, body.message, body.history, k=body.match_count
    )
    return _answer_response(result)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get(
    "/admin/books",
    response_model=BookListResponse,
    dependencies=[Depends(_require_trigger_token)],
    summary="List books with their processing state",
)
async def list_books(store: BookStoreDep, dispatcher: DispatcherDep) -> BookListResponse:
    books = await store.list_books()
    summaries = [
        BookSummary(
            id=b.id,
            title=b.title,
            author=b.author,
            category=b.category.value,
            processing_status=b.processing_status,
            processing_progress=b.processing_progress,
            error_message=b.error_message,
            created_at=b.created_at,
            is_processing=dispatcher.is_running(b.id),
        )
        for b in books
    ]
    _logger.debug("admin_books_listed", count=len(summaries))
    return BookListResponse(books=summaries, total=len(summaries))
