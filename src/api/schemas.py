"""Pydantic request/response schemas for the StoryShelf API.

Defines the public contract for the REST endpoints: processing trigger,
reset, status polling, media URLs, characters, Q&A, character chat, the
admin book list, and health.

# ─── CONVENTIONS ──────────────────────────────────────────────────────
#
# Request schemas end with "Request", response schemas with "Response".
# Domain models (Book, Character, SourceCitation, ...) are not returned
# directly; each endpoint maps them onto a schema here so internal
# fields can change without breaking clients.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from src.models.chat import ConversationTurn
from src.models.pipeline import ProcessingStatus
from src.models.rag import SourceCitation


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


class ProcessBookRequest(BaseModel):
    """Optional body of the processing trigger.

    The remote trigger client posts ``{"book_id": ...}``; when present it
    must match the path parameter.
    """

    book_id: str | None = None
    force: bool = False


class ProcessAcceptedResponse(BaseModel):
    """202 acknowledgement for a scheduled (or deduplicated) job."""

    status: str = "accepted"
    book_id: str
    forced: bool = False
    duplicate: bool = False
    idempotency_key: str | None = None
    accepted_at: datetime


class BookStatusResponse(BaseModel):
    """The persisted processing state of one book."""

    book_id: str
    processing_status: ProcessingStatus
    processing_progress: str | None = None
    error_message: str | None = None


class MediaUrlsResponse(BaseModel):
    """Short-lived signed URLs for the PDF and its cover image."""

    book_id: str
    pdf_url: str
    cover_url: str | None = None
    expires_in: int


# ---------------------------------------------------------------------------
# Characters and chat
# ---------------------------------------------------------------------------


class CharacterResponse(BaseModel):
    """A persona extracted from a fiction or children's book."""

    id: str
    name: str
    short_description: str
    persona: str
    example_phrases: list[str] = Field(default_factory=list)


class CharacterListResponse(BaseModel):
    book_id: str
    characters: list[CharacterResponse] = Field(default_factory=list)


class AskQuestionRequest(BaseModel):
    """Tutor-mode question about a book."""

    question: str = Field(..., min_length=1, max_length=2000)
    history: list[ConversationTurn] = Field(default_factory=list)
    match_count: int | None = Field(default=None, ge=1, le=20)


class CharacterChatRequest(BaseModel):
    """A message to a character, with the prior turns of the conversation."""

    message: str = Field(..., min_length=1, max_length=2000)
    history: list[ConversationTurn] = Field(default_factory=list)
    match_count: int | None = Field(default=None, ge=1, le=20)


class AnswerResponse(BaseModel):
    """Generated answer plus the excerpts it was grounded in."""

    answer: str
    sources: list[SourceCitation] = Field(default_factory=list)
    prompt_variant: str | None = None


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class BookSummary(BaseModel):
    id: str
    title: str
    author: str | None = None
    category: str
    processing_status: ProcessingStatus
    processing_progress: str | None = None
    error_message: str | None = None
    created_at: datetime
    is_processing: bool = False


class BookListResponse(BaseModel):
    """All catalogue books with their processing state, newest first."""

    books: list[BookSummary] = Field(default_factory=list)
    total: int = 0
