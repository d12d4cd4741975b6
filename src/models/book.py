"""Book, chunk, and character models.

Defines Pydantic v2 models for the rows the ingestion pipeline reads and
writes.  All models use frozen config; updates go through the store and
come back as new instances.

Ownership: every chunk and character row belongs to exactly one book id
and is deleted with it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from src.models.pipeline import ProcessingStatus


class BookCategory(str, Enum):  # noqa: UP042
    """Catalogue category.  Drives persona extraction and child-safe prompts."""

    FICTION = "fiction"
    NONFICTION = "nonfiction"
    CHILDREN = "children"


# ---------------------------------------------------------------------------
# Book
# ---------------------------------------------------------------------------
class Book(BaseModel):
    """A catalogue entry created at upload time with status ``uploaded``."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    author: str | None = None
    description: str | None = None
    category: BookCategory
    # Free text such as "8"; only meaningful for children's books.
    age_group: str | None = None
    processing_status: ProcessingStatus = ProcessingStatus.UPLOADED
    processing_progress: str | None = None
    error_message: str | None = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )

    @property
    def is_children(self) -> bool:
        return self.category is BookCategory.CHILDREN


# ---------------------------------------------------------------------------
# Ingestion intermediates
# ---------------------------------------------------------------------------
class PageText(BaseModel):
    """Plain text of one document page, 1-based page numbering."""

    model_config = ConfigDict(frozen=True)

    page_number: int = Field(ge=1)
    text: str
    chapter_number: int | None = None


class TextChunk(BaseModel):
    """A token-bounded slice of a book produced by the chunker (not yet stored)."""

    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(ge=0)
    content: str
    token_count: int = Field(ge=1)
    start_page: int = Field(ge=1)
    end_page: int = Field(ge=1)
    chapter_number: int | None = None


class ChunkRef(BaseModel):
    """``(id, chunk_index)`` pair returned by a bulk chunk insert."""

    model_config = ConfigDict(frozen=True)

    id: str
    chunk_index: int


class StoredChunk(TextChunk):
    """A chunk row as persisted, with its embedding once the stage completes."""

    id: str
    book_id: str
    embedding: list[float] | None = None


# ---------------------------------------------------------------------------
# Personas / characters
# ---------------------------------------------------------------------------
class Persona(BaseModel):
    """A character profile derived from early chunks, before persistence."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    short_description: str = ""
    persona: str = ""
    example_phrases: list[str] = Field(default_factory=list)


class Character(Persona):
    """A persisted persona row.  Upserted by ``(book_id, name)``."""

    id: str
    book_id: str
