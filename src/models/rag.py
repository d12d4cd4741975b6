"""Retrieval and answer models for the book RAG layer.

RAG overview:

    1. INGESTION: each book is split into ~800-token chunks tagged with
       page and chapter positions (src/services/ingestion/).
    2. EMBEDDING: every chunk gets a vector (src/services/ingestion/embedding_service.py).
    3. STORAGE: vectors go to the nearest-neighbor index (src/providers/vector_store/).
    4. RETRIEVAL: a rewritten user query is embedded and matched against the
       book's chunks only (src/services/retrieval_service.py).
    5. GENERATION: matched excerpts become the context block of a single
       LLM call (src/services/answer_composer.py).

Search rows arrive in more than one shape: positional fields may sit at the
top level or inside a nested ``metadata`` object, and numbers may come back
as numeric strings.  ``ChunkMatchRow`` keeps those raw optional values
typed; resolution into clean values happens in the retrieval service.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# Raw positional value as a search backend may return it.
RawPosition = int | float | str | None


class ChunkMetadata(BaseModel):
    """Nested metadata object attached to a search row."""

    model_config = ConfigDict(frozen=True, extra="allow")

    chapter_number: RawPosition = None
    page_number: RawPosition = None
    chapter_heading: RawPosition = None


class ChunkMatchRow(BaseModel):
    """One raw row returned by the nearest-neighbor search call."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    similarity: float
    chapter_number: RawPosition = None
    page_number: RawPosition = None
    chapter_heading: RawPosition = None
    metadata: ChunkMetadata | None = None


class RetrievalMatch(BaseModel):
    """A ranked match with its positional metadata resolved (transient)."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    content: str
    similarity: float
    chapter_number: int | None = None
    page_number: int | None = None
    chapter_heading: str | None = None


class SourceCitation(BaseModel):
    """Source reference returned to the client alongside an answer."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    chapter_number: int | None = None
    page_number: int | None = None
    chapter_heading: str | None = None
    similarity: float


class AnswerResult(BaseModel):
    """Final answer text plus the excerpts it was grounded in."""

    model_config = ConfigDict(frozen=True)

    answer: str
    sources: list[SourceCitation] = Field(default_factory=list)
    # Which of the four system-prompt variants produced the answer; None
    # when no LLM call was made (zero matches).
    prompt_variant: str | None = None
