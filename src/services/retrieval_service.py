"""Retrieval engine: nearest-neighbor chunk lookup scoped to one book.

Search rows may carry positional fields at the top level, inside a nested
``metadata`` object, or both, and numbers may arrive as strings.  Each
field has one resolver with a fixed fallback order:

    top-level value (if usable)  ->  metadata.<field> (if usable)  ->  None

Zero matches is a valid result; callers decide what to say about it.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from src.interfaces.vector_store_provider import IChunkSearchProvider
from src.models.rag import ChunkMatchRow, RawPosition, RetrievalMatch, SourceCitation
from src.utils.errors import ValidationError
from src.utils.logging import get_logger

MIN_MATCH_COUNT = 1
MAX_MATCH_COUNT = 20


# ---------------------------------------------------------------------------
# Field resolvers
# ---------------------------------------------------------------------------


def _as_int(value: RawPosition) -> int | None:
    """Return *value* as an int when it is integral and numeric, else ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return None


def _as_heading(value: RawPosition) -> str | None:
    if isinstance(value, str):
        text = value.strip()
        return text or None
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return str(value)
    return None


def resolve_chapter_number(row: ChunkMatchRow) -> int | None:
    resolved = _as_int(row.chapter_number)
    if resolved is None and row.metadata is not None:
        resolved = _as_int(row.metadata.chapter_number)
    return resolved


def resolve_page_number(row: ChunkMatchRow) -> int | None:
    resolved = _as_int(row.page_number)
    if resolved is None and row.metadata is not None:
        resolved = _as_int(row.metadata.page_number)
    return resolved


def resolve_chapter_heading(row: ChunkMatchRow) -> str | None:
    resolved = _as_heading(row.chapter_heading)
    if resolved is None and row.metadata is not None:
        resolved = _as_heading(row.metadata.chapter_heading)
    return resolved


def to_match(row: ChunkMatchRow) -> RetrievalMatch:
    return RetrievalMatch(
        chunk_id=row.id,
        content=row.content,
        similarity=row.similarity,
        chapter_number=resolve_chapter_number(row),
        page_number=resolve_page_number(row),
        chapter_heading=resolve_chapter_heading(row),
    )


def format_sources(matches: Sequence[RetrievalMatch]) -> list[SourceCitation]:
    """Project matches onto the citation shape returned to clients."""
    return [
        SourceCitation(
            chunk_id=m.chunk_id,
            chapter_number=m.chapter_number,
            page_number=m.page_number,
            chapter_heading=m.chapter_heading,
            similarity=m.similarity,
        )
        for m in matches
    ]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class RetrievalEngine:
    """Runs book-scoped similarity searches and resolves match positions."""

    def __init__(self, search_provider: IChunkSearchProvider) -> None:
        self._search = search_provider
        self._logger = get_logger(__name__)

    async def retrieve(
        self,
        query_embedding: Sequence[float],
        book_id: str,
        k: int = 5,
    ) -> list[RetrievalMatch]:
        """Return up to *k* matches from *book_id*, most similar first.

        Raises
        ------
        ValidationError
            If *k* is outside ``1..20``, the embedding is empty, or the book
            id is blank.
        """
        if not MIN_MATCH_COUNT <= k <= MAX_MATCH_COUNT:
            raise ValidationError(
                message=f"k must be between {MIN_MATCH_COUNT} and {MAX_MATCH_COUNT}, got {k}"
            )
        if not query_embedding:
            raise ValidationError(message="query embedding must be non-empty")
        if not book_id or not book_id.strip():
            raise ValidationError(message="book_id must be non-empty")

        rows = await self._search.match_chunks(list(query_embedding), k, book_id)
        ranked = sorted(rows, key=lambda r: r.similarity, reverse=True)[:k]
        matches = [to_match(row) for row in ranked]

        self._logger.info(
            "chunks_retrieved",
            book_id=book_id,
            requested=k,
            returned=len(matches),
            top_similarity=round(matches[0].similarity, 4) if matches else None,
        )
        return matches
