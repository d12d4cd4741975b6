"""Token-bounded, overlapping, page-tagged chunking of extracted book text.

Splits the page list produced by the text extractor into
:class:`~src.models.book.TextChunk` objects of at most ``max_tokens``
estimated tokens (default 800), each tagged with the page range and chapter
it came from.

The algorithm keeps one running buffer:

1. **Append** -- each page's text is appended to the buffer, newline-joined.
   When the buffer was empty, the page becomes the buffer's start page and
   its chapter becomes the buffer's chapter.

2. **Flush** -- while the buffer's estimate reaches ``max_tokens``, a window
   of at most ``max_tokens`` tokens (``max_tokens * 4`` characters) is
   emitted, tagged ``[start_page, current page, chapter]``.

3. **Overlap** -- the next buffer is seeded with the last
   ``overlap_tokens * 4`` characters of the emitted window, followed by
   whatever was not emitted, so adjacent chunks share context.  The new
   start page is the page the window ended on.

4. **Tail** -- whatever remains after the last page becomes the final chunk.

Token counts are a length-based estimate (``ceil(chars / 4)``, minimum 1),
not a real tokenizer.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import structlog

from src.models.book import PageText, TextChunk
from src.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

MAX_TOKENS_PER_CHUNK = 800
CHUNK_TOKEN_OVERLAP = 50
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Approximate token count: ``max(1, ceil(len(text) / 4))``."""
    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))


class PageChunker:
    """Splits page texts into overlapping, token-bounded chunks.

    Parameters
    ----------
    max_tokens:
        Upper bound on estimated tokens per chunk (default 800).  Every
        chunk except possibly the last stays at or below it.
    overlap_tokens:
        Estimated tokens carried from the end of one chunk into the start
        of the next (default 50, about 200 characters).
    """

    def __init__(
        self,
        max_tokens: int = MAX_TOKENS_PER_CHUNK,
        overlap_tokens: int = CHUNK_TOKEN_OVERLAP,
    ) -> None:
        if max_tokens <= 0:
            raise ValidationError(message=f"max_tokens must be positive, got {max_tokens}")
        if overlap_tokens < 0:
            raise ValidationError(message=f"overlap_tokens must be >= 0, got {overlap_tokens}")
        if overlap_tokens >= max_tokens:
            raise ValidationError(
                message=(
                    f"overlap_tokens ({overlap_tokens}) must be smaller than "
                    f"max_tokens ({max_tokens})"
                )
            )
        self._max_tokens = max_tokens
        self._overlap_tokens = overlap_tokens
        self._window_chars = max_tokens * CHARS_PER_TOKEN
        self._tail_chars = overlap_tokens * CHARS_PER_TOKEN

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, pages: Sequence[PageText]) -> list[TextChunk]:
        """Split *pages* (in reading order) into chunks with contiguous indices from 0."""
        chunks: list[TextChunk] = []
        buffer = ""
        start_page = pages[0].page_number if pages else 1
        end_page = start_page
        chapter: int | None = pages[0].chapter_number if pages else None

        for page in pages:
            if not buffer:
                start_page = page.page_number
                if page.chapter_number is not None:
                    chapter = page.chapter_number
            buffer = f"{buffer}\n{page.text}" if buffer else page.text
            end_page = page.page_number

            while estimate_tokens(buffer) >= self._max_tokens:
                window = buffer[: self._window_chars]
                self._emit(chunks, window, start_page, end_page, chapter)
                tail = window[len(window) - self._tail_chars :] if self._tail_chars else ""
                buffer = tail + buffer[self._window_chars :]
                start_page = end_page
                # The seeded tail comes from the page the window ended on.
                if page.chapter_number is not None:
                    chapter = page.chapter_number

        if buffer.strip():
            self._emit(chunks, buffer, start_page, end_page, chapter)

        logger.debug(
            "chunking_complete",
            pages=len(pages),
            num_chunks=len(chunks),
            max_tokens=self._max_tokens,
            overlap_tokens=self._overlap_tokens,
        )
        return chunks

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _emit(
        chunks: list[TextChunk],
        text: str,
        start_page: int,
        end_page: int,
        chapter: int | None,
    ) -> None:
        content = text.strip()
        if not content:
            return
        chunks.append(
            TextChunk(
                chunk_index=len(chunks),
                content=content,
                token_count=estimate_tokens(content),
                start_page=start_page,
                end_page=end_page,
                chapter_number=chapter,
            )
        )
