"""Book processing job: one sequential ingestion run for one book id.

# ─── STAGES ───────────────────────────────────────────────────────────
#
#   extracting             load book row, download PDF, extract page text
#   chunking               chunk pages, bulk-insert rows, build index->id map
#   embedding              batch-embed, write vectors back, index for search
#   embeddings_complete
#   characters_extracting  (fiction / children only) personas from first chunks
#   characters_done
#   completed
#
# Any exception moves the book to ``error`` with its message and ends the
# job; nothing is retried here.  Cancellation is recorded the same way and
# then re-raised so the owning task still finishes as cancelled.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio

import structlog

from src.interfaces.book_store import IBookStore
from src.interfaces.vector_store_provider import IChunkSearchProvider
from src.models.book import Book, ChunkRef, StoredChunk, TextChunk
from src.models.pipeline import ProcessingStatus, StatusSnapshot
from src.pipeline.status_tracker import StatusTracker, requires_personas
from src.services.ingestion.chunker import PageChunker
from src.services.ingestion.document_loader import DocumentLoader
from src.services.ingestion.embedding_service import EmbeddingService
from src.services.ingestion.persona_extractor import PersonaExtractor
from src.services.ingestion.text_extractor import TextExtractor
from src.utils.errors import NotFoundError, StoryShelfError
from src.utils.logging import bind_book_context, get_logger

DEFAULT_PERSONA_SAMPLE_CHUNKS = 5


class BookProcessor:
    """Runs the ingestion stages for a book and records every status change."""

    def __init__(
        self,
        book_store: IBookStore,
        status_tracker: StatusTracker,
        document_loader: DocumentLoader,
        text_extractor: TextExtractor,
        chunker: PageChunker,
        embedding_service: EmbeddingService,
        search_provider: IChunkSearchProvider,
        persona_extractor: PersonaExtractor,
        persona_sample_chunks: int = DEFAULT_PERSONA_SAMPLE_CHUNKS,
    ) -> None:
        self._store = book_store
        self._status = status_tracker
        self._loader = document_loader
        self._extractor = text_extractor
        self._chunker = chunker
        self._embeddings = embedding_service
        self._search = search_provider
        self._personas = persona_extractor
        self._persona_sample_chunks = persona_sample_chunks
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def process(self, book_id: str) -> StatusSnapshot | None:
        """Run the job to completion or ``error``; never raises except on cancel.

        Returns the last recorded snapshot, or ``None`` if not even the
        failure could be recorded (e.g. the book row does not exist).
        """
        with bind_book_context(book_id):
            self._logger.info("book_processing_started")
            try:
                return await self._run(book_id)
            except asyncio.CancelledError:
                await self._record_failure(book_id, "Processing cancelled")
                raise
            except Exception as exc:
                self._logger.error(
                    "book_processing_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return await self._record_failure(book_id, _failure_message(exc))

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run(self, book_id: str) -> StatusSnapshot:
        await self._status.transition(
            book_id, ProcessingStatus.EXTRACTING, "Started processing book"
        )
        book = await self._store.get_book(book_id)
        if book is None:
            raise NotFoundError(message=f"Book {book_id} not found")

        document = await self._loader.load_document(book_id)
        pages = await asyncio.to_thread(self._extractor.extract, document)

        await self._status.transition(
            book_id, ProcessingStatus.CHUNKING, f"Extracted {len(pages)} pages, chunking now"
        )
        chunks = self._chunker.chunk(pages)
        refs = await self._store.insert_chunks(book_id, chunks)

        await self._status.transition(
            book_id,
            ProcessingStatus.EMBEDDING,
            f"Stored {len(chunks)} chunks, generating embeddings",
        )
        await self._embed_and_index(book_id, chunks, refs)

        await self._status.transition(
            book_id,
            ProcessingStatus.EMBEDDINGS_COMPLETE,
            f"Embeddings completed for {len(chunks)} chunks",
        )

        if requires_personas(book.category):
            await self._extract_characters(book, chunks)

        snapshot = await self._status.transition(
            book_id, ProcessingStatus.COMPLETED, "Book processing completed"
        )
        self._logger.info("book_processing_completed", chunks=len(chunks))
        return snapshot

    async def _embed_and_index(
        self,
        book_id: str,
        chunks: list[TextChunk],
        refs: list[ChunkRef],
    ) -> None:
        by_row = await self._embeddings.embed_chunks(
            chunks, refs, self._store.update_chunk_embeddings
        )
        id_map = {ref.chunk_index: ref.id for ref in refs}
        stored: list[StoredChunk] = []
        vectors: list[list[float]] = []
        for chunk in chunks:
            row_id = id_map[chunk.chunk_index]
            stored.append(
                StoredChunk(**chunk.model_dump(), id=row_id, book_id=book_id)
            )
            vectors.append(by_row[row_id])
        await self._search.index_chunks(book_id, stored, vectors)

    async def _extract_characters(self, book: Book, chunks: list[TextChunk]) -> None:
        await self._status.transition(
            book.id, ProcessingStatus.CHARACTERS_EXTRACTING, "Extracting characters"
        )
        sample = [c.content for c in chunks[: self._persona_sample_chunks]]
        personas = await self._personas.extract(book, sample)
        for persona in personas:
            await self._store.upsert_character(book.id, persona)
        await self._status.transition(
            book.id,
            ProcessingStatus.CHARACTERS_DONE,
            f"Extracted {len(personas)} characters",
        )

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    async def _record_failure(self, book_id: str, message: str) -> StatusSnapshot | None:
        try:
            return await self._status.fail(book_id, message)
        except StoryShelfError as exc:
            self._logger.error("book_failure_not_recorded", error=str(exc), original=message)
            return None


def _failure_message(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or type(exc).__name__
