"""Abstract base class for the relational book store.

Holds the ``books``, ``book_chunks`` and ``characters`` rows.  The
ingestion pipeline consumes it through this narrow interface; the only
columns it writes on a book are ``processing_status``,
``processing_progress`` and ``error_message``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from src.models.book import Book, Character, ChunkRef, Persona, StoredChunk, TextChunk
from src.models.pipeline import ProcessingStatus


# Concrete implementation: SQLiteBookStore (src/providers/storage/)
class IBookStore(ABC):
    """Contract for book, chunk, and character persistence."""

    # -- Books ---------------------------------------------------------

    @abstractmethod
    async def create_book(self, book: Book) -> Book:
        """Insert a new book row.

        Raises
        ------
        src.utils.errors.ConflictError
            If a book with the same id already exists.
        """

    @abstractmethod
    async def get_book(self, book_id: str) -> Book | None:
        """Return the book, or ``None`` if it does not exist."""

    @abstractmethod
    async def list_books(self) -> list[Book]:
        """Return every book, newest first."""

    @abstractmethod
    async def update_book_status(
        self,
        book_id: str,
        status: ProcessingStatus,
        progress: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Overwrite the three status columns of *book_id* (last write wins).

        Raises
        ------
        src.utils.errors.NotFoundError
            If the book does not exist.
        """

    # -- Chunks --------------------------------------------------------

    @abstractmethod
    async def insert_chunks(self, book_id: str, chunks: Sequence[TextChunk]) -> list[ChunkRef]:
        """Bulk-insert chunks for a book in one transaction.

        Returns
        -------
        list[ChunkRef]
            ``(id, chunk_index)`` for every inserted row.

        Raises
        ------
        src.utils.errors.ConflictError
            If a ``(book_id, chunk_index)`` pair already exists.
        """

    @abstractmethod
    async def update_chunk_embeddings(self, embeddings: dict[str, list[float]]) -> int:
        """Write vectors onto chunk rows keyed by row id; return rows updated."""

    @abstractmethod
    async def list_chunks(self, book_id: str) -> list[StoredChunk]:
        """Return a book's chunks ordered by ``chunk_index``."""

    @abstractmethod
    async def delete_chunks(self, book_id: str) -> int:
        """Delete every chunk of *book_id*; return how many were removed."""

    # -- Characters ----------------------------------------------------

    @abstractmethod
    async def upsert_character(self, book_id: str, persona: Persona) -> Character:
        """Insert or update a character keyed by ``(book_id, name)``."""

    @abstractmethod
    async def get_character(self, book_id: str, character_id: str) -> Character | None:
        """Return the character if it belongs to *book_id*, else ``None``."""

    @abstractmethod
    async def list_characters(self, book_id: str) -> list[Character]:
        """Return a book's characters ordered by name."""
