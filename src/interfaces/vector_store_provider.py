"""Abstract base class for the nearest-neighbor chunk search service.

The vector index is an external service: storyshelf writes pre-computed
chunk vectors into it and asks it for the closest chunks of one book.
Implementations may wrap ChromaDB, pgvector behind an RPC, Qdrant, etc.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from src.models.book import StoredChunk
from src.models.rag import ChunkMatchRow


# Concrete implementation: ChromaChunkSearchProvider (src/providers/vector_store/)
class IChunkSearchProvider(ABC):
    """Contract for storing and searching chunk vectors, scoped by book id."""

    @abstractmethod
    async def index_chunks(
        self,
        book_id: str,
        chunks: Sequence[StoredChunk],
        embeddings: Sequence[list[float]],
    ) -> int:
        """Upsert chunk vectors with their positional metadata.

        Returns
        -------
        int
            Number of vectors stored.

        Raises
        ------
        ValueError
            If *chunks* and *embeddings* differ in length.
        src.utils.errors.StorageError
            If the index write fails.
        """

    @abstractmethod
    async def match_chunks(
        self,
        query_embedding: list[float],
        match_count: int,
        filter_book_id: str,
    ) -> list[ChunkMatchRow]:
        """Return up to *match_count* rows of one book, most similar first.

        Zero rows is a valid result, not an error.

        Raises
        ------
        src.utils.errors.StorageError
            If the search call fails.
        """

    @abstractmethod
    async def delete_book(self, book_id: str) -> int:
        """Remove every vector belonging to *book_id*; return how many were removed."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this index (e.g. ``"chromadb"``)."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the index is reachable."""
