"""ChromaDB chunk search provider adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IChunkSearchProvider`.
Uses cosine distance; every vector carries its ``book_id`` in metadata so
searches can be scoped to a single book.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Any

# Disable ChromaDB telemetry before importing chromadb.  The PostHog
# client bundled with some ChromaDB versions clashes with the installed
# posthog package and logs "capture() takes 1 positional argument" errors.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog

from src.models.book import StoredChunk
from src.models.rag import ChunkMatchRow, ChunkMetadata
from src.interfaces.vector_store_provider import IChunkSearchProvider
from src.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Keeps ChromaDB from loading its default ONNX model.

    storyshelf always passes pre-computed embeddings, so this is never called.
    ChromaDB warns about subclasses without their own ``__init__``.  There
    is no ``get_config``: a stored config would require a registered
    function to reopen the collection.
    """

    def __init__(self) -> None:
        pass

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "storyshelf uses pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    def name(self) -> str:
        return "noop_precomputed"


class ChromaChunkSearchProvider(IChunkSearchProvider):
    """Chunk search backed by ChromaDB with local persistence.

    Pass ``client`` to use an in-memory ``chromadb.EphemeralClient`` in tests.
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "book_chunks",
        client: Any | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        if client is None:
            client = chromadb.PersistentClient(
                path=persist_directory,
                settings=chromadb.config.Settings(anonymized_telemetry=False),
            )
        self._client = client
        try:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            # Collections persisted with a different embedding function
            # refuse the no-op one; vectors are supplied explicitly anyway.
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
            )

    # ------------------------------------------------------------------
    # IChunkSearchProvider implementation
    # ------------------------------------------------------------------

    async def index_chunks(
        self,
        book_id: str,
        chunks: Sequence[StoredChunk],
        embeddings: Sequence[list[float]],
        batch_size: int = 500,
    ) -> int:
        """Upsert chunk vectors in batches of *batch_size* to bound memory."""
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"chunks and embeddings length mismatch: {len(chunks)} != {len(embeddings)}"
            )
        if not chunks:
            return 0

        try:
            total_stored = 0
            for start in range(0, len(chunks), batch_size):
                batch_chunks = chunks[start : start + batch_size]
                self._collection.upsert(
                    ids=[c.id for c in batch_chunks],
                    embeddings=[list(v) for v in embeddings[start : start + batch_size]],
                    documents=[c.content for c in batch_chunks],
                    metadatas=[self._chunk_to_metadata(book_id, c) for c in batch_chunks],
                )
                total_stored += len(batch_chunks)
        except Exception as exc:
            raise StorageError(
                message=f"ChromaDB index_chunks failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info("chromadb_index_chunks", book_id=book_id, count=total_stored)
        return total_stored

    async def match_chunks(
        self,
        query_embedding: list[float],
        match_count: int,
        filter_book_id: str,
    ) -> list[ChunkMatchRow]:
        """Return up to *match_count* of the book's chunks, most similar first."""
        if match_count <= 0:
            return []
        try:
            results = self._collection.query(
                query_embeddings=[list(query_embedding)],
                n_results=match_count,
                where={"book_id": filter_book_id},
            )
        except Exception as exc:
            raise StorageError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if not results.get("ids") or not results["ids"][0]:
            return []

        ids = results["ids"][0]
        documents = results["documents"][0] if results.get("documents") else [""] * len(ids)
        metadatas = results["metadatas"][0] if results.get("metadatas") else [{}] * len(ids)
        distances = results["distances"][0] if results.get("distances") else [0.0] * len(ids)

        rows: list[ChunkMatchRow] = []
        for chunk_id, doc_text, meta, distance in zip(
            ids, documents, metadatas, distances, strict=True
        ):
            meta = meta or {}
            rows.append(
                ChunkMatchRow(
                    id=chunk_id,
                    content=doc_text or "",
                    similarity=max(0.0, min(1.0, 1.0 - distance)),
                    metadata=ChunkMetadata(
                        chapter_number=meta.get("chapter_number"),
                        page_number=meta.get("page_number"),
                        chapter_heading=meta.get("chapter_heading"),
                    ),
                )
            )
        rows.sort(key=lambda r: r.similarity, reverse=True)

        logger.info(
            "chromadb_query",
            book_id=filter_book_id,
            results_count=len(rows),
            top_score=rows[0].similarity if rows else 0.0,
        )
        return rows

    async def delete_book(self, book_id: str) -> int:
        """Delete all vectors belonging to *book_id*."""
        try:
            existing = self._collection.get(where={"book_id": book_id})
            count = len(existing["ids"]) if existing["ids"] else 0
            if count > 0:
                self._collection.delete(where={"book_id": book_id})
        except Exception as exc:
            raise StorageError(
                message=f"ChromaDB delete_book failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info("chromadb_delete_book", book_id=book_id, deleted_count=count)
        return count

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        try:
            self._collection.count()
            return True
        except Exception:  # noqa: BLE001
            return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _chunk_to_metadata(book_id: str, chunk: StoredChunk) -> dict[str, Any]:
        """Flatten positional fields into ChromaDB metadata (no None values allowed)."""
        meta: dict[str, Any] = {
            "book_id": book_id,
            "chunk_index": chunk.chunk_index,
            "page_number": chunk.start_page,
            "end_page": chunk.end_page,
        }
        if chunk.chapter_number is not None:
            meta["chapter_number"] = chunk.chapter_number
        return meta
