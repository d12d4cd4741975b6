"""Chunk search provider implementations.

ChromaDB is the sole implementation.  It stores chunk vectors on disk
(CHROMADB_PERSIST_DIR) and answers cosine-similarity searches filtered to
one book id.
"""

from src.providers.vector_store.chromadb_provider import ChromaChunkSearchProvider

__all__ = ["ChromaChunkSearchProvider"]
