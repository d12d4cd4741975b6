"""Public interface definitions for all external service providers.

Every external service storyshelf talks to is accessed exclusively through
the abstract base classes in this package.  Concrete adapters implement
these interfaces and are injected at startup by ``src/main.py``, so unit
tests can pass fakes and backends can be swapped in one place.

CONCRETE PROVIDER MAP:
    Interface                  →  Concrete implementations (in src/providers/)
    ─────────────────────────────────────────────────────────────────────
    ILLMProvider               →  OpenAILLMProvider
    IEmbeddingProvider         →  OpenAIEmbeddingProvider
    IChunkSearchProvider       →  ChromaChunkSearchProvider
    IBookStore                 →  SQLiteBookStore
    IObjectStorageProvider     →  SupabaseStorageProvider
    ICacheProvider             →  MemoryCacheProvider
"""

from src.interfaces.book_store import IBookStore
from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.llm_provider import ChatMessage, ILLMProvider
from src.interfaces.object_storage_provider import IObjectStorageProvider
from src.interfaces.vector_store_provider import IChunkSearchProvider

__all__ = [
    "ChatMessage",
    "IBookStore",
    "ICacheProvider",
    "IChunkSearchProvider",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IObjectStorageProvider",
]
