"""Embedding provider implementations.

OpenAIEmbeddingProvider is the only adapter: ``text-embedding-3-small``
(1536 dims) by default, or any OpenAI-compatible embeddings endpoint.
Ingestion and query paths must share one provider so vectors compare.
"""

from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
