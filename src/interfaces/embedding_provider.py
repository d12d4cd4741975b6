"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.  The
ingestion pipeline embeds chunk contents; the query path embeds rewritten
search strings.  Both must use the same provider so vectors are comparable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: OpenAIEmbeddingProvider (src/providers/embedding/)
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and retrieval."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            Text strings to embed, at most :meth:`max_batch_size` of them.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list has length equal to :meth:`get_dimension`.

        Raises
        ------
        src.utils.errors.ExternalServiceError
            ``EmbeddingError`` if the API call fails.
        """

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for one string (e.g. a search query)."""
        result = await self.embed([text])
        return result[0]

    @abstractmethod
    def max_batch_size(self) -> int:
        """Return the provider's limit on inputs per request."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Constant for the lifetime of the provider and must match the
        dimension already stored in the vector index.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured."""
