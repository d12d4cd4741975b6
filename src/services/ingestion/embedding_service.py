"""Embedding stage: turn chunk contents into vectors and write them back.

Contents are split into batches (at most ``batch_size`` and never more
than the provider's per-request limit), and the batches run through
:func:`~src.utils.concurrency.run_bounded` so no more than
``concurrency`` requests are in flight.  Vectors are placed by original
chunk index and written back only once every batch has succeeded.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence

import structlog

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.models.book import ChunkRef, TextChunk
from src.utils.concurrency import run_bounded
from src.utils.errors import EmbeddingError, StoryShelfError, ValidationError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_CONCURRENCY = 5
DEFAULT_BATCH_SIZE = 64

# Writes ``{row_id: vector}`` and returns how many rows were updated.
EmbeddingWriter = Callable[[dict[str, list[float]]], Awaitable[int]]


class EmbeddingService:
    """Bounded-concurrency batch embedding of chunk contents."""

    def __init__(
        self,
        provider: IEmbeddingProvider,
        concurrency: int = DEFAULT_CONCURRENCY,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if concurrency < 1:
            raise ValidationError(message=f"concurrency must be >= 1, got {concurrency}")
        if batch_size < 1:
            raise ValidationError(message=f"batch_size must be >= 1, got {batch_size}")
        self._provider = provider
        self._concurrency = concurrency
        self._batch_size = min(batch_size, max(1, provider.max_batch_size()))

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def embed_contents(self, contents: Sequence[str]) -> list[list[float]]:
        """Embed *contents*, returning one vector per input in input order."""
        if not contents:
            return []

        batches = [
            (start, list(contents[start : start + self._batch_size]))
            for start in range(0, len(contents), self._batch_size)
        ]
        expected_dim = self._provider.get_dimension()

        async def _embed_batch(batch: tuple[int, list[str]]) -> list[list[float]]:
            start, texts = batch
            try:
                vectors = await self._provider.embed(texts)
            except EmbeddingError:
                raise
            except StoryShelfError as exc:
                raise EmbeddingError(
                    message=f"Embedding batch at index {start} failed: {exc.message}",
                    provider_name=exc.provider_name or self._provider.get_provider_name(),
                ) from exc
            if len(vectors) != len(texts):
                raise EmbeddingError(
                    message=(
                        f"Embedding batch at index {start} returned {len(vectors)} "
                        f"vectors for {len(texts)} inputs"
                    ),
                    provider_name=self._provider.get_provider_name(),
                )
            for offset, vector in enumerate(vectors):
                if len(vector) != expected_dim:
                    raise EmbeddingError(
                        message=(
                            f"Embedding for index {start + offset} has dimension "
                            f"{len(vector)}, expected {expected_dim}"
                        ),
                        provider_name=self._provider.get_provider_name(),
                    )
            logger.debug("embedding_batch_complete", start=start, size=len(texts))
            return vectors

        results = await run_bounded(_embed_batch, batches, self._concurrency)

        ordered: list[list[float]] = []
        for vectors in results:
            ordered.extend(vectors)
        logger.info(
            "embeddings_generated",
            count=len(ordered),
            batches=len(batches),
            concurrency=self._concurrency,
        )
        return ordered

    async def embed_chunks(
        self,
        chunks: Sequence[TextChunk],
        refs: Sequence[ChunkRef],
        writer: EmbeddingWriter,
    ) -> dict[str, list[float]]:
        """Embed *chunks* and write each vector to the row its index maps to.

        Returns the ``{row_id: vector}`` mapping that was written.

        Raises
        ------
        EmbeddingError
            If a chunk index has no row id, any batch fails, or the writer
            updates fewer rows than it was given.
        """
        id_map = {ref.chunk_index: ref.id for ref in refs}
        missing = [c.chunk_index for c in chunks if c.chunk_index not in id_map]
        if missing:
            raise EmbeddingError(
                message=f"No stored row for chunk indexes {missing[:10]}",
            )

        vectors = await self.embed_contents([c.content for c in chunks])
        by_row = {
            id_map[chunk.chunk_index]: vector
            for chunk, vector in zip(chunks, vectors, strict=True)
        }

        written = await writer(by_row)
        if written != len(by_row):
            raise EmbeddingError(
                message=f"Wrote {written} of {len(by_row)} embeddings",
            )
        return by_row
