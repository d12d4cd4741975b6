"""Unit tests for the embedding stage and the bounded-concurrency helper."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.models.book import ChunkRef, TextChunk
from src.services.ingestion.embedding_service import EmbeddingService
from src.utils.concurrency import run_bounded
from src.utils.errors import EmbeddingError, LLMError, ValidationError


def _chunks(n: int) -> list[TextChunk]:
    return [
        TextChunk(
            chunk_index=i,
            content=f"chunk number {i}" + "!" * i,
            token_count=5,
            start_page=1,
            end_page=1,
        )
        for i in range(n)
    ]


def _refs(n: int) -> list[ChunkRef]:
    return [ChunkRef(id=f"row-{i}", chunk_index=i) for i in range(n)]


class TestRunBounded:
    @pytest.mark.asyncio
    async def test_results_are_positional(self) -> None:
        async def worker(x: int) -> int:
            await asyncio.sleep(0.001 * (5 - x))
            return x * 10

        assert await run_bounded(worker, [1, 2, 3, 4], concurrency=2) == [10, 20, 30, 40]

    @pytest.mark.asyncio
    async def test_never_exceeds_concurrency(self) -> None:
        in_flight = 0
        peak = 0

        async def worker(_: int) -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            in_flight -= 1

        await run_bounded(worker, list(range(20)), concurrency=3)
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_first_failure_propagates(self) -> None:
        async def worker(x: int) -> int:
            if x == 2:
                raise RuntimeError("bad item")
            await asyncio.sleep(0.01)
            return x

        with pytest.raises(RuntimeError, match="bad item"):
            await run_bounded(worker, [1, 2, 3], concurrency=3)

    @pytest.mark.asyncio
    async def test_empty_items(self) -> None:
        assert await run_bounded(AsyncMock(), [], concurrency=1) == []


class TestEmbedContents:
    @pytest.mark.asyncio
    async def test_batches_and_preserves_order(self, mock_embedding_provider) -> None:  # noqa: ANN001
        service = EmbeddingService(mock_embedding_provider, concurrency=2, batch_size=4)
        contents = [c.content for c in _chunks(10)]

        vectors = await service.embed_contents(contents)

        assert len(vectors) == 10
        assert [v[0] for v in vectors] == [float(len(c)) for c in contents]
        assert mock_embedding_provider.embed.await_count == 3

    def test_batch_size_capped_by_provider_limit(self, mock_embedding_provider) -> None:  # noqa: ANN001
        mock_embedding_provider.max_batch_size.return_value = 8
        assert EmbeddingService(mock_embedding_provider, batch_size=64).batch_size == 8

    def test_invalid_settings_rejected(self, mock_embedding_provider) -> None:  # noqa: ANN001
        with pytest.raises(ValidationError):
            EmbeddingService(mock_embedding_provider, concurrency=0)
        with pytest.raises(ValidationError):
            EmbeddingService(mock_embedding_provider, batch_size=0)

    @pytest.mark.asyncio
    async def test_count_mismatch_is_embedding_error(self, mock_embedding_provider) -> None:  # noqa: ANN001
        mock_embedding_provider.embed = AsyncMock(return_value=[[1.0, 2.0, 3.0]])
        service = EmbeddingService(mock_embedding_provider)

        with pytest.raises(EmbeddingError, match="returned 1 vectors for 2 inputs"):
            await service.embed_contents(["a", "b"])

    @pytest.mark.asyncio
    async def test_wrong_dimension_is_embedding_error(self, mock_embedding_provider) -> None:  # noqa: ANN001
        mock_embedding_provider.embed = AsyncMock(return_value=[[1.0, 2.0]])
        service = EmbeddingService(mock_embedding_provider)

        with pytest.raises(EmbeddingError, match="dimension 2, expected 3"):
            await service.embed_contents(["a"])

    @pytest.mark.asyncio
    async def test_provider_errors_become_embedding_errors(self, mock_embedding_provider) -> None:  # noqa: ANN001
        mock_embedding_provider.embed = AsyncMock(
            side_effect=LLMError(message="rate limited", provider_name="openai", status=429)
        )
        service = EmbeddingService(mock_embedding_provider)

        with pytest.raises(EmbeddingError) as exc_info:
            await service.embed_contents(["a"])
        assert exc_info.value.provider_name == "openai"


class TestEmbedChunks:
    @pytest.mark.asyncio
    async def test_writes_vectors_by_row_id(self, mock_embedding_provider) -> None:  # noqa: ANN001
        chunks = _chunks(3)
        writer = AsyncMock(return_value=3)
        service = EmbeddingService(mock_embedding_provider, batch_size=2)

        by_row = await service.embed_chunks(chunks, _refs(3), writer)

        writer.assert_awaited_once()
        written = writer.await_args.args[0]
        assert set(written) == {"row-0", "row-1", "row-2"}
        assert written["row-2"][0] == float(len(chunks[2].content))
        assert by_row == written

    @pytest.mark.asyncio
    async def test_missing_row_id_fails_before_embedding(self, mock_embedding_provider) -> None:  # noqa: ANN001
        writer = AsyncMock(return_value=0)
        service = EmbeddingService(mock_embedding_provider)

        with pytest.raises(EmbeddingError, match="No stored row"):
            await service.embed_chunks(_chunks(3), _refs(2), writer)
        mock_embedding_provider.embed.assert_not_awaited()
        writer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_batch_writes_nothing(self, mock_embedding_provider) -> None:  # noqa: ANN001
        calls = 0

        async def flaky(texts: list[str]) -> list[list[float]]:
            nonlocal calls
            calls += 1
            if calls == 2:
                raise EmbeddingError(message="batch failed")
            return [[1.0, 1.0, 1.0] for _ in texts]

        mock_embedding_provider.embed = AsyncMock(side_effect=flaky)
        writer = AsyncMock(return_value=4)
        service = EmbeddingService(mock_embedding_provider, concurrency=1, batch_size=2)

        with pytest.raises(EmbeddingError):
            await service.embed_chunks(_chunks(4), _refs(4), writer)
        writer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_short_write_is_embedding_error(self, mock_embedding_provider) -> None:  # noqa: ANN001
        service = EmbeddingService(mock_embedding_provider)

        with pytest.raises(EmbeddingError, match="Wrote 1 of 2"):
            await service.embed_chunks(_chunks(2), _refs(2), AsyncMock(return_value=1))
