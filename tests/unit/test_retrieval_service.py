"""Unit tests for the retrieval engine and positional-field resolution."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.models.rag import ChunkMatchRow, ChunkMetadata
from src.services.retrieval_service import (
    RetrievalEngine,
    format_sources,
    resolve_chapter_heading,
    resolve_chapter_number,
    resolve_page_number,
    to_match,
)
from src.utils.errors import ValidationError


def _row(row_id: str, similarity: float, **fields) -> ChunkMatchRow:  # noqa: ANN003
    return ChunkMatchRow(id=row_id, content=f"content {row_id}", similarity=similarity, **fields)


class TestResolvers:
    def test_top_level_wins(self) -> None:
        row = _row(
            "c1",
            0.9,
            chapter_number=3,
            metadata=ChunkMetadata(chapter_number=7),
        )
        assert resolve_chapter_number(row) == 3

    def test_falls_back_to_metadata(self) -> None:
        row = _row("c1", 0.9, metadata=ChunkMetadata(page_number="12", chapter_heading="The Storm"))
        assert resolve_page_number(row) == 12
        assert resolve_chapter_heading(row) == "The Storm"

    def test_unusable_top_level_falls_through(self) -> None:
        row = _row("c1", 0.9, page_number="twelve", metadata=ChunkMetadata(page_number=12.0))
        assert resolve_page_number(row) == 12

    @pytest.mark.parametrize("value", ["", "  ", "4.5", "abc", 2.5, float("nan"), None])
    def test_non_integral_numbers_are_none(self, value) -> None:  # noqa: ANN001
        assert resolve_chapter_number(_row("c1", 0.5, chapter_number=value)) is None

    def test_numeric_string_is_parsed(self) -> None:
        assert resolve_chapter_number(_row("c1", 0.5, chapter_number=" 4 ")) == 4

    def test_blank_heading_is_none(self) -> None:
        assert resolve_chapter_heading(_row("c1", 0.5, chapter_heading="   ")) is None

    def test_missing_everything(self) -> None:
        match = to_match(_row("c1", 0.5))
        assert (match.chapter_number, match.page_number, match.chapter_heading) == (None, None, None)

    def test_format_sources(self) -> None:
        match = to_match(_row("c1", 0.75, chapter_number=2, page_number=9))
        [source] = format_sources([match])

        assert source.chunk_id == "c1"
        assert source.chapter_number == 2
        assert source.page_number == 9
        assert source.similarity == 0.75


class TestRetrievalEngine:
    @pytest.mark.asyncio
    async def test_sorted_truncated_and_scoped(self, mock_search_provider) -> None:  # noqa: ANN001
        mock_search_provider.match_chunks = AsyncMock(
            return_value=[_row("low", 0.2), _row("high", 0.9), _row("mid", 0.5)]
        )
        engine = RetrievalEngine(mock_search_provider)

        matches = await engine.retrieve([0.1, 0.2], "book-1", k=2)

        assert [m.chunk_id for m in matches] == ["high", "mid"]
        mock_search_provider.match_chunks.assert_awaited_once_with([0.1, 0.2], 2, "book-1")

    @pytest.mark.asyncio
    async def test_zero_matches_is_not_an_error(self, mock_search_provider) -> None:  # noqa: ANN001
        engine = RetrievalEngine(mock_search_provider)
        assert await engine.retrieve([0.1], "book-1") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("k", [0, 21, -1])
    async def test_k_out_of_range(self, mock_search_provider, k: int) -> None:  # noqa: ANN001
        with pytest.raises(ValidationError):
            await RetrievalEngine(mock_search_provider).retrieve([0.1], "book-1", k=k)

    @pytest.mark.asyncio
    async def test_empty_embedding_rejected(self, mock_search_provider) -> None:  # noqa: ANN001
        with pytest.raises(ValidationError):
            await RetrievalEngine(mock_search_provider).retrieve([], "book-1")

    @pytest.mark.asyncio
    async def test_blank_book_id_rejected(self, mock_search_provider) -> None:  # noqa: ANN001
        with pytest.raises(ValidationError):
            await RetrievalEngine(mock_search_provider).retrieve([0.1], " ")
        mock_search_provider.match_chunks.assert_not_awaited()
