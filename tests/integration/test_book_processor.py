"""Integration tests for the book ingestion job.

Runs BookProcessor end to end against a real SQLite store, a real
in-memory Chroma collection and real PyMuPDF extraction.  Only object
storage, the embedding API and the LLM are mocked.
"""

from __future__ import annotations

import json
import uuid
from unittest.mock import AsyncMock

import chromadb
import fitz
import pytest

from src.models.book import Book
from src.models.pipeline import ProcessingStatus, StatusSnapshot
from src.pipeline.book_processor import BookProcessor
from src.pipeline.status_tracker import StatusTracker
from src.providers.vector_store.chromadb_provider import ChromaChunkSearchProvider
from src.services.answer_composer import AnswerComposer
from src.services.book_chat_service import BookChatService
from src.services.ingestion.chunker import PageChunker
from src.services.ingestion.document_loader import DocumentLoader
from src.services.ingestion.embedding_service import EmbeddingService
from src.services.ingestion.persona_extractor import PersonaExtractor
from src.services.ingestion.text_extractor import TextExtractor
from src.services.query_optimizer import QueryOptimizer
from src.services.retrieval_service import RetrievalEngine
from src.utils.errors import EmbeddingError

_PERSONA_REPLY = json.dumps(
    [
        {
            "name": "Ada",
            "role": "The lighthouse keeper",
            "persona": "Stubborn and warm.",
            "example_phrases": ["The lamp never sleeps."],
        },
        {"name": "Moss", "role": "Her cat", "persona": "Aloof.", "example_phrases": []},
    ]
)


def _book_pdf() -> bytes:
    doc = fitz.open()
    texts = [
        "Chapter 1\nAda kept the lamp burning through the storm.",
        "The sea rose over the rocks and Moss hid below the stairs.",
        "Chapter 2\nMorning came grey and quiet over the water.",
    ]
    for text in texts:
        page = doc.new_page()
        page.insert_text((72, 72), text, fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def search_provider() -> ChromaChunkSearchProvider:
    return ChromaChunkSearchProvider(
        collection_name=f"it_chunks_{uuid.uuid4().hex[:8]}",
        client=chromadb.EphemeralClient(),
    )


@pytest.fixture
def status_tracker(book_store) -> StatusTracker:  # noqa: ANN001
    return StatusTracker(book_store)


@pytest.fixture
def transitions(status_tracker: StatusTracker) -> list[ProcessingStatus]:
    recorded: list[ProcessingStatus] = []

    def _listener(book_id: str, snapshot: StatusSnapshot) -> None:
        recorded.append(snapshot.processing_status)

    status_tracker.register_listener(_listener)
    return recorded


@pytest.fixture
def processor(
    book_store,  # noqa: ANN001
    status_tracker: StatusTracker,
    search_provider: ChromaChunkSearchProvider,
    mock_object_storage,  # noqa: ANN001
    mock_embedding_provider,  # noqa: ANN001
    mock_llm_provider,  # noqa: ANN001
) -> BookProcessor:
    mock_object_storage.download = AsyncMock(return_value=_book_pdf())
    mock_llm_provider.complete = AsyncMock(return_value=_PERSONA_REPLY)
    return BookProcessor(
        book_store=book_store,
        status_tracker=status_tracker,
        document_loader=DocumentLoader(mock_object_storage),
        text_extractor=TextExtractor(),
        chunker=PageChunker(max_tokens=12, overlap_tokens=2),
        embedding_service=EmbeddingService(mock_embedding_provider, concurrency=2, batch_size=2),
        search_provider=search_provider,
        persona_extractor=PersonaExtractor(mock_llm_provider),
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestBookProcessor:
    @pytest.mark.asyncio
    async def test_fiction_book_full_run(
        self,
        processor: BookProcessor,
        book_store,  # noqa: ANN001
        search_provider: ChromaChunkSearchProvider,
        transitions: list[ProcessingStatus],
        fiction_book: Book,
    ) -> None:
        await book_store.create_book(fiction_book)

        snapshot = await processor.process(fiction_book.id)

        assert snapshot.processing_status is ProcessingStatus.COMPLETED
        assert transitions == [
            ProcessingStatus.EXTRACTING,
            ProcessingStatus.CHUNKING,
            ProcessingStatus.EMBEDDING,
            ProcessingStatus.EMBEDDINGS_COMPLETE,
            ProcessingStatus.CHARACTERS_EXTRACTING,
            ProcessingStatus.CHARACTERS_DONE,
            ProcessingStatus.COMPLETED,
        ]

        chunks = await book_store.list_chunks(fiction_book.id)
        assert len(chunks) > 1
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert all(c.embedding is not None for c in chunks)
        assert chunks[0].chapter_number == 1
        assert chunks[-1].chapter_number == 2

        rows = await search_provider.match_chunks([1.0, 1.0, 0.0], 20, fiction_book.id)
        assert {r.id for r in rows} == {c.id for c in chunks}

        characters = await book_store.list_characters(fiction_book.id)
        assert [c.name for c in characters] == ["Ada", "Moss"]
        assert characters[0].short_description == "The lighthouse keeper"

        book = await book_store.get_book(fiction_book.id)
        assert book.processing_progress == "Book processing completed"
        assert book.error_message is None

    @pytest.mark.asyncio
    async def test_nonfiction_skips_characters(
        self,
        processor: BookProcessor,
        book_store,  # noqa: ANN001
        transitions: list[ProcessingStatus],
        mock_llm_provider,  # noqa: ANN001
        nonfiction_book: Book,
    ) -> None:
        await book_store.create_book(nonfiction_book)

        await processor.process(nonfiction_book.id)

        assert ProcessingStatus.CHARACTERS_EXTRACTING not in transitions
        assert transitions[-2:] == [ProcessingStatus.EMBEDDINGS_COMPLETE, ProcessingStatus.COMPLETED]
        mock_llm_provider.complete.assert_not_awaited()
        assert await book_store.list_characters(nonfiction_book.id) == []

    @pytest.mark.asyncio
    async def test_unreadable_document_records_error(
        self,
        processor: BookProcessor,
        book_store,  # noqa: ANN001
        mock_object_storage,  # noqa: ANN001
        transitions: list[ProcessingStatus],
        fiction_book: Book,
    ) -> None:
        mock_object_storage.download = AsyncMock(return_value=b"definitely not a pdf")
        await book_store.create_book(fiction_book)

        snapshot = await processor.process(fiction_book.id)

        assert snapshot.processing_status is ProcessingStatus.ERROR
        assert transitions == [ProcessingStatus.EXTRACTING, ProcessingStatus.ERROR]
        book = await book_store.get_book(fiction_book.id)
        assert "Unreadable PDF" in book.error_message
        assert await book_store.list_chunks(fiction_book.id) == []

    @pytest.mark.asyncio
    async def test_embedding_failure_leaves_no_vectors(
        self,
        processor: BookProcessor,
        book_store,  # noqa: ANN001
        mock_embedding_provider,  # noqa: ANN001
        search_provider: ChromaChunkSearchProvider,
        fiction_book: Book,
    ) -> None:
        mock_embedding_provider.embed = AsyncMock(
            side_effect=EmbeddingError(message="quota exceeded", provider_name="openai_embedding")
        )
        await book_store.create_book(fiction_book)

        snapshot = await processor.process(fiction_book.id)

        assert snapshot.processing_status is ProcessingStatus.ERROR
        assert "quota exceeded" in snapshot.error_message
        chunks = await book_store.list_chunks(fiction_book.id)
        assert chunks
        assert all(c.embedding is None for c in chunks)
        assert await search_provider.match_chunks([1.0, 1.0, 0.0], 5, fiction_book.id) == []

    @pytest.mark.asyncio
    async def test_persona_failure_still_completes(
        self,
        processor: BookProcessor,
        book_store,  # noqa: ANN001
        mock_llm_provider,  # noqa: ANN001
        fiction_book: Book,
    ) -> None:
        mock_llm_provider.complete = AsyncMock(return_value="I could not find anyone, sorry.")
        await book_store.create_book(fiction_book)

        snapshot = await processor.process(fiction_book.id)

        assert snapshot.processing_status is ProcessingStatus.COMPLETED
        assert await book_store.list_characters(fiction_book.id) == []

    @pytest.mark.asyncio
    async def test_missing_book_returns_none(self, processor: BookProcessor) -> None:
        assert await processor.process("no-such-book") is None


class TestProcessedBookChat:
    @pytest.mark.asyncio
    async def test_question_answered_from_indexed_chunks(
        self,
        processor: BookProcessor,
        book_store,  # noqa: ANN001
        search_provider: ChromaChunkSearchProvider,
        mock_embedding_provider,  # noqa: ANN001
        mock_llm_provider,  # noqa: ANN001
        fiction_book: Book,
    ) -> None:
        await book_store.create_book(fiction_book)
        await processor.process(fiction_book.id)

        mock_llm_provider.complete = AsyncMock(return_value="Ada lamp storm")
        mock_embedding_provider.embed_single = AsyncMock(return_value=[40.0, 1.0, 0.0])
        service = BookChatService(
            book_store=book_store,
            embedding_provider=mock_embedding_provider,
            query_optimizer=QueryOptimizer(mock_llm_provider),
            retrieval_engine=RetrievalEngine(search_provider),
            answer_composer=AnswerComposer(mock_llm_provider),
        )

        result = await service.ask(fiction_book.id, "Who kept the lamp burning?")

        assert result.answer == "A grounded answer."
        assert 0 < len(result.sources) <= 5
        assert all(s.page_number is not None for s in result.sources)
        mock_embedding_provider.embed_single.assert_awaited_once_with("Ada lamp storm")
