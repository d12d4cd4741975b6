"""Shared pytest fixtures for the storyshelf test suite."""

from __future__ import annotations

import random
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.object_storage_provider import IObjectStorageProvider
from src.interfaces.vector_store_provider import IChunkSearchProvider
from src.models.book import Book, BookCategory, Character, PageText
from src.providers.storage.sqlite_book_store import SQLiteBookStore

# ---------------------------------------------------------------------------
# Books and pages
# ---------------------------------------------------------------------------


@pytest.fixture
def fiction_book() -> Book:
    return Book(
        id="book-fiction",
        title="The Lighthouse Keeper",
        author="A. Writer",
        description="A keeper and her cat weather a winter storm.",
        category=BookCategory.FICTION,
    )


@pytest.fixture
def children_book() -> Book:
    return Book(
        id="book-children",
        title="Milo and the Moon",
        author="B. Author",
        description="A boy builds a ladder to the moon.",
        category=BookCategory.CHILDREN,
        age_group="8",
    )


@pytest.fixture
def nonfiction_book() -> Book:
    return Book(
        id="book-nonfiction",
        title="A Short History of Tides",
        category=BookCategory.NONFICTION,
    )


@pytest.fixture
def sample_character() -> Character:
    return Character(
        id="char-1",
        book_id="book-fiction",
        name="Ada",
        short_description="The lighthouse keeper",
        persona="Stubborn, warm, quietly funny.",
        example_phrases=["The lamp never sleeps."],
    )


@pytest.fixture
def sample_pages() -> list[PageText]:
    """Three short pages, the second one opening chapter 2."""
    return [
        PageText(page_number=1, text="Chapter 1\nThe storm came in from the west.", chapter_number=1),
        PageText(page_number=2, text="Chapter 2\nAda climbed the stairs again.", chapter_number=2),
        PageText(page_number=3, text="The lamp held through the night.", chapter_number=None),
    ]


# ---------------------------------------------------------------------------
# Mock providers
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_llm_provider() -> ILLMProvider:
    """Return a mock LLM provider; ``complete`` and ``chat`` are independent mocks."""
    mock = MagicMock(spec=ILLMProvider)
    mock.get_provider_name.return_value = "mock-llm"
    mock.is_available.return_value = True
    mock.chat = AsyncMock(return_value="A grounded answer.")
    mock.complete = AsyncMock(return_value="optimized query")
    return mock


@pytest.fixture
def mock_embedding_provider() -> IEmbeddingProvider:
    """Return a mock embedding provider producing 3-dim vectors."""

    async def _embed(texts: list[str]) -> list[list[float]]:
        return [[float(len(t)), 1.0, 0.0] for t in texts]

    mock = MagicMock(spec=IEmbeddingProvider)
    mock.get_provider_name.return_value = "mock-embedding"
    mock.is_available.return_value = True
    mock.get_dimension.return_value = 3
    mock.max_batch_size.return_value = 2048
    mock.embed = AsyncMock(side_effect=_embed)
    mock.embed_single = AsyncMock(return_value=[0.1, 0.2, 0.3])
    return mock


@pytest.fixture
def mock_search_provider() -> IChunkSearchProvider:
    mock = MagicMock(spec=IChunkSearchProvider)
    mock.get_provider_name.return_value = "mock-search"
    mock.is_available.return_value = True
    mock.index_chunks = AsyncMock(return_value=0)
    mock.match_chunks = AsyncMock(return_value=[])
    mock.delete_book = AsyncMock(return_value=0)
    return mock


@pytest.fixture
def mock_object_storage() -> IObjectStorageProvider:
    mock = MagicMock(spec=IObjectStorageProvider)
    mock.get_provider_name.return_value = "mock-storage"
    mock.create_signed_url = AsyncMock(
        side_effect=lambda path, ttl: f"https://storage.test/signed/{path}?ttl={ttl}"
    )
    mock.download = AsyncMock(return_value=b"%PDF-1.4 fake")
    return mock


# ---------------------------------------------------------------------------
# Stores and retry helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "storyshelf-test.db"


@pytest_asyncio.fixture
async def book_store(db_path: Path) -> SQLiteBookStore:
    store = SQLiteBookStore(db_path=db_path)
    await store.initialize()
    return store


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(1234)
