"""Query-time facade: question or chat message in, grounded answer out.

    message -> QueryOptimizer -> embed -> RetrievalEngine -> AnswerComposer

Stateless and read-only against stored chunks, so any number of requests
may run concurrently.
"""

from __future__ import annotations

from collections.abc import Sequence

from src.interfaces.book_store import IBookStore
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.models.book import Book
from src.models.chat import ConversationTurn
from src.models.rag import AnswerResult
from src.services.answer_composer import AnswerComposer
from src.services.query_optimizer import QueryOptimizer
from src.services.retrieval_service import RetrievalEngine
from src.utils.errors import NotFoundError, ValidationError
from src.utils.logging import get_logger

QA_MATCH_COUNT = 5
CHAT_MATCH_COUNT = 4


class BookChatService:
    """Tutor Q&A and character chat over one book's chunks."""

    def __init__(
        self,
        book_store: IBookStore,
        embedding_provider: IEmbeddingProvider,
        query_optimizer: QueryOptimizer,
        retrieval_engine: RetrievalEngine,
        answer_composer: AnswerComposer,
        qa_match_count: int = QA_MATCH_COUNT,
        chat_match_count: int = CHAT_MATCH_COUNT,
    ) -> None:
        self._store = book_store
        self._embeddings = embedding_provider
        self._optimizer = query_optimizer
        self._retrieval = retrieval_engine
        self._composer = answer_composer
        self._qa_k = qa_match_count
        self._chat_k = chat_match_count
        self._logger = get_logger(__name__)

    async def ask(
        self,
        book_id: str,
        question: str,
        history: Sequence[ConversationTurn] = (),
        k: int | None = None,
    ) -> AnswerResult:
        question = _require_text(question, "question")
        book = await self._load_book(book_id)

        query = await self._optimizer.optimize(question, book, history)
        embedding = await self._embeddings.embed_single(query)
        matches = await self._retrieval.retrieve(embedding, book.id, k or self._qa_k)
        return await self._composer.answer_question(book, question, matches, history)

    async def chat(
        self,
        book_id: str,
        character_id: str,
        message: str,
        history: Sequence[ConversationTurn] = (),
        k: int | None = None,
    ) -> AnswerResult:
        message = _require_text(message, "message")
        book = await self._load_book(book_id)
        character = await self._store.get_character(book.id, character_id)
        if character is None:
            raise NotFoundError(message=f"Character {character_id} not found for book {book_id}")

        query = await self._optimizer.optimize(message, book, history, character)
        embedding = await self._embeddings.embed_single(query)
        matches = await self._retrieval.retrieve(embedding, book.id, k or self._chat_k)
        return await self._composer.reply_as_character(book, character, message, matches, history)

    async def _load_book(self, book_id: str) -> Book:
        book = await self._store.get_book(book_id)
        if book is None:
            raise NotFoundError(message=f"Book {book_id} not found")
        return book


def _require_text(value: str, field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(message=f"{field} must be non-empty")
    return text
