"""Unit tests for the processing-status state machine."""

from __future__ import annotations

import pytest

from src.models.book import Book, BookCategory
from src.models.pipeline import ProcessingStatus as S
from src.pipeline.status_tracker import StatusTracker, can_transition, requires_personas
from src.providers.storage.sqlite_book_store import SQLiteBookStore
from src.utils.errors import NotFoundError, PipelineError


class TestTransitionTable:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.UPLOADED, S.EXTRACTING),
            (S.EXTRACTING, S.CHUNKING),
            (S.CHUNKING, S.EMBEDDING),
            (S.EMBEDDING, S.EMBEDDINGS_COMPLETE),
            (S.EMBEDDINGS_COMPLETE, S.CHARACTERS_EXTRACTING),
            (S.EMBEDDINGS_COMPLETE, S.COMPLETED),
            (S.CHARACTERS_EXTRACTING, S.CHARACTERS_DONE),
            (S.CHARACTERS_DONE, S.COMPLETED),
            (S.UPLOADED, S.ERROR),
            (S.EMBEDDING, S.ERROR),
        ],
    )
    def test_legal(self, current: S, target: S) -> None:
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.UPLOADED, S.CHUNKING),
            (S.CHUNKING, S.EXTRACTING),
            (S.COMPLETED, S.EXTRACTING),
            (S.COMPLETED, S.ERROR),
            (S.ERROR, S.UPLOADED),
            (S.ERROR, S.EXTRACTING),
            (S.CHARACTERS_DONE, S.EMBEDDING),
        ],
    )
    def test_illegal(self, current: S, target: S) -> None:
        assert not can_transition(current, target)

    def test_terminal_states_have_no_exits(self) -> None:
        for target in S:
            assert not can_transition(S.COMPLETED, target)
            assert not can_transition(S.ERROR, target)

    def test_requires_personas(self) -> None:
        assert requires_personas(BookCategory.FICTION)
        assert requires_personas(BookCategory.CHILDREN)
        assert not requires_personas(BookCategory.NONFICTION)


class TestStatusTracker:
    @pytest.mark.asyncio
    async def test_transition_persists_status_and_progress(
        self, book_store: SQLiteBookStore, fiction_book: Book
    ) -> None:
        await book_store.create_book(fiction_book)
        tracker = StatusTracker(book_store)

        snapshot = await tracker.transition(fiction_book.id, S.EXTRACTING, "Started processing book")

        assert snapshot.processing_status is S.EXTRACTING
        stored = await book_store.get_book(fiction_book.id)
        assert stored.processing_status is S.EXTRACTING
        assert stored.processing_progress == "Started processing book"
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_illegal_transition_raises_and_leaves_state(
        self, book_store: SQLiteBookStore, fiction_book: Book
    ) -> None:
        await book_store.create_book(fiction_book)
        tracker = StatusTracker(book_store)

        with pytest.raises(PipelineError):
            await tracker.transition(fiction_book.id, S.EMBEDDING, "skip ahead")

        assert (await tracker.get_status(fiction_book.id)).processing_status is S.UPLOADED

    @pytest.mark.asyncio
    async def test_fail_records_error_message(
        self, book_store: SQLiteBookStore, fiction_book: Book
    ) -> None:
        await book_store.create_book(fiction_book)
        tracker = StatusTracker(book_store)
        await tracker.transition(fiction_book.id, S.EXTRACTING)

        snapshot = await tracker.fail(fiction_book.id, "PDF download failed")

        assert snapshot is not None
        assert snapshot.processing_status is S.ERROR
        assert snapshot.error_message == "PDF download failed"
        stored = await book_store.get_book(fiction_book.id)
        assert stored.error_message == "PDF download failed"

    @pytest.mark.asyncio
    async def test_fail_on_terminal_book_is_ignored(
        self, book_store: SQLiteBookStore, fiction_book: Book
    ) -> None:
        await book_store.create_book(
            fiction_book.model_copy(update={"processing_status": S.COMPLETED})
        )
        tracker = StatusTracker(book_store)

        assert await tracker.fail(fiction_book.id, "late failure") is None
        assert (await tracker.get_status(fiction_book.id)).processing_status is S.COMPLETED

    @pytest.mark.asyncio
    async def test_reset_clears_progress_and_error(
        self, book_store: SQLiteBookStore, fiction_book: Book
    ) -> None:
        await book_store.create_book(
            fiction_book.model_copy(
                update={"processing_status": S.ERROR, "error_message": "boom"}
            )
        )
        tracker = StatusTracker(book_store)

        snapshot = await tracker.reset(fiction_book.id)

        assert snapshot.processing_status is S.UPLOADED
        stored = await book_store.get_book(fiction_book.id)
        assert stored.error_message is None
        assert stored.processing_progress is None

    @pytest.mark.asyncio
    async def test_unknown_book_raises_not_found(self, book_store: SQLiteBookStore) -> None:
        tracker = StatusTracker(book_store)
        with pytest.raises(NotFoundError):
            await tracker.transition("missing", S.EXTRACTING)

    @pytest.mark.asyncio
    async def test_listeners_receive_snapshots(
        self, book_store: SQLiteBookStore, fiction_book: Book
    ) -> None:
        await book_store.create_book(fiction_book)
        tracker = StatusTracker(book_store)
        seen_sync: list[S] = []
        seen_async: list[S] = []

        def on_change(book_id: str, snapshot) -> None:  # noqa: ANN001
            seen_sync.append(snapshot.processing_status)

        async def on_change_async(book_id: str, snapshot) -> None:  # noqa: ANN001
            seen_async.append(snapshot.processing_status)

        def broken(book_id: str, snapshot) -> None:  # noqa: ANN001
            raise RuntimeError("listener bug")

        tracker.register_listener(broken)
        tracker.register_listener(on_change)
        tracker.register_listener(on_change_async)

        await tracker.transition(fiction_book.id, S.EXTRACTING)
        tracker.unregister_listener(on_change)
        await tracker.transition(fiction_book.id, S.CHUNKING)

        assert seen_sync == [S.EXTRACTING]
        assert seen_async == [S.EXTRACTING, S.CHUNKING]
