"""Durable processing-status state machine for book ingestion jobs.

Every transition is validated against the status currently persisted on
the book row, then written back together with the progress text (and the
error message, for ``error``).  Writes are last-write-wins; concurrent
jobs for one book are prevented upstream by the job dispatcher.

# ─── LEGAL TRANSITIONS ────────────────────────────────────────────────
#
#   uploaded -> extracting -> chunking -> embedding -> embeddings_complete
#       -> characters_extracting -> characters_done -> completed
#
#   embeddings_complete -> completed        (books without personas)
#   <any non-terminal>  -> error
#   completed, error    -> (nothing)
#
# Listeners registered with register_listener() are called after each
# persisted change with (book_id, StatusSnapshot).  A failing listener is
# logged and skipped.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from src.interfaces.book_store import IBookStore
from src.models.book import BookCategory
from src.models.pipeline import ProcessingStatus, StatusSnapshot
from src.utils.errors import NotFoundError, PipelineError
from src.utils.logging import get_logger

FORWARD_ORDER: tuple[ProcessingStatus, ...] = (
    ProcessingStatus.UPLOADED,
    ProcessingStatus.EXTRACTING,
    ProcessingStatus.CHUNKING,
    ProcessingStatus.EMBEDDING,
    ProcessingStatus.EMBEDDINGS_COMPLETE,
    ProcessingStatus.CHARACTERS_EXTRACTING,
    ProcessingStatus.CHARACTERS_DONE,
    ProcessingStatus.COMPLETED,
)

_PERSONA_CATEGORIES = frozenset({BookCategory.FICTION, BookCategory.CHILDREN})


def _build_transitions() -> dict[ProcessingStatus, frozenset[ProcessingStatus]]:
    table: dict[ProcessingStatus, set[ProcessingStatus]] = {s: set() for s in ProcessingStatus}
    for current, following in zip(FORWARD_ORDER, FORWARD_ORDER[1:]):
        table[current].add(following)
    table[ProcessingStatus.EMBEDDINGS_COMPLETE].add(ProcessingStatus.COMPLETED)
    for status in ProcessingStatus:
        if not status.is_terminal:
            table[status].add(ProcessingStatus.ERROR)
    return {status: frozenset(targets) for status, targets in table.items()}


_TRANSITIONS = _build_transitions()


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return target in _TRANSITIONS[current]


def requires_personas(category: BookCategory) -> bool:
    """Fiction and children's books get the persona-extraction stages."""
    return category in _PERSONA_CATEGORIES


class StatusTracker:
    """Validates and persists book status changes and notifies listeners."""

    def __init__(self, book_store: IBookStore) -> None:
        self._store = book_store
        self._listeners: list[Callable] = []
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_status(self, book_id: str) -> StatusSnapshot:
        book = await self._store.get_book(book_id)
        if book is None:
            raise NotFoundError(message=f"Book {book_id} not found")
        return StatusSnapshot(
            book_id=book.id,
            processing_status=book.processing_status,
            processing_progress=book.processing_progress,
            error_message=book.error_message,
        )

    async def transition(
        self,
        book_id: str,
        target: ProcessingStatus,
        progress: str | None = None,
        error_message: str | None = None,
    ) -> StatusSnapshot:
        """Move *book_id* to *target* and persist it.

        Raises
        ------
        NotFoundError
            If the book does not exist.
        PipelineError
            If the move is not a legal transition from the persisted status.
        """
        current = (await self.get_status(book_id)).processing_status
        if not can_transition(current, target):
            raise PipelineError(
                message=(
                    f"Illegal status transition for book {book_id}: "
                    f"{current.value} -> {target.value}"
                )
            )
        if target is not ProcessingStatus.ERROR:
            error_message = None
        return await self._write(book_id, current, target, progress, error_message)

    async def fail(self, book_id: str, message: str) -> StatusSnapshot | None:
        """Move the book to ``error``; a terminal book is left untouched.

        Returns the new snapshot, or ``None`` when nothing was written.
        """
        current = (await self.get_status(book_id)).processing_status
        if current.is_terminal:
            self._logger.warning(
                "book_fail_ignored",
                book_id=book_id,
                status=current.value,
                error=message,
            )
            return None
        return await self._write(
            book_id, current, ProcessingStatus.ERROR, None, message or "Unknown error"
        )

    async def reset(self, book_id: str) -> StatusSnapshot:
        """Put the book back to ``uploaded`` with no progress or error text.

        This bypasses the transition table; only the job dispatcher calls
        it, for explicit restarts.
        """
        current = (await self.get_status(book_id)).processing_status
        return await self._write(book_id, current, ProcessingStatus.UPLOADED, None, None)

    def register_listener(self, callback: Callable) -> None:
        """Register a sync or async ``callback(book_id, snapshot)``."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unregister_listener(self, callback: Callable) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _write(
        self,
        book_id: str,
        current: ProcessingStatus,
        target: ProcessingStatus,
        progress: str | None,
        error_message: str | None,
    ) -> StatusSnapshot:
        await self._store.update_book_status(book_id, target, progress, error_message)
        snapshot = StatusSnapshot(
            book_id=book_id,
            processing_status=target,
            processing_progress=progress,
            error_message=error_message,
        )
        log = self._logger.warning if target is ProcessingStatus.ERROR else self._logger.info
        log(
            "book_status_transition",
            book_id=book_id,
            from_status=current.value,
            to_status=target.value,
            progress=progress,
            error=error_message,
        )
        await self._notify_listeners(book_id, snapshot)
        return snapshot

    async def _notify_listeners(self, book_id: str, snapshot: StatusSnapshot) -> None:
        for callback in list(self._listeners):
            try:
                result = callback(book_id, snapshot)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    book_id=book_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
