"""Job dispatch and the re-trigger policy for book processing.

A processing request either starts exactly one background job for the
book or is rejected.  Policy by persisted status:

    uploaded                 start
    extracting .. chars_done reject (ConflictError); a job owns the book
    completed                reject unless ``force``; force clears chunks,
                             vectors, and status, then starts
    error                    reject; call reset() first

reset() also accepts an active status when no task in this process owns
the book, which is what a crash or redeploy mid-job leaves behind.  The
stale status is first recorded as ``error`` ("Job interrupted during ...").

A book with a job already running in this process is rejected whatever
its status says.  A repeated ``Idempotency-Key`` returns the first
acknowledgement without starting anything.
"""

from __future__ import annotations

import asyncio

import structlog

from src.interfaces.book_store import IBookStore
from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.vector_store_provider import IChunkSearchProvider
from src.models.pipeline import JobAcceptance, ProcessingStatus, StatusSnapshot
from src.pipeline.book_processor import BookProcessor
from src.pipeline.status_tracker import StatusTracker
from src.utils.errors import ConflictError, NotFoundError, StoryShelfError
from src.utils.logging import get_logger

_IDEMPOTENCY_PREFIX = "idempotency:"


class JobDispatcher:
    """Starts processing jobs as tracked asyncio tasks, one per book."""

    def __init__(
        self,
        processor: BookProcessor,
        book_store: IBookStore,
        search_provider: IChunkSearchProvider,
        status_tracker: StatusTracker,
        idempotency_cache: ICacheProvider,
    ) -> None:
        self._processor = processor
        self._store = book_store
        self._search = search_provider
        self._status = status_tracker
        self._idempotency = idempotency_cache
        self._tasks: dict[str, asyncio.Task] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_running(self, book_id: str) -> bool:
        return book_id in self._tasks

    async def submit(
        self,
        book_id: str,
        idempotency_key: str | None = None,
        force: bool = False,
    ) -> JobAcceptance:
        """Schedule processing for *book_id* according to the re-trigger policy.

        Raises
        ------
        NotFoundError
            If the book does not exist.
        ConflictError
            If the policy rejects the request, or the idempotency key was
            already used for a different book.
        """
        if idempotency_key:
            previous = await self._idempotency.get(_IDEMPOTENCY_PREFIX + idempotency_key)
            if previous is not None:
                return self._replay(previous, book_id)

        book = await self._store.get_book(book_id)
        if book is None:
            raise NotFoundError(message=f"Book {book_id} not found")
        self._ensure_not_running(book_id)
        status = book.processing_status

        if status.is_active:
            raise ConflictError(
                message=(
                    f"Book {book_id} is already being processed ({status.value}); "
                    "reset it if that job is no longer running"
                )
            )
        if status is ProcessingStatus.ERROR:
            raise ConflictError(
                message=f"Book {book_id} failed previously; reset it before reprocessing"
            )
        clear_first = status is ProcessingStatus.COMPLETED
        if clear_first and not force:
            raise ConflictError(
                message=f"Book {book_id} is already processed; pass force to reprocess"
            )

        acceptance = JobAcceptance(
            book_id=book_id, idempotency_key=idempotency_key, forced=clear_first
        )
        if idempotency_key:
            stored = await self._idempotency.add(_IDEMPOTENCY_PREFIX + idempotency_key, acceptance)
            if not stored:
                previous = await self._idempotency.get(_IDEMPOTENCY_PREFIX + idempotency_key)
                if previous is not None:
                    return self._replay(previous, book_id)

        # No await between this check and task creation, so two submits
        # racing through the awaits above cannot both start a job.
        self._ensure_not_running(book_id)
        task = asyncio.create_task(self._run_job(book_id, clear_first), name=f"process:{book_id}")
        self._tasks[book_id] = task
        task.add_done_callback(lambda t, b=book_id: self._on_done(b, t))

        self._logger.info(
            "processing_job_started",
            book_id=book_id,
            previous_status=status.value,
            forced=clear_first,
            idempotency_key=idempotency_key,
        )
        return acceptance

    async def reset(self, book_id: str) -> StatusSnapshot:
        """Restart a failed or orphaned book: drop its chunks and vectors, status ``uploaded``.

        Raises
        ------
        ConflictError
            If the book is ``uploaded`` or ``completed``, or a job is
            running for it.
        """
        book = await self._store.get_book(book_id)
        if book is None:
            raise NotFoundError(message=f"Book {book_id} not found")
        self._ensure_not_running(book_id)
        status = book.processing_status
        if status.is_active:
            # No task here owns it, so the job that set it is gone.
            self._logger.warning("orphaned_job_detected", book_id=book_id, status=status.value)
            await self._status.fail(book_id, f"Job interrupted during {status.value}")
        elif status is not ProcessingStatus.ERROR:
            raise ConflictError(
                message=(
                    f"Only failed or interrupted books can be reset; book {book_id} is "
                    f"{status.value}"
                )
            )
        await self._clear_book(book_id)
        return await self._status.reset(book_id)

    async def wait(self, book_id: str) -> None:
        """Wait for the running job of *book_id*, if any, to finish."""
        task = self._tasks.get(book_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every outstanding job and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self._logger.info("processing_jobs_cancelled", count=len(tasks))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_job(self, book_id: str, clear_first: bool) -> StatusSnapshot | None:
        if clear_first:
            # Status goes first so a failed clear can still be recorded as error.
            await self._status.reset(book_id)
            try:
                await self._clear_book(book_id)
            except StoryShelfError as exc:
                await self._status.fail(book_id, f"Could not clear previous results: {exc}")
                raise
        return await self._processor.process(book_id)

    async def _clear_book(self, book_id: str) -> None:
        chunks = await self._store.delete_chunks(book_id)
        vectors = await self._search.delete_book(book_id)
        self._logger.info("book_data_cleared", book_id=book_id, chunks=chunks, vectors=vectors)

    def _ensure_not_running(self, book_id: str) -> None:
        if book_id in self._tasks:
            raise ConflictError(message=f"Book {book_id} is already being processed")

    def _replay(self, previous: JobAcceptance, book_id: str) -> JobAcceptance:
        if previous.book_id != book_id:
            raise ConflictError(
                message="Idempotency key was already used for a different book"
            )
        self._logger.info(
            "processing_trigger_deduplicated",
            book_id=book_id,
            idempotency_key=previous.idempotency_key,
        )
        return previous.model_copy(update={"duplicate": True})

    def _on_done(self, book_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(book_id) is task:
            del self._tasks[book_id]
        if task.cancelled():
            self._logger.info("processing_job_cancelled", book_id=book_id)
            return
        exc = task.exception()
        if exc is not None:
            # Only the force-clear step raises; process() records its own failures.
            self._logger.error("processing_job_crashed", book_id=book_id, error=str(exc))
