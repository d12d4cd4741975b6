"""Processing-status models for the book ingestion pipeline.

``ProcessingStatus`` is the persisted state machine value stored on every
book row.  The transition rules themselves live in
:mod:`src.pipeline.status_tracker`; this module only names the states and
the snapshot the API exposes.

Forward order::

    uploaded -> extracting -> chunking -> embedding -> embeddings_complete
        -> [characters_extracting -> characters_done] -> completed

``error`` is reachable from any non-terminal state.  ``completed`` and
``error`` are absorbing.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ProcessingStatus(str, Enum):  # noqa: UP042
    """States of a book's processing job, as stored on the book record."""

    UPLOADED = "uploaded"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    EMBEDDINGS_COMPLETE = "embeddings_complete"
    CHARACTERS_EXTRACTING = "characters_extracting"
    CHARACTERS_DONE = "characters_done"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.ERROR)

    @property
    def is_active(self) -> bool:
        """True while a job owns the book (neither idle nor terminal)."""
        return not self.is_terminal and self is not ProcessingStatus.UPLOADED


class StatusSnapshot(BaseModel):
    """The three status columns of a book, as read back from the store."""

    model_config = ConfigDict(frozen=True)

    book_id: str
    processing_status: ProcessingStatus
    processing_progress: str | None = None
    error_message: str | None = None


class JobAcceptance(BaseModel):
    """Acknowledgement returned when a processing job is scheduled.

    ``duplicate`` is True when the same idempotency key was seen before and
    no new job was started.
    """

    model_config = ConfigDict(frozen=True)

    book_id: str
    status: str = "accepted"
    idempotency_key: str | None = None
    forced: bool = False
    duplicate: bool = False
    accepted_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )
