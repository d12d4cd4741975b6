"""Book ingestion job orchestration: status machine, job runner, dispatcher."""

from src.pipeline.book_processor import BookProcessor
from src.pipeline.job_dispatcher import JobDispatcher
from src.pipeline.status_tracker import StatusTracker, can_transition, requires_personas

__all__ = [
    "BookProcessor",
    "JobDispatcher",
    "StatusTracker",
    "can_transition",
    "requires_personas",
]
