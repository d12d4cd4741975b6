"""storyshelf domain models: re-exports all public model classes.

The models are organized across five submodules by concern:
    - book.py      : books, pages, chunks, personas/characters
    - chat.py      : conversation turns and prompt variants
    - pipeline.py  : processing status state values
    - rag.py       : search rows, resolved matches, answers with sources
    - trigger.py   : structured result of retried outbound calls

If you add a new model class, remember to add it to ``__all__`` too.
"""

from __future__ import annotations

from src.models.book import (
    Book,
    BookCategory,
    Character,
    ChunkRef,
    PageText,
    Persona,
    StoredChunk,
    TextChunk,
)
from src.models.chat import ChatMode, ConversationTurn, PromptVariant
from src.models.pipeline import JobAcceptance, ProcessingStatus, StatusSnapshot
from src.models.rag import (
    AnswerResult,
    ChunkMatchRow,
    ChunkMetadata,
    RetrievalMatch,
    SourceCitation,
)
from src.models.trigger import TriggerResult

__all__ = [
    "AnswerResult",
    "Book",
    "BookCategory",
    "Character",
    "ChatMode",
    "ChunkMatchRow",
    "ChunkMetadata",
    "ChunkRef",
    "ConversationTurn",
    "JobAcceptance",
    "PageText",
    "Persona",
    "ProcessingStatus",
    "PromptVariant",
    "RetrievalMatch",
    "SourceCitation",
    "StatusSnapshot",
    "StoredChunk",
    "TextChunk",
    "TriggerResult",
]
