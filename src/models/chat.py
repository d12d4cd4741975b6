"""Conversation models shared by the query optimizer and answer composer."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict


class ConversationTurn(BaseModel):
    """One prior message of a chat, oldest first in any list."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class ChatMode(str, Enum):  # noqa: UP042
    """Whether the user is asking the tutor or talking to a character."""

    BOOK = "book"
    CHARACTER = "character"


class PromptVariant(str, Enum):  # noqa: UP042
    """System-prompt variant: {tutor, persona} x {standard, child-safe}."""

    TUTOR = "tutor"
    TUTOR_CHILD = "tutor_child"
    PERSONA = "persona"
    PERSONA_CHILD = "persona_child"

    @property
    def is_child_safe(self) -> bool:
        return self in (PromptVariant.TUTOR_CHILD, PromptVariant.PERSONA_CHILD)
