"""Result model for retried outbound HTTP calls."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TriggerResult(BaseModel):
    """Structured outcome of a retried outbound call.

    Returned on success and after exhausting retries alike; the caller
    decides what a failure means.  ``status`` is 0 for a network failure
    and 408 for a timeout.
    """

    model_config = ConfigDict(frozen=True)

    ok: bool
    status: int
    data: Any = None
    raw: str = ""
    attempt: int = Field(ge=1)
    duration_ms: int = Field(ge=0)
