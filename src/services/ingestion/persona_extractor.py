"""Persona extraction: derive character profiles from a book's first chunks.

One LLM call per book at temperature 0.  The model is asked for a bare
JSON array; the parser tolerates markdown fences and surrounding prose,
and anything it cannot read becomes an empty list.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from typing import Any

from src.interfaces.llm_provider import ILLMProvider
from src.models.book import Book, Persona
from src.utils.errors import StoryShelfError
from src.utils.logging import get_logger

_FENCE_RE = re.compile(r"```json|```")
# First "[" through last "]"; DOTALL lets the array span lines.
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)

DEFAULT_MAX_PERSONAS = 10

_SYSTEM_PROMPT = (
    "You are a careful assistant. Given book context and excerpts, return a JSON "
    "array of main characters.\n"
    "Return ONLY valid JSON array. Each item must be:\n"
    "{name: string, role: string, persona: string, example_phrases: [string]}.\n"
    "If no characters found, return an empty array [].\n"
    "Do NOT hallucinate characters; only return names explicitly present in the "
    "provided text/excerpts."
)


def build_persona_prompt(title: str, description: str | None, excerpts: Sequence[str]) -> str:
    joined = "\n\n---\n\n".join(excerpts)
    return (
        f"Book title: {title or 'Unknown'}\n"
        f"Book description: {description or 'None'}\n"
        "\n"
        f"Excerpts:\n{joined}\n"
        "\n"
        "Provide a JSON array as specified."
    )


def parse_personas(text: str, max_personas: int = DEFAULT_MAX_PERSONAS) -> list[Persona]:
    """Parse an LLM reply into at most *max_personas* unique personas.

    Items without a non-empty ``name`` are dropped, as are later items whose
    name matches an earlier one case-insensitively.
    """
    cleaned = _FENCE_RE.sub("", text or "").strip()
    raw = _load_array(cleaned)

    personas: list[Persona] = []
    seen: set[str] = set()
    for item in raw:
        if len(personas) >= max_personas:
            break
        persona = _to_persona(item)
        if persona is None:
            continue
        key = persona.name.casefold()
        if key in seen:
            continue
        seen.add(key)
        personas.append(persona)
    return personas


def _load_array(cleaned: str) -> list[Any]:
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _ARRAY_RE.search(cleaned)
        if match is None:
            return []
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            return []
    return parsed if isinstance(parsed, list) else []


def _to_persona(item: Any) -> Persona | None:
    if not isinstance(item, dict):
        return None
    name = item.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    phrases = item.get("example_phrases")
    if isinstance(phrases, str):
        phrases = [phrases]
    elif not isinstance(phrases, list):
        phrases = []

    return Persona(
        name=name.strip(),
        short_description=_as_text(item.get("role") or item.get("short_description")),
        persona=_as_text(item.get("persona")),
        example_phrases=[str(p).strip() for p in phrases if p is not None and str(p).strip()],
    )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class PersonaExtractor:
    """Extracts persona profiles from sample chunks with one LLM call."""

    def __init__(
        self,
        llm_provider: ILLMProvider,
        max_personas: int = DEFAULT_MAX_PERSONAS,
    ) -> None:
        self._llm = llm_provider
        self._max_personas = max_personas
        self._logger = get_logger(__name__)

    async def extract(self, book: Book, sample_chunks: Sequence[str]) -> list[Persona]:
        """Return personas found in *sample_chunks*; ``[]`` on any LLM failure."""
        excerpts = [c for c in sample_chunks if c and c.strip()]
        if not excerpts:
            self._logger.info("persona_extraction_skipped", book_id=book.id, reason="no_text")
            return []

        try:
            reply = await self._llm.complete(
                system_prompt=_SYSTEM_PROMPT,
                user_prompt=build_persona_prompt(book.title, book.description, excerpts),
                temperature=0.0,
                max_tokens=1500,
            )
        except StoryShelfError as exc:
            self._logger.warning(
                "persona_extraction_failed",
                book_id=book.id,
                error=str(exc),
                provider=self._llm.get_provider_name(),
            )
            return []

        personas = parse_personas(reply, self._max_personas)
        self._logger.info(
            "persona_extraction_complete",
            book_id=book.id,
            personas=len(personas),
            excerpts=len(excerpts),
        )
        return personas
