"""Query optimizer: rewrite a chat message into one dense search query.

The rewritten string is what gets embedded for retrieval, so the prompt
asks for keywords only, and :func:`clean_optimized_query` strips whatever
decoration the model adds anyway.  A failed or empty rewrite is an error
for the request; there is no fallback to the raw question.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence

from src.interfaces.cache_provider import ICacheProvider
from src.interfaces.llm_provider import ILLMProvider
from src.models.book import Book, Character
from src.models.chat import ChatMode, ConversationTurn
from src.utils.errors import LLMError
from src.utils.logging import get_logger

_MAX_TURNS_PER_ROLE = 2

_BOOK_PROMPT = (
    "You are an assistant that rewrites vague user requests into concise, "
    "high-signal search queries optimized for semantic similarity search.\n"
    "Rules:\n"
    "- Use the book title and recent conversation to add useful context.\n"
    "- Avoid filler words.\n"
    "- Produce a single short search query (6-20 words preferred).\n"
    "- Focus on nouns, topics, concepts, and explicit questions.\n"
    "- RETURN ONLY the optimized query string. No quotes, no JSON, no explanations."
)

_CHARACTER_PROMPT = (
    "You are an assistant that optimizes user queries for semantic similarity "
    "search in book excerpts.\n"
    "The user is chatting with a character from the book, so optimize their query "
    "to find relevant book scenes and events involving this character.\n"
    "\n"
    "Rules:\n"
    "- Add keywords related to the character's actions, emotions, relationships, "
    "and key moments.\n"
    "- Use the book title and character details to add context.\n"
    "- Avoid filler words.\n"
    "- Produce a single short search query (6-20 words preferred).\n"
    "- Focus on nouns, events, character interactions, emotions, and explicit questions.\n"
    "- Include character-specific keywords that will help find relevant scenes.\n"
    "- RETURN ONLY the optimized query string. No quotes, no JSON, no explanations."
)

_CHILD_RULE = (
    "\n- The reader is a young child: keep the query simple and age-appropriate, "
    "and never add mature or frightening terms."
)

# Cleanup patterns, applied in this order.
_CODE_FENCE_RE = re.compile(r"```[\s\S]*?```")
_BACKTICKS_RE = re.compile(r"`+")
# Only query-style labels ("Optimized query:", "Search terms:"); a colon in
# a title such as "Dune: Messiah" is content.
_LABEL_PREFIX_RE = re.compile(
    r"^(?:(?:optimi[sz]ed|rewritten|refined|improved|final|better)\s+)?"
    r"(?:search\s+)?(?:query|queries|search|terms|keywords)\s*:\s*",
    re.IGNORECASE,
)
_DOUBLE_QUOTED_RE = re.compile(r'^"(.*)"$', re.DOTALL)
_SINGLE_QUOTED_RE = re.compile(r"^'(.*)'$", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


def trim_history(history: Sequence[ConversationTurn]) -> list[ConversationTurn]:
    """Keep the last two user and last two assistant turns, oldest first.

    Turns are stripped first; turns left empty are dropped.
    """
    kept: list[ConversationTurn] = []
    counts = {"user": 0, "assistant": 0}
    for turn in reversed(history):
        content = turn.content.strip()
        if not content or counts[turn.role] >= _MAX_TURNS_PER_ROLE:
            continue
        counts[turn.role] += 1
        kept.append(ConversationTurn(role=turn.role, content=content))
    kept.reverse()
    return kept


def build_optimizer_system_prompt(mode: ChatMode, is_children: bool = False) -> str:
    prompt = _CHARACTER_PROMPT if mode is ChatMode.CHARACTER else _BOOK_PROMPT
    return prompt + _CHILD_RULE if is_children else prompt


def build_optimizer_user_content(
    message: str,
    history: Sequence[ConversationTurn],
    book_title: str,
    character: Character | None = None,
) -> str:
    """Render the labelled fields the optimizer sees, one per line."""
    conversation = (
        "\n".join(f"{turn.role}: {turn.content}" for turn in history) if history else "[empty]"
    )
    lines = [f"Book Title: {book_title or 'Unknown'}"]
    if character is not None:
        lines.append(f"Character: {character.name or 'Unknown'}")
        lines.append(f"Character Traits: {character.persona or 'A character from the story'}")
        lines.append(f"Conversation: {conversation}")
        lines.append(f"User Message: {message}")
    else:
        lines.append(f"Conversation: {conversation}")
        lines.append(f"User Question: {message}")
    return "\n".join(lines)


def clean_optimized_query(output: str) -> str:
    """Strip fences, backticks, a leading label, wrapping quotes, extra whitespace."""
    cleaned = (output or "").strip()
    cleaned = _CODE_FENCE_RE.sub("", cleaned)
    cleaned = _BACKTICKS_RE.sub("", cleaned)
    cleaned = _LABEL_PREFIX_RE.sub("", cleaned.strip(), count=1)
    cleaned = _DOUBLE_QUOTED_RE.sub(r"\1", cleaned)
    cleaned = _SINGLE_QUOTED_RE.sub(r"\1", cleaned)
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


class QueryOptimizer:
    """Rewrites user messages into search queries with one LLM call each.

    An optional cache memoises rewrites of identical (prompt, content) pairs.
    """

    def __init__(self, llm_provider: ILLMProvider, cache: ICacheProvider | None = None) -> None:
        self._llm = llm_provider
        self._cache = cache
        self._logger = get_logger(__name__)

    async def optimize(
        self,
        message: str,
        book: Book,
        history: Sequence[ConversationTurn] = (),
        character: Character | None = None,
    ) -> str:
        """Return the cleaned search query for *message*.

        Raises
        ------
        LLMError
            If the LLM call fails or the cleaned result is empty.
        """
        mode = ChatMode.CHARACTER if character is not None else ChatMode.BOOK
        system_prompt = build_optimizer_system_prompt(mode, book.is_children)
        user_content = build_optimizer_user_content(
            message, trim_history(history), book.title, character
        )

        cache_key = _cache_key(system_prompt, user_content)
        if self._cache is not None:
            cached = await self._cache.get(cache_key)
            if cached:
                return cached

        raw = await self._llm.complete(
            system_prompt=system_prompt,
            user_prompt=user_content,
            temperature=0.0,
            max_tokens=200,
        )
        query = clean_optimized_query(raw)
        if not query:
            raise LLMError(
                message="Query optimization returned an empty query",
                provider_name=self._llm.get_provider_name(),
            )

        if self._cache is not None:
            await self._cache.set(cache_key, query)
        self._logger.info(
            "query_optimized",
            book_id=book.id,
            mode=mode.value,
            original_length=len(message),
            optimized_length=len(query),
        )
        return query


def _cache_key(system_prompt: str, user_content: str) -> str:
    digest = hashlib.sha256(f"{system_prompt}\x00{user_content}".encode()).hexdigest()
    return f"query:{digest}"
