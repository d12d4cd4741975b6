"""Unit tests for prompt selection, context building, and answer generation."""

from __future__ import annotations

import pytest

from src.models.book import Book, BookCategory, Character
from src.models.chat import ChatMode, ConversationTurn, PromptVariant
from src.models.rag import RetrievalMatch
from src.services.answer_composer import (
    NO_MATCH_ANSWER,
    NO_MATCH_CHARACTER_REPLY,
    AnswerComposer,
    build_context,
    build_persona_prompt,
    build_tutor_prompt,
    match_label,
    select_prompt_variant,
)


def _match(chunk_id: str = "c1", content: str = "The storm broke at dawn.", **fields) -> RetrievalMatch:  # noqa: ANN003
    return RetrievalMatch(chunk_id=chunk_id, content=content, similarity=0.8, **fields)


class TestContext:
    def test_label_with_all_parts(self) -> None:
        match = _match(chapter_number=2, page_number=14, chapter_heading="The Storm")
        assert match_label(match, 1) == "Chapter 2 • Page 14 • The Storm"

    def test_label_with_partial_parts(self) -> None:
        assert match_label(_match(page_number=3), 1) == "Page 3"

    def test_label_falls_back_to_position(self) -> None:
        assert match_label(_match(), 4) == "Excerpt 4"

    def test_long_content_truncated(self) -> None:
        context = build_context([_match(content="x" * 1500)], max_chars=1200)
        assert context == "### Excerpt 1\n" + "x" * 1200 + "..."

    def test_blocks_joined_in_order(self) -> None:
        context = build_context([_match("a", "first"), _match("b", "second", page_number=2)])
        assert context == "### Excerpt 1\nfirst\n\n### Page 2\nsecond"


class TestPromptSelection:
    @pytest.mark.parametrize(
        ("mode", "category", "variant"),
        [
            (ChatMode.BOOK, BookCategory.FICTION, PromptVariant.TUTOR),
            (ChatMode.BOOK, BookCategory.NONFICTION, PromptVariant.TUTOR),
            (ChatMode.BOOK, BookCategory.CHILDREN, PromptVariant.TUTOR_CHILD),
            (ChatMode.CHARACTER, BookCategory.FICTION, PromptVariant.PERSONA),
            (ChatMode.CHARACTER, BookCategory.CHILDREN, PromptVariant.PERSONA_CHILD),
        ],
    )
    def test_variant(self, mode: ChatMode, category: BookCategory, variant: PromptVariant) -> None:
        assert select_prompt_variant(mode, category) is variant

    def test_tutor_prompt_child_suffix(self) -> None:
        assert "Child-Friendly" not in build_tutor_prompt("Milo")
        child = build_tutor_prompt("Milo", child_friendly=True, age_group="8")
        assert "a child under 8 years old" in child

    def test_child_suffix_without_age(self) -> None:
        assert "a young child" in build_tutor_prompt("Milo", child_friendly=True)

    def test_persona_prompt(self, sample_character: Character) -> None:
        prompt = build_persona_prompt(sample_character, "The Lighthouse Keeper")

        assert prompt.startswith('You are **Ada** from the book **"The Lighthouse Keeper"**.')
        assert "Background:\nThe lighthouse keeper" in prompt
        assert "Personality Traits:\nStubborn, warm, quietly funny." in prompt
        assert '- "The lamp never sleeps."' in prompt
        assert "Child-Friendly" not in prompt


class TestAnswerComposer:
    @pytest.mark.asyncio
    async def test_tutor_answer(self, mock_llm_provider, fiction_book: Book) -> None:  # noqa: ANN001
        composer = AnswerComposer(mock_llm_provider)
        history = [
            ConversationTurn(role="user", content="Who is Ada?"),
            ConversationTurn(role="assistant", content="The keeper."),
        ]

        result = await composer.answer_question(
            fiction_book, "Why did she stay?", [_match(page_number=5)], history
        )

        assert result.answer == "A grounded answer."
        assert result.prompt_variant == "tutor"
        assert [s.chunk_id for s in result.sources] == ["c1"]
        messages = mock_llm_provider.chat.await_args.args[0]
        assert messages[0]["role"] == "system"
        assert 'tutor for the book "The Lighthouse Keeper"' in messages[0]["content"]
        assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user"]
        assert messages[-1]["content"].startswith("Context from book:\n\n### Page 5\n")
        assert messages[-1]["content"].endswith("Question: Why did she stay?")
        kwargs = mock_llm_provider.chat.await_args.kwargs
        assert (kwargs["temperature"], kwargs["max_tokens"]) == (0.2, 500)

    @pytest.mark.asyncio
    async def test_children_tutor_settings(self, mock_llm_provider, children_book: Book) -> None:  # noqa: ANN001
        result = await AnswerComposer(mock_llm_provider).answer_question(
            children_book, "Why the moon?", [_match()]
        )

        assert result.prompt_variant == "tutor_child"
        kwargs = mock_llm_provider.chat.await_args.kwargs
        assert (kwargs["temperature"], kwargs["max_tokens"]) == (0.3, 500)
        system = mock_llm_provider.chat.await_args.args[0][0]["content"]
        assert "a child under 8 years old" in system

    @pytest.mark.asyncio
    async def test_character_reply(
        self, mock_llm_provider, fiction_book: Book, sample_character: Character  # noqa: ANN001
    ) -> None:
        result = await AnswerComposer(mock_llm_provider).reply_as_character(
            fiction_book, sample_character, "Are you scared?", [_match()]
        )

        assert result.prompt_variant == "persona"
        messages = mock_llm_provider.chat.await_args.args[0]
        assert messages[-1]["content"].startswith("Book Context:\n### Excerpt 1\n")
        assert messages[-1]["content"].endswith("User Message: Are you scared?")
        kwargs = mock_llm_provider.chat.await_args.kwargs
        assert (kwargs["temperature"], kwargs["max_tokens"]) == (0.8, 300)

    @pytest.mark.asyncio
    async def test_no_matches_skips_llm(
        self, mock_llm_provider, fiction_book: Book, sample_character: Character  # noqa: ANN001
    ) -> None:
        composer = AnswerComposer(mock_llm_provider)

        qa = await composer.answer_question(fiction_book, "Anything?", [])
        chat = await composer.reply_as_character(fiction_book, sample_character, "Hi", [])

        assert qa.answer == NO_MATCH_ANSWER
        assert chat.answer == NO_MATCH_CHARACTER_REPLY
        assert qa.sources == chat.sources == []
        assert qa.prompt_variant is None
        mock_llm_provider.chat.assert_not_awaited()
