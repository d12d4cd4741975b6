"""Abstract base class for LLM service providers.

Defines the contract for any chat-completion backend used for query
rewriting, persona extraction, and grounded answers.  Implementations may
wrap OpenAI or any OpenAI-compatible server; call sites stay
provider-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Literal, TypedDict


class ChatMessage(TypedDict):
    """One chat-completion message."""

    role: Literal["system", "user", "assistant"]
    content: str


# Concrete implementation: OpenAILLMProvider
# Located in: src/providers/llm/
class ILLMProvider(ABC):
    """Contract for LLM services used throughout storyshelf."""

    @abstractmethod
    async def chat(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        """Generate a reply to an ordered message list.

        Parameters
        ----------
        messages:
            System message first, then prior turns oldest-first, then the
            current user message.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.

        Returns
        -------
        str
            The model's text response, stripped.

        Raises
        ------
        src.utils.errors.ExternalServiceError
            ``LLMError`` if the API call fails or returns no content;
            ``NetworkError`` / ``RequestTimeoutError`` once retries are exhausted.
        """

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        """Single-turn convenience wrapper around :meth:`chat`."""
        return await self.chat(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this LLM provider.

        Example return values: ``"openai"``, ``"openai-compatible"``.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Implementations should verify that credentials are present without
        making a full inference call.
        """
