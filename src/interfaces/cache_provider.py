"""Key-value cache contract.

storyshelf caches two things: acknowledgements of processing triggers,
keyed by the caller's idempotency key, and LLM-rewritten search queries.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


# Concrete implementation: MemoryCacheProvider (src/providers/cache/)
class ICacheProvider(ABC):
    """Async key-value store with expiry.

    Methods are coroutines so a networked backend can implement the same
    contract.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the live value for *key*, or ``None``."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value*, replacing any previous one.

        *ttl* is in seconds; ``None`` means the provider's default.
        """

    @abstractmethod
    async def add(self, key: str, value: Any) -> bool:
        """Store *value* only when *key* has no live entry.

        Returns ``False``, leaving the existing entry alone, when the key is
        taken.  The dispatcher relies on this to accept an idempotency key
        exactly once.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Drop *key* if present."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether *key* has a live entry."""
