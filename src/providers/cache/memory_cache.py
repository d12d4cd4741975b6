"""Process-local cache provider built on ``cachetools.TLRUCache``.

Two instances exist at runtime: one remembers processing-trigger
idempotency keys, the other holds rewritten search queries.  Neither is
shared between worker processes.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, NamedTuple

import structlog
from cachetools import TLRUCache

from src.interfaces.cache_provider import ICacheProvider

logger = structlog.get_logger(logger_name=__name__)


class _Entry(NamedTuple):
    value: Any
    ttl: float


def _expires_at(_key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class MemoryCacheProvider(ICacheProvider):
    """Bounded in-memory cache with a time-to-live on every entry.

    Parameters
    ----------
    max_size:
        Entry limit; the least recently used entry goes first when full.
    ttl:
        Seconds an entry lives when ``set`` is called without its own ttl.
    timer:
        Monotonic clock, replaceable in tests.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl: int = 3600,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        self._default_ttl = float(ttl)
        self._entries: TLRUCache[str, _Entry] = TLRUCache(
            maxsize=max_size, ttu=_expires_at, timer=timer
        )

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("cache_miss", key=key)
            return None
        logger.debug("cache_hit", key=key)
        return entry.value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        self._entries[key] = _Entry(value, float(ttl) if ttl else self._default_ttl)
        logger.debug("cache_set", key=key, ttl=ttl or self._default_ttl)

    async def add(self, key: str, value: Any) -> bool:
        # Check and write happen without yielding to the event loop.
        if key in self._entries:
            logger.debug("cache_add_rejected", key=key)
            return False
        self._entries[key] = _Entry(value, self._default_ttl)
        return True

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self._entries
