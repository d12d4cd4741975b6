"""Cache providers.

MemoryCacheProvider is a TTL cache used for trigger idempotency keys and
rewritten search queries.  It is not shared across processes.
"""

from src.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
