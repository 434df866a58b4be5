"""In-memory cache provider using cachetools.TLRUCache.

Caches query-text embeddings for the query engine so repeated text
searches skip the embedding provider.  Supports a per-entry TTL: each
entry carries its own expiry, falling back to the default set at
construction time.
"""

from __future__ import annotations

from typing import Any, NamedTuple

import structlog
from cachetools import TLRUCache

from vecsearch.interfaces.cache_provider import ICacheProvider

logger = structlog.get_logger(logger_name=__name__)


class _Entry(NamedTuple):
    value: Any
    ttl: float


def _time_to_use(_key: str, entry: _Entry, now: float) -> float:
    return now + entry.ttl


class MemoryCacheProvider(ICacheProvider):
    """In-memory TTL cache backed by ``cachetools.TLRUCache``.

    Parameters
    ----------
    max_size:
        Maximum number of entries before the least-recently-used entry
        is evicted.
    ttl:
        Default time-to-live in seconds for entries stored without one.
    """

    def __init__(self, max_size: int = 1000, ttl: int = 3600) -> None:
        self._default_ttl = ttl
        self._cache: TLRUCache[str, _Entry] = TLRUCache(maxsize=max_size, ttu=_time_to_use)
        self._hits = 0
        self._misses = 0

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    def __len__(self) -> int:
        return len(self._cache)

    # ------------------------------------------------------------------
    # ICacheProvider implementation
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            logger.debug("cache_miss", key=key)
            return None
        self._hits += 1
        logger.debug("cache_hit", key=key)
        return entry.value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key*, expiring after *ttl* (or the default) seconds."""
        self._cache[key] = _Entry(value, float(self._default_ttl if ttl is None else ttl))
        logger.debug("cache_set", key=key)

    async def delete(self, key: str) -> None:
        self._cache.pop(key, None)
        logger.debug("cache_delete", key=key)

    async def exists(self, key: str) -> bool:
        return key in self._cache

    async def clear(self) -> None:
        self._cache.clear()
