"""Cache provider implementations."""

from vecsearch.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
