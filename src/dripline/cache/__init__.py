"""Caching layer.

Usage:
    from dripline.cache import MemoryCache

    seen = MemoryCache(default_ttl=3600)
    if seen.add("effect:state-1:4"):
        ...  # first time this key was recorded
"""

from dripline.cache.backends import Cache, CacheEntry, CacheStats, MemoryCache

__all__ = [
    "Cache",
    "CacheEntry",
    "CacheStats",
    "MemoryCache",
]
