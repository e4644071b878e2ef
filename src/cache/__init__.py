"""
Review Synthesis Cache Module
=============================

Redis-based caching of external lookups with in-memory fallback.

Usage:
    from src.cache import get_cache

    cache = get_cache()
    cache.set("tmdb:details:550", {...}, ttl_hours=24)
"""

from .redis_cache import RedisCache, get_cache

__all__ = ["RedisCache", "get_cache"]
