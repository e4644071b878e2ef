"""
Redis Cache for Review Synthesis
================================

Caches external lookups (TMDb movie details) in Redis, falling back to an
in-process dict when the Redis server cannot be reached.

Usage:
    cache = RedisCache()
    cache.set("tmdb:details:550", {"title": "Fight Club"}, ttl_hours=24)
    details = cache.get("tmdb:details:550")

Environment variables:
    REDIS_URL - Full Redis URL (redis://host:port/db)
    REDIS_HOST / REDIS_PORT / REDIS_DB / REDIS_PASSWORD - used when REDIS_URL is unset
    CACHE_PREFIX - Key prefix (default: synthesis)
"""

import os
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple

import redis

logger = logging.getLogger(__name__)

# Global cache instance (singleton)
_cache_instance: Optional["RedisCache"] = None


def _build_url() -> str:
    url = os.getenv("REDIS_URL")
    if url:
        return url

    host = os.getenv("REDIS_HOST", "localhost")
    port = int(os.getenv("REDIS_PORT", "6379"))
    db = int(os.getenv("REDIS_DB", "0"))
    password = os.getenv("REDIS_PASSWORD")

    if password:
        return f"redis://:{password}@{host}:{port}/{db}"
    return f"redis://{host}:{port}/{db}"


class RedisCache:
    """
    JSON cache with TTL.

    Uses the in-memory backend when Redis is unreachable at startup, or for
    a single call when a Redis command fails.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: Optional[str] = None,
        use_redis: bool = True,
    ):
        self.prefix = prefix or os.getenv("CACHE_PREFIX", "synthesis")
        self._redis: Optional[redis.Redis] = None
        self._memory_cache: Dict[str, Tuple[Optional[datetime], Any]] = {}

        if use_redis:
            self._connect(redis_url or _build_url())

    def _connect(self, url: str) -> None:
        try:
            client = redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            client.ping()
            self._redis = client
            logger.info(f"Redis cache connected: {url.split('@')[-1]}")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e}. Using in-memory cache.")
            self._redis = None

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> Optional[Any]:
        """Cached value or None if missing/expired."""
        full_key = self._make_key(key)

        if self._redis is None:
            return self._memory_get(full_key)

        try:
            value = self._redis.get(full_key)
            return json.loads(value) if value is not None else None
        except redis.RedisError as e:
            logger.warning(f"Redis get failed: {e}")
            return self._memory_get(full_key)

    def set(self, key: str, value: Any, ttl_hours: Optional[int] = None) -> bool:
        """Store a JSON-serializable value."""
        full_key = self._make_key(key)
        ttl = ttl_hours * 3600 if ttl_hours else None

        if self._redis is None:
            return self._memory_set(full_key, value, ttl)

        try:
            serialized = json.dumps(value, default=str)
            if ttl:
                self._redis.setex(full_key, ttl, serialized)
            else:
                self._redis.set(full_key, serialized)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis set failed: {e}")
            return self._memory_set(full_key, value, ttl)

    def delete(self, key: str) -> bool:
        full_key = self._make_key(key)

        if self._redis is None:
            return self._memory_cache.pop(full_key, None) is not None

        try:
            return self._redis.delete(full_key) > 0
        except redis.RedisError as e:
            logger.warning(f"Redis delete failed: {e}")
            return self._memory_cache.pop(full_key, None) is not None

    # =========================================================================
    # MEMORY FALLBACK
    # =========================================================================

    def _memory_get(self, key: str) -> Optional[Any]:
        if key not in self._memory_cache:
            return None

        expires_at, value = self._memory_cache[key]
        if expires_at and datetime.now(timezone.utc) > expires_at:
            del self._memory_cache[key]
            return None
        return value

    def _memory_set(self, key: str, value: Any, ttl_seconds: Optional[int]) -> bool:
        expires_at = None
        if ttl_seconds:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        self._memory_cache[key] = (expires_at, value)
        return True

    def close(self) -> None:
        if self._redis is not None:
            self._redis.close()
            self._redis = None


def get_cache(force_new: bool = False) -> RedisCache:
    """Get singleton cache instance."""
    global _cache_instance

    if _cache_instance is None or force_new:
        _cache_instance = RedisCache()

    return _cache_instance
