"""
Caching utilities for Codewarden.

Provides a TTL-based cache used to share generated insights between
repeated analyses of an unchanged repository.
"""

from typing import Any, Optional

from cachetools import TTLCache

from codewarden.core.config import get_settings
from codewarden.core.logging import get_logger

logger = get_logger("cache")


class CacheManager:
    """
    TTL-based cache manager.

    Features:
    - Configurable TTL and size
    - Hit/miss statistics
    """

    def __init__(self, maxsize: Optional[int] = None, ttl: Optional[int] = None):
        settings = get_settings()
        self.ttl = ttl or settings.insight_cache_ttl
        self.maxsize = maxsize or settings.insight_cache_size
        self._cache = TTLCache(maxsize=self.maxsize, ttl=self.ttl)
        self._stats = {"hits": 0, "misses": 0}

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        value = self._cache.get(key)
        if value is not None:
            self._stats["hits"] += 1
            logger.debug(f"Cache hit: {key}")
        else:
            self._stats["misses"] += 1
            logger.debug(f"Cache miss: {key}")
        return value

    def set(self, key: str, value: Any) -> None:
        """Set value in cache."""
        self._cache[key] = value
        logger.debug(f"Cache set: {key}")

    @property
    def stats(self) -> dict[str, int]:
        """Get cache statistics."""
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = self._stats["hits"] / total if total > 0 else 0
        return {
            **self._stats,
            "total": total,
            "hit_rate": round(hit_rate, 3),
            "size": len(self._cache),
        }


_insight_cache: Optional[CacheManager] = None


def get_insight_cache() -> CacheManager:
    """Get the process-wide insight cache (24h TTL by default)."""
    global _insight_cache
    if _insight_cache is None:
        _insight_cache = CacheManager()
    return _insight_cache
