"""
Cache-aside store for analyzer results.

Backed by Redis. Keys are built from (analyzer, url, option hash); values are
JSON documents written with a single SET ... EX so an entry is either fully
present or absent. Redis failures are logged and behave like a miss.
"""
import hashlib
import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from techaudit.config import settings

logger = logging.getLogger(__name__)


def option_hash(options: dict[str, Any] | None) -> str:
    """Stable hash of the options that affect an analyzer's output."""
    payload = json.dumps(options or {}, sort_keys=True, default=str)
    return hashlib.md5(payload.encode()).hexdigest()[:12]


class AnalysisCache:
    """Redis-backed result cache. Disabled when no REDIS_URL is configured."""

    def __init__(self, redis_url: str | None = None, enabled: bool | None = None, prefix: str | None = None):
        self.redis_url = redis_url if redis_url is not None else settings.REDIS_URL
        self.enabled = (enabled if enabled is not None else settings.CACHE_ENABLED) and bool(self.redis_url)
        self.prefix = prefix or settings.CACHE_KEY_PREFIX
        self._redis: Optional[redis.Redis] = None

    async def get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None

    def make_key(self, analyzer: str, url: str, options: dict[str, Any] | None = None) -> str:
        digest = hashlib.md5(f"{url}|{option_hash(options)}".encode()).hexdigest()
        return f"{self.prefix}:{analyzer}:{digest}"

    async def get(self, key: str) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        try:
            r = await self.get_redis()
            raw = await r.get(key)
        except RedisError as e:
            logger.warning(f"[CACHE] Read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"[CACHE] Discarding undecodable entry {key}")
            return None
        logger.debug(f"[CACHE] Hit {key}")
        return value

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> bool:
        if not self.enabled:
            return False
        try:
            r = await self.get_redis()
            await r.set(key, json.dumps(value, default=str), ex=ttl_seconds)
        except RedisError as e:
            logger.warning(f"[CACHE] Write failed for {key}: {e}")
            return False
        return True


class NullCache(AnalysisCache):
    """Cache that never stores anything."""

    def __init__(self):
        super().__init__(redis_url="", enabled=False)
