"""
Redis Cache Module

Short-lived cache in front of the metrics aggregator. Dashboards poll the
same (metric, window) repeatedly; entries live at most `cache_ttl_seconds`
and carry the time they were computed, so staleness is always visible.

The cache is an optimization only: any Redis error is logged and the call
goes through to the record store.
"""

import json
from datetime import datetime
from typing import Any, Optional, Tuple

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from src.config import get_settings
from src.domain.models import utcnow

logger = structlog.get_logger(__name__)

# Global Redis connection
_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis() -> Optional[Redis]:
    """
    Initialize the Redis connection pool.

    Returns None when Redis is unreachable; metrics are then served uncached.
    """
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = get_settings()
    _redis_pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=True,
    )
    client = Redis(connection_pool=_redis_pool)

    try:
        await client.ping()
        logger.info("Redis connection established")
    except (RedisError, OSError) as e:
        logger.warning("Redis unavailable, metrics cache disabled", error=str(e))
        await client.aclose()
        await _redis_pool.disconnect()
        _redis_pool = None
        return None

    _redis_client = client
    return _redis_client


async def close_redis() -> None:
    """Close Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None

    logger.info("Redis connection closed")


def get_redis() -> Optional[Redis]:
    """Get Redis client instance, None when not connected"""
    return _redis_client


class MetricsCache:
    """
    Namespaced JSON cache for computed metrics.

    Example:
        cache = MetricsCache(get_redis(), ttl=120)
        key = cache.key_for("kpis", days=30)
        hit = await cache.get(key)
        if hit is None:
            await cache.set(key, payload)
    """

    def __init__(self, client: Optional[Redis], ttl: int = 120, namespace: str = "metrics"):
        self.client = client
        self.ttl = ttl
        self.namespace = namespace

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def key_for(self, metric: str, **params: Any) -> str:
        """Stable key: parameters sorted by name"""
        parts = [f"{name}={params[name]}" for name in sorted(params)]
        return ":".join([self.namespace, metric, *parts])

    async def get(self, key: str) -> Optional[Tuple[Any, datetime]]:
        """
        Cached payload and the time it was computed.

        Returns:
            (payload, cached_at) or None on miss or error
        """
        if self.client is None:
            return None
        try:
            raw = await self.client.get(key)
        except (RedisError, OSError) as e:
            logger.warning("Cache read failed", key=key, error=str(e))
            return None
        if raw is None:
            return None

        try:
            entry = json.loads(raw)
            return entry["payload"], datetime.fromisoformat(entry["cached_at"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable cache entry", key=key, error=str(e))
            return None

    async def set(self, key: str, payload: Any) -> bool:
        if self.client is None:
            return False
        try:
            serialized = json.dumps({"cached_at": utcnow().isoformat(), "payload": payload}, default=str)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to serialize value for cache", key=key, error=str(e))
            return False
        try:
            await self.client.setex(key, self.ttl, serialized)
        except (RedisError, OSError) as e:
            logger.warning("Cache write failed", key=key, error=str(e))
            return False
        return True

    async def invalidate_all(self) -> int:
        """Drop every metric entry; called after bulk writes"""
        if self.client is None:
            return 0
        try:
            keys = [key async for key in self.client.scan_iter(match=f"{self.namespace}:*")]
            if not keys:
                return 0
            return await self.client.delete(*keys)
        except (RedisError, OSError) as e:
            logger.warning("Cache invalidation failed", error=str(e))
            return 0
