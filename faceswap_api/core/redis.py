"""
Token Cache Backends
Key-value stores used by the credential broker to keep OAuth tokens between requests.
"""

import logging
import time
from typing import Dict, Optional, Protocol, Tuple
from functools import lru_cache

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import ConnectionError, TimeoutError

from faceswap_api.core.config import settings

logger = logging.getLogger(__name__)


class TokenCache(Protocol):
    """Minimal key-value interface: the broker treats the cache as a dumb store."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        ...


class MemoryTokenCache:
    """
    Process-local cache with per-entry expiry.

    Used when no REDIS_URL is configured (local development, tests).
    """

    MAX_ENTRIES = 100

    def __init__(self, clock=time.time):
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        now = self._clock()
        self._entries[key] = (value, now + ttl_seconds)

        # Drop expired entries once the map grows
        if len(self._entries) > self.MAX_ENTRIES:
            for k in [k for k, (_, exp) in self._entries.items() if exp <= now]:
                del self._entries[k]

    def __len__(self) -> int:
        return len(self._entries)


class RedisTokenCache:
    """
    Redis-backed token cache shared by every worker process.

    Features:
    - Connection pooling
    - Native TTL via SET ... EX
    - Health checks
    """

    def __init__(self, url: Optional[str] = None, client: Optional[Redis] = None):
        self.url = url or settings.REDIS_URL
        self._client = client
        self._pool: Optional[ConnectionPool] = None

    def _create_pool(self) -> ConnectionPool:
        """Create Redis connection pool."""
        return ConnectionPool.from_url(
            self.url,
            max_connections=10,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            decode_responses=True
        )

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._pool = self._create_pool()
            self._client = Redis(connection_pool=self._pool)
            logger.info(f"Created Redis connection pool for {self._mask_url(self.url)}")
        return self._client

    async def get(self, key: str) -> Optional[str]:
        value = await self.client.get(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=ttl_seconds)

    async def health_check(self) -> dict:
        """
        Check Redis connection health.

        Returns:
            dict with status and info
        """
        try:
            ping_result = await self.client.ping()
            info = await self.client.info("server")

            return {
                "status": "healthy" if ping_result else "unhealthy",
                "connected": True,
                "redis_version": info.get("redis_version", "unknown"),
                "url": self._mask_url(self.url)
            }
        except (ConnectionError, TimeoutError) as e:
            logger.error(f"Redis health check failed: {e}")
            return {
                "status": "unhealthy",
                "connected": False,
                "error": str(e),
                "url": self._mask_url(self.url)
            }

    def _mask_url(self, url: str) -> str:
        """Mask password in Redis URL for logging."""
        if "@" in url:
            # redis://:password@host:port -> redis://***@host:port
            parts = url.split("@")
            return f"redis://***@{parts[-1]}"
        return url

    async def close(self):
        """Close all connections in the pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None
            logger.info("Redis connection pool closed")


@lru_cache()
def get_token_cache() -> TokenCache:
    """Get the process-wide token cache (Redis when configured, memory otherwise)."""
    if settings.REDIS_URL:
        return RedisTokenCache(settings.REDIS_URL)
    logger.info("REDIS_URL not set - using in-memory token cache")
    return MemoryTokenCache()


async def cache_health_check() -> dict:
    """Report which cache backend is active and whether it is reachable."""
    cache = get_token_cache()
    if isinstance(cache, RedisTokenCache):
        return await cache.health_check()
    return {"status": "healthy", "connected": True, "backend": "memory"}


__all__ = [
    "TokenCache",
    "MemoryTokenCache",
    "RedisTokenCache",
    "get_token_cache",
    "cache_health_check",
]
