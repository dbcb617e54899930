"""
Redis implementation of the DedupCache interface.
Keeps comparison values in one Redis hash so they survive restarts.
"""

import logging
from typing import Iterable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from domain.ports import DedupCache, DedupCacheError


logger = logging.getLogger(__name__)


class RedisDedupCache(DedupCache):
    """
    Dedup cache stored in a Redis hash keyed by raw template text.
    The hash TTL is refreshed on every write, so an idle feed expires.
    """

    def __init__(
        self,
        client: redis.Redis,
        hash_key: str = "mqtt-feed:dedup",
        ttl_seconds: int = 604800  # 7 days
    ):
        """
        Initialize Redis dedup cache.

        Args:
            client: redis.asyncio client created with decode_responses=True
            hash_key: Redis hash holding the entries
            ttl_seconds: TTL applied to the hash after each write
        """
        self.client = client
        self.hash_key = hash_key
        self.ttl_seconds = ttl_seconds

    @classmethod
    async def connect(
        cls,
        url: str,
        hash_key: str = "mqtt-feed:dedup",
        ttl_seconds: int = 604800,
        socket_timeout: float = 5.0
    ) -> "RedisDedupCache":
        """
        Open a connection pool for ``url`` and verify it with PING.

        Raises:
            DedupCacheError: If Redis is unreachable
        """
        client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            health_check_interval=30,
            decode_responses=True
        )

        try:
            await client.ping()
        except RedisError as e:
            await client.aclose()
            logger.error(f"Failed to connect to Redis: {e}")
            raise DedupCacheError(f"Redis connection failed: {e}") from e

        logger.info(
            "Connected to Redis dedup backend",
            extra={"component": "redis_dedup", "hash_key": hash_key}
        )
        return cls(client, hash_key=hash_key, ttl_seconds=ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.hget(self.hash_key, key)
        except RedisError as e:
            raise DedupCacheError(f"Redis dedup read failed: {e}") from e

    async def upsert(self, key: str, value: str) -> None:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(self.hash_key, key, value)
                pipe.expire(self.hash_key, self.ttl_seconds)
                await pipe.execute()
        except RedisError as e:
            raise DedupCacheError(f"Redis dedup write failed: {e}") from e

    async def reconcile(self, keys: Iterable[str]) -> int:
        keep = set(keys)
        try:
            stale = [key for key in await self.client.hkeys(self.hash_key) if key not in keep]
            if stale:
                await self.client.hdel(self.hash_key, *stale)
        except RedisError as e:
            raise DedupCacheError(f"Redis dedup reconcile failed: {e}") from e

        if stale:
            logger.info(
                f"Dropped {len(stale)} stale dedup entries",
                extra={
                    "component": "redis_dedup",
                    "hash_key": self.hash_key,
                    "removed": len(stale)
                }
            )
        return len(stale)

    async def size(self) -> int:
        try:
            return await self.client.hlen(self.hash_key)
        except RedisError as e:
            raise DedupCacheError(f"Redis dedup size failed: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Redis connection closed", extra={"component": "redis_dedup"})
