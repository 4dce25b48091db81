"""
Process-wide key/value cache (Redis) shared by sessions, feed caches, view counters and
the token blacklist. Constructed once in the app lifespan and injected everywhere else.
"""
from __future__ import annotations

import logging
from typing import Any

from redis.asyncio import Redis, from_url
from redis.exceptions import RedisError

from app.core.errors import CacheUnavailableError

logger = logging.getLogger(__name__)


class CacheClient:
    """Thin async wrapper over a Redis client; Redis failures surface as CacheUnavailableError."""

    def __init__(self, client: Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 2.0) -> "CacheClient":
        client = from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    async def connect(self) -> None:
        """Verify connectivity once at startup. Raises CacheUnavailableError."""
        try:
            await self.client.ping()
        except (RedisError, OSError) as e:
            logger.error("Redis connection failed: %s", e)
            raise CacheUnavailableError(str(e)) from e
        logger.info("Redis connection established")

    async def disconnect(self) -> None:
        try:
            await self.client.aclose()
        except (RedisError, OSError) as e:
            logger.warning("Redis: error closing connection: %s", e)
        else:
            logger.info("Redis connection closed")

    async def health_check(self) -> bool:
        try:
            await self.client.ping()
            return True
        except (RedisError, OSError) as e:
            logger.error("Redis health check failed: %s", e)
            return False

    async def get(self, key: str) -> str | None:
        try:
            return await self.client.get(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"GET {key}: {e}") from e

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Set key to value; ttl in seconds, None means no expiry."""
        try:
            if ttl is None:
                await self.client.set(key, value)
            else:
                await self.client.set(key, value, ex=max(1, int(ttl)))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"SET {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"DEL {key}: {e}") from e

    async def incr(self, key: str) -> int:
        try:
            return int(await self.client.incr(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"INCR {key}: {e}") from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"EXISTS {key}: {e}") from e
