"""Pooled Redis connection for the redis credential backend."""
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisClient:
    """
    Async Redis connection that never raises RedisError.

    When Redis is disabled, unreachable, or fails mid-operation, each call returns its
    safe default (None / False) and callers treat the store as empty.
    """

    def __init__(self, url: str, enabled: bool = True, pool_size: int = 5) -> None:
        self._url = url
        self._enabled = enabled
        self._pool_size = pool_size
        self._client: Redis | None = None

    async def connect(self) -> None:
        """Open the pool and check the server answers."""
        if not self._enabled:
            logger.info("redis_disabled")
            return
        pool = ConnectionPool.from_url(self._url, max_connections=self._pool_size)
        client = Redis(connection_pool=pool)
        try:
            await client.ping()
        except RedisError as e:
            logger.warning("redis_connect_failed error=%s", e)
            await client.aclose()
            return
        self._client = client
        logger.info("redis_connected", extra={"pool_size": self._pool_size})

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("redis_closed")

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def get(self, key: str) -> bytes | None:
        return await self._guarded("get", lambda r: r.get(key), None)

    async def set_many(self, mapping: dict[str, str], seconds: int) -> bool:
        """Write several keys with one shared expiry, all or nothing."""
        async def write(r: Redis) -> bool:
            async with r.pipeline(transaction=True) as pipe:
                for key, value in mapping.items():
                    pipe.setex(key, seconds, value)
                await pipe.execute()
            return True

        return await self._guarded("set_many", write, False)

    async def delete(self, *keys: str) -> bool:
        async def remove(r: Redis) -> bool:
            await r.delete(*keys)
            return True

        return await self._guarded("delete", remove, False)

    async def _guarded(self, op: str, call: Callable[[Redis], Awaitable[T]], default: T) -> T:
        if self._client is None:
            return default
        try:
            return await call(self._client)
        except RedisError as e:
            logger.warning("redis_operation_failed op=%s error=%s", op, e)
            return default
