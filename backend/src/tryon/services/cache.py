"""Best-effort key-value cache backends.

The cache is an optimization, never a dependency: every backend operation
returns a neutral value (None / no-op) instead of raising when the backend is
disabled or unreachable. Call sites therefore never need their own error
handling around cache access.
"""

import asyncio
from abc import ABC, abstractmethod

import structlog
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from tryon.core.config import Settings

logger = structlog.get_logger()


class CacheBackend(ABC):
    """Minimal string cache interface."""

    name: str = "cache"

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    @abstractmethod
    async def delete(self, *keys: str) -> None: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    async def close(self) -> None:
        return None


class NullCache(CacheBackend):
    """Used when caching is disabled: every read misses, every write is dropped."""

    name = "disabled"

    async def get(self, key: str) -> str | None:
        return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        return None

    async def delete(self, *keys: str) -> None:
        return None

    async def ping(self) -> bool:
        return False


class RedisCache(CacheBackend):
    """Redis-backed cache with lazy connection.

    The first operation connects (and pings); operations issued while that
    attempt is in flight wait on it instead of opening their own connection.
    A failed connection is logged and the operation degrades to a miss; the
    next operation tries again.
    A client that errors mid-operation is dropped so the next call reconnects.
    """

    name = "redis"

    def __init__(self, client_factory, connect_timeout: float = 2.0):
        """Initialize Redis cache.

        Args:
            client_factory: Zero-argument callable returning a redis.asyncio.Redis
            connect_timeout: Seconds allowed for the initial ping
        """
        self._client_factory = client_factory
        self.connect_timeout = connect_timeout
        self._client: Redis | None = None
        self._connecting: asyncio.Future | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisCache":
        timeout = settings.redis_connect_timeout_ms / 1000

        def factory() -> Redis:
            if settings.redis_url:
                return Redis.from_url(
                    settings.redis_url,
                    socket_connect_timeout=timeout,
                    decode_responses=True,
                )
            return Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                socket_connect_timeout=timeout,
                decode_responses=True,
            )

        return cls(factory, connect_timeout=timeout)

    async def get(self, key: str) -> str | None:
        client = await self._get_client()
        if client is None:
            return None
        try:
            value = await client.get(key)
        except (RedisError, OSError) as e:
            await self._on_error("get", e)
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        client = await self._get_client()
        if client is None:
            return
        try:
            await client.setex(key, ttl_seconds, value)
        except (RedisError, OSError) as e:
            await self._on_error("set", e)

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        client = await self._get_client()
        if client is None:
            return
        try:
            await client.delete(*keys)
        except (RedisError, OSError) as e:
            await self._on_error("delete", e)

    async def ping(self) -> bool:
        client = await self._get_client()
        if client is None:
            return False
        try:
            return bool(await client.ping())
        except (RedisError, OSError) as e:
            await self._on_error("ping", e)
            return False

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await _close_quietly(client)

    async def _get_client(self) -> Redis | None:
        if self._client is not None:
            return self._client

        # Concurrent callers share one connection attempt and its outcome
        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._connect())
            self._connecting.add_done_callback(self._clear_connecting)
        return await asyncio.shield(self._connecting)

    def _clear_connecting(self, task: asyncio.Future) -> None:
        if self._connecting is task:
            self._connecting = None

    async def _connect(self) -> Redis | None:
        client = None
        try:
            client = self._client_factory()
            await asyncio.wait_for(client.ping(), timeout=self.connect_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(
                "cache.connect_failed",
                backend=self.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            if client is not None:
                await _close_quietly(client)
            return None

        logger.info("cache.connected", backend=self.name)
        self._client = client
        return client

    async def _on_error(self, operation: str, error: Exception) -> None:
        logger.warning(
            "cache.operation_failed",
            backend=self.name,
            operation=operation,
            error=str(error),
            error_type=type(error).__name__,
        )
        if isinstance(error, (RedisConnectionError, OSError)):
            await self.close()


async def _close_quietly(client: Redis) -> None:
    try:
        await client.aclose()
    except (RedisError, OSError) as e:
        logger.debug("cache.close_failed", error=str(e))


def create_cache_backend(settings: Settings) -> CacheBackend:
    """Pick the cache backend for this process."""
    if settings.redis_disable:
        logger.info("cache.disabled")
        return NullCache()
    return RedisCache.from_settings(settings)
