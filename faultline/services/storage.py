"""
Key-value stores used to persist buffered error events.

The logging service only needs four operations (get, set, remove, list
keys), so persistence is expressed as a small abstract interface with two
implementations:

- InMemoryKeyValueStore for tests and single-run tools
- RedisKeyValueStore backed by redis.asyncio with connection pooling and
  retry logic for transient connection errors

Adapters raise StorageError on failure; the logging service swallows those.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    RedisError,
    TimeoutError as RedisTimeoutError,
)

from faultline.exceptions import StorageError
from faultline.utils.resilience import retry_with_backoff


logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Durable string key-value store consumed by the logging service."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value stored at ``key`` or None."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` at ``key``, replacing any previous value."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete ``key``; deleting a missing key is not an error."""

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        """Return all keys starting with ``prefix``."""


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store backed by a dict."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)


class RedisKeyValueStore(KeyValueStore):
    """
    Redis-backed store with connection pooling and retry logic.

    Transient connection and timeout errors are retried with exponential
    backoff; anything else (or exhausting the retries) raises StorageError.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        connection_timeout: int = 5
    ):
        """
        Initialize Redis store.

        Args:
            redis_url: Redis connection URL. If None, will load from settings.
            max_retries: Maximum number of attempts for transient errors
            retry_delay: Base delay between retries in seconds (exponential backoff)
            connection_timeout: Connection timeout in seconds
        """
        self._redis_url = redis_url
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._connection_timeout = connection_timeout

    async def initialize(self) -> None:
        """
        Initialize Redis connection pool.

        Raises:
            StorageError: If connection fails
        """
        try:
            if not self._redis_url:
                from faultline.config import settings
                self._redis_url = settings.redis_url
            if not self._redis_url:
                raise StorageError("No Redis URL configured")

            self._pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=10,
                decode_responses=True,
                socket_timeout=self._connection_timeout,
                socket_connect_timeout=self._connection_timeout
            )
            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()

            logger.info("Redis connection pool initialized successfully")

        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Failed to initialize Redis connection pool: {e}")
            raise StorageError(f"Failed to connect to Redis: {e}") from e

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._client:
            await self._client.aclose()

        if self._pool:
            await self._pool.disconnect()

        logger.info("Redis connection pool closed")

    @asynccontextmanager
    async def _get_client(self):
        """
        Get Redis client with connection check.

        Raises:
            StorageError: If client not initialized
        """
        if not self._client:
            raise StorageError("Redis store not initialized. Call initialize() first.")

        yield self._client

    async def _retry_operation(self, operation, *args, **kwargs):
        """
        Execute Redis operation with retry logic.

        Raises:
            StorageError: If operation fails after all retries or with a
                non-transient error
        """
        retrying = retry_with_backoff(
            max_retries=self._max_retries,
            base_delay=self._retry_delay,
            exceptions=(RedisConnectionError, RedisTimeoutError),
        )(operation)

        try:
            return await retrying(*args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StorageError(
                f"Redis operation failed after {self._max_retries} attempts: {e}"
            ) from e
        except RedisError as e:
            logger.error(f"Redis operation failed with non-transient error: {e}")
            raise StorageError(f"Redis operation failed: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        async def _get():
            async with self._get_client() as client:
                return await client.get(key)

        return await self._retry_operation(_get)

    async def set(self, key: str, value: str) -> None:
        async def _set():
            async with self._get_client() as client:
                await client.set(key, value)

        await self._retry_operation(_set)

    async def remove(self, key: str) -> None:
        async def _remove():
            async with self._get_client() as client:
                await client.delete(key)

        await self._retry_operation(_remove)

    async def list_keys(self, prefix: str = "") -> List[str]:
        async def _list():
            async with self._get_client() as client:
                pattern = _escape_glob(prefix) + "*"
                return [key async for key in client.scan_iter(match=pattern)]

        return await self._retry_operation(_list)


def _escape_glob(text: str) -> str:
    """Escape Redis glob metacharacters in a literal key prefix."""
    escaped = []
    for char in text:
        if char in "*?[]\\":
            escaped.append("\\" + char)
        else:
            escaped.append(char)
    return "".join(escaped)


def get_key_value_store(redis_url: Optional[str] = None) -> KeyValueStore:
    """
    Create the default store for a configuration.

    Args:
        redis_url: Redis connection URL; an in-memory store is used when unset

    Returns:
        KeyValueStore instance (Redis stores still need ``initialize()``)
    """
    if redis_url:
        return RedisKeyValueStore(redis_url=redis_url)
    return InMemoryKeyValueStore()
