"""
Shared bearer token cache.

Two implementations of the same interface:
- InMemoryTokenCache: process-local dict
- RedisTokenCache: shared across processes; every failure is logged and
  reported as a cache miss, never raised
"""

import logging
import time
from abc import ABC, abstractmethod

import redis.asyncio as aioredis
from pydantic import ValidationError as ModelValidationError
from redis.exceptions import RedisError

from .catalog_types import CachedToken

logger = logging.getLogger(__name__)


class TokenCache(ABC):
    """Key/value store for cached bearer tokens."""

    @abstractmethod
    async def get(self, key: str) -> CachedToken | None:
        """Return the token stored under key, or None."""

    @abstractmethod
    async def set(self, key: str, token: CachedToken, ttl_seconds: int) -> None:
        """Store a token for ttl_seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a stored token."""

    async def close(self) -> None:
        """Release connections."""


class InMemoryTokenCache(TokenCache):
    """Process-local token cache."""

    def __init__(self) -> None:
        self._items: dict[str, tuple[CachedToken, float]] = {}

    async def get(self, key: str) -> CachedToken | None:
        item = self._items.get(key)
        if item is None:
            return None
        token, expires = item
        if time.monotonic() >= expires:
            self._items.pop(key, None)
            return None
        return token

    async def set(self, key: str, token: CachedToken, ttl_seconds: int) -> None:
        self._items[key] = (token, time.monotonic() + max(ttl_seconds, 0))

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)


class RedisTokenCache(TokenCache):
    """
    Redis-backed token cache.

    Args:
        url: Redis connection URL (redis://host:port/db)
        timeout: Socket connect/read timeout in seconds
    """

    def __init__(self, url: str, timeout: float = 2.0):
        self.url = url
        self._client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
        )

    async def get(self, key: str) -> CachedToken | None:
        try:
            raw = await self._client.get(key)
        except (RedisError, OSError) as e:
            logger.warning("Token cache read failed for %s, using in-process copy: %s", key, e)
            return None

        if not raw:
            return None

        try:
            return CachedToken.model_validate_json(raw)
        except ModelValidationError:
            logger.warning("Discarding malformed cached token under %s", key)
            return None

    async def set(self, key: str, token: CachedToken, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            await self._client.setex(key, ttl_seconds, token.model_dump_json())
        except (RedisError, OSError) as e:
            logger.warning("Token cache write failed for %s: %s", key, e)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except (RedisError, OSError) as e:
            logger.warning("Token cache delete failed for %s: %s", key, e)

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.warning("Token cache close failed: %s", e)
