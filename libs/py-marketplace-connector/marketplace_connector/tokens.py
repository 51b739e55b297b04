"""
Bearer token lifecycle.

Tokens are held in-process and mirrored to an optional shared TokenCache.
The in-process copy is always written, so an unreachable shared cache only
costs extra token fetches.

Concurrent callers that observe a near-expiry token may each fetch a new
one; the last write wins.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .catalog_types import CachedToken, Environment
from .exceptions import AuthenticationError
from .token_cache import InMemoryTokenCache, TokenCache

logger = logging.getLogger(__name__)

REFRESH_THRESHOLD_SECONDS = 300
CACHE_KEY_PREFIX = "marketplace:oauth2:token"

TokenFetcher = Callable[[], Awaitable[dict[str, Any]]]


class TokenManager:
    """
    Caches bearer tokens per environment and refreshes them near expiry.

    Args:
        cache: Optional shared cache (defaults to process-local only)
        refresh_threshold: Seconds before expiry at which a token is refreshed
    """

    def __init__(
        self,
        cache: TokenCache | None = None,
        refresh_threshold: float = REFRESH_THRESHOLD_SECONDS,
    ):
        self.cache = cache
        self.refresh_threshold = refresh_threshold
        self._local = InMemoryTokenCache()

    @staticmethod
    def cache_key(environment: Environment | str) -> str:
        env = environment.value if isinstance(environment, Environment) else environment
        return f"{CACHE_KEY_PREFIX}:{env}"

    async def get_cached(self, environment: Environment | str) -> CachedToken | None:
        """
        Return a usable cached token without fetching.

        Checks the in-process copy first, then the shared cache.
        """
        key = self.cache_key(environment)

        token = await self._local.get(key)
        if token is not None and token.is_usable(self.refresh_threshold):
            return token

        if self.cache is not None:
            shared = await self.cache.get(key)
            if shared is not None and shared.is_usable(self.refresh_threshold):
                await self._local.set(key, shared, int(shared.seconds_remaining()))
                return shared

        return None

    async def get_token(self, environment: Environment | str, fetch_fn: TokenFetcher) -> str:
        """
        Get a valid access token, fetching a new one when needed.

        Args:
            environment: Environment the token belongs to
            fetch_fn: Coroutine function returning the token endpoint response

        Returns:
            Access token string

        Raises:
            AuthenticationError: If fetching a new token fails (retryable)
        """
        token = await self.get_cached(environment)
        if token is not None:
            return token.access_token

        logger.info("Fetching new bearer token for %s", self.cache_key(environment))
        token = await self._fetch_and_store(environment, fetch_fn)
        return token.access_token

    async def _fetch_and_store(
        self,
        environment: Environment | str,
        fetch_fn: TokenFetcher,
    ) -> CachedToken:
        try:
            data = await fetch_fn()
            token = CachedToken.from_response(data)
        except AuthenticationError as e:
            e.retryable = True
            raise
        except Exception as e:
            raise AuthenticationError(
                f"Failed to obtain bearer token: {e}",
                retryable=True,
            ) from e

        key = self.cache_key(environment)
        ttl = int(token.seconds_remaining())

        await self._local.set(key, token, ttl)
        if self.cache is not None:
            await self.cache.set(key, token, ttl)

        logger.debug("Stored bearer token for %s (expires in %ds)", key, ttl)
        return token

    async def invalidate_token(self, environment: Environment | str) -> None:
        """Drop the cached token everywhere."""
        key = self.cache_key(environment)
        await self._local.delete(key)
        if self.cache is not None:
            await self.cache.delete(key)

    async def refresh_token(self, environment: Environment | str, fetch_fn: TokenFetcher) -> str:
        """Invalidate and fetch a fresh token."""
        await self.invalidate_token(environment)
        return await self.get_token(environment, fetch_fn)

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
