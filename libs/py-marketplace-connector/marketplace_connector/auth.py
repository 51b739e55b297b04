"""Authentication header provider for both marketplace auth schemes."""

import logging
from typing import Any

import httpx

from .catalog_types import EndpointClass
from .config import Credentials
from .exceptions import AuthenticationError, InvalidCredentialsError, MarketplaceError, NetworkError
from .signing import SignedHeaderAuthenticator
from .token_cache import TokenCache
from .tokens import TokenManager

logger = logging.getLogger(__name__)


class AuthManager:
    """
    Produces per-request authentication headers.

    - EndpointClass.SIGNED: headers computed from credentials, no network call
    - EndpointClass.BEARER: cached bearer token fetched from GET /token
      using signed headers

    Args:
        credentials: API credentials
        base_url: API base URL (token endpoint lives at {base_url}/token)
        timeout: Token request timeout in seconds
        token_cache: Optional shared token cache
        http_client: Optional pre-built client (its base_url is used as-is)
    """

    def __init__(
        self,
        credentials: Credentials,
        base_url: str,
        timeout: float = 8.0,
        token_cache: TokenCache | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.credentials = credentials
        self.environment = credentials.environment
        self.signer = SignedHeaderAuthenticator(credentials)
        self.token_manager = TokenManager(token_cache)

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    def validate(self) -> None:
        """
        Validate credentials.

        Raises:
            InvalidCredentialsError: If credentials are malformed
        """
        errors = self.signer.validate_credentials()
        if errors:
            logger.error("Invalid marketplace credentials: %s", ", ".join(errors))
            raise InvalidCredentialsError(
                f"Invalid credentials: {', '.join(errors)}",
                context={"errors": errors},
            )

    async def get_auth_headers(self, endpoint_class: EndpointClass) -> dict[str, str]:
        """
        Build authentication headers for an endpoint class.

        Args:
            endpoint_class: SIGNED or BEARER

        Returns:
            Header dictionary

        Raises:
            AuthenticationError: If a bearer token cannot be obtained
        """
        if endpoint_class == EndpointClass.BEARER:
            token = await self.token_manager.get_token(self.environment, self.fetch_token)
            return {"Authorization": f"Bearer {token}"}

        return self.signer.get_auth_headers()

    async def fetch_token(self) -> dict[str, Any]:
        """
        Request a new bearer token from the token endpoint.

        Returns:
            Token response with access_token and expires_in

        Raises:
            AuthenticationError: On non-200 responses
            NetworkError: On transport failures
        """
        logger.debug("Fetching bearer token from /token")

        try:
            response = await self.http_client.get("/token", headers=self.signer.get_auth_headers())
        except httpx.RequestError as e:
            raise NetworkError(f"Network error during token fetch: {e}") from e

        if response.status_code != 200:
            raise AuthenticationError(
                f"Token fetch failed with status {response.status_code}",
                http_status=response.status_code,
            )

        data = response.json()
        if not data.get("access_token"):
            raise AuthenticationError("Missing access_token in token response")
        return data

    async def refresh_token(self) -> str:
        """Force a new bearer token."""
        logger.info("Refreshing bearer token")
        return await self.token_manager.refresh_token(self.environment, self.fetch_token)

    async def invalidate_token(self) -> None:
        """Drop the cached bearer token."""
        logger.info("Invalidating bearer token")
        await self.token_manager.invalidate_token(self.environment)

    async def test_authentication(self, endpoint_class: EndpointClass = EndpointClass.SIGNED) -> bool:
        """
        Check that authentication works.

        For BEARER this fetches (or reuses) a token; for SIGNED it validates
        the credentials locally.

        Returns:
            True on success, False otherwise
        """
        try:
            if endpoint_class == EndpointClass.BEARER:
                await self.token_manager.get_token(self.environment, self.fetch_token)
            else:
                self.validate()
        except MarketplaceError as e:
            logger.error("Authentication test failed: %s", e.message)
            return False

        logger.info("Authentication test passed (%s)", endpoint_class.value)
        return True

    async def close(self) -> None:
        """Close HTTP client and token cache."""
        if self._owns_client:
            await self.http_client.aclose()
        await self.token_manager.close()

    async def __aenter__(self) -> "AuthManager":
        """Context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Context manager exit."""
        await self.close()
