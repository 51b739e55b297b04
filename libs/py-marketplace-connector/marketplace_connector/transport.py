"""Authenticated HTTP transport for the marketplace API."""

import logging
from typing import Any

import httpx

from .auth import AuthManager
from .catalog_types import EndpointClass

logger = logging.getLogger(__name__)


class MarketplaceTransport:
    """
    Thin wrapper over httpx.AsyncClient that attaches auth headers.

    Non-2xx responses raise httpx.HTTPStatusError; classification into typed
    errors happens in RequestExecutor.
    """

    def __init__(self, http_client: httpx.AsyncClient, auth: AuthManager):
        self.http_client = http_client
        self.auth = auth

    async def request(
        self,
        method: str,
        path: str,
        endpoint_class: EndpointClass = EndpointClass.SIGNED,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> Any:
        """
        Send one request.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            endpoint_class: Which auth flow to use
            params: Query parameters (None values are dropped)
            json: JSON body
            idempotency_key: Sent as Idempotency-Key when given

        Returns:
            Decoded JSON body ({} for empty responses)

        Raises:
            httpx.HTTPStatusError: On non-2xx responses
            httpx.RequestError: On transport failures
        """
        headers = {"Content-Type": "application/json"}
        headers.update(await self.auth.get_auth_headers(endpoint_class))
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        query = {k: v for k, v in (params or {}).items() if v is not None}

        logger.debug("%s %s params=%s", method, path, query)
        response = await self.http_client.request(
            method, path, params=query, json=json, headers=headers
        )
        logger.debug("%s %s -> %d", method, path, response.status_code)

        if response.status_code == 401 and endpoint_class == EndpointClass.BEARER:
            # Next call fetches a fresh token
            await self.auth.invalidate_token()

        response.raise_for_status()

        if not response.content:
            return {}
        return response.json()
