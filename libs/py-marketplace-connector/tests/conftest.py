"""Shared fixtures for marketplace connector tests."""

import httpx
import pytest

from marketplace_connector import MarketplaceClient
from marketplace_connector.config import (
    BatchConfig,
    ConnectorConfig,
    Credentials,
    RateLimitingConfig,
    RetryConfig,
)

BASE_URL = "https://api.test/v1"


@pytest.fixture
def config():
    """Fast configuration: no jitter, tiny delays, no rate limiting."""
    return ConnectorConfig(
        credentials=Credentials(client_id="test-client-id", client_secret="test-client-secret"),
        base_url=BASE_URL,
        retry=RetryConfig(max_retries=2, initial_delay=0.01, max_delay=0.05, jitter=False),
        rate_limiting=RateLimitingConfig(enabled=False),
        batch=BatchConfig(page_delay=0, error_backoff=0),
    )


@pytest.fixture
def product():
    """Factory for product payloads as the API returns them."""

    def _product(product_id: str, **overrides):
        data = {
            "id": product_id,
            "name": f"Product {product_id}",
            "slug": f"product-{product_id}",
            "qty": 10,
            "price": 19.99,
            "currency": "EUR",
            "platform": "steam",
            "region": "GLOBAL",
            "type": "game",
            "availableToBuy": True,
            "createdAt": "2024-01-01 00:00:00",
            "updatedAt": "2024-01-02 00:00:00",
        }
        data.update(overrides)
        return data

    return _product


@pytest.fixture
def make_client(config):
    """Factory building a MarketplaceClient backed by an httpx.MockTransport handler."""

    def _make(handler, **overrides):
        cfg = config.model_copy(update=overrides) if overrides else config
        http_client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
        return MarketplaceClient(cfg, http_client=http_client)

    return _make
