"""
MarketplaceClient: wires configuration, resilience and endpoint wrappers.

Usage:
    config = ConnectorConfig.from_env()
    async with MarketplaceClient(config) as client:
        page = await client.products.list(ProductQuery(min_qty=1))
        result = await client.fetch_all()
"""

import logging
from typing import Any

import httpx

from .auth import AuthManager
from .batch import BatchOperations, BatchResult
from .batch_commerce import BatchOrderCreator, BatchPriceUpdater
from .catalog_types import EndpointClass, Product, ProductQuery
from .circuit_breaker import CircuitBreakerRegistry
from .config import ConnectorConfig, validate_config
from .conflicts import ConflictResolver
from .delta_sync import DeltaSync
from .error_mapper import ErrorMapper
from .executor import RequestExecutor
from .filters import ProductFilter
from .metrics import Metrics
from .orders_api import OrdersAPI
from .prices_api import PriceSimulationsAPI
from .product_fetcher import BatchProductFetcher, ProgressCallback
from .products_api import ProductsAPI
from .rate_limit import RateLimiter
from .retry import RetryStrategy
from .token_cache import RedisTokenCache, TokenCache
from .transport import MarketplaceTransport

logger = logging.getLogger(__name__)


class MarketplaceClient:
    """
    Entry point to the marketplace API.

    Args:
        config: Connector configuration (validated on construction)
        http_client: Optional pre-built httpx client, e.g. with a mock transport
        token_cache: Optional shared token cache; a Redis cache is built from
            config.cache_url when omitted
    """

    def __init__(
        self,
        config: ConnectorConfig,
        http_client: httpx.AsyncClient | None = None,
        token_cache: TokenCache | None = None,
    ):
        validate_config(config)
        self.config = config
        self.metrics = Metrics(enabled=config.metrics_enabled)

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            base_url=config.resolved_base_url, timeout=config.timeout
        )
        if token_cache is None and config.cache_url:
            token_cache = RedisTokenCache(config.cache_url)

        self.auth = AuthManager(
            config.credentials,
            config.resolved_base_url,
            timeout=config.timeout,
            token_cache=token_cache,
            http_client=self.http_client,
        )
        self.transport = MarketplaceTransport(self.http_client, self.auth)

        self.rate_limiter = RateLimiter(config.rate_limiting, self.metrics)
        self.breakers = CircuitBreakerRegistry(config.circuit_breaker, self.metrics)
        self.error_mapper = ErrorMapper()
        self.retry_strategy = RetryStrategy(config.retry, self.error_mapper, metrics=self.metrics)
        self.executor = RequestExecutor(
            self.rate_limiter,
            self.retry_strategy,
            self.breakers,
            self.error_mapper,
            self.metrics,
        )

        self.products = ProductsAPI(self.transport, self.executor)
        self.orders = OrdersAPI(self.transport, self.executor)
        self.prices = PriceSimulationsAPI(self.transport, self.executor)

        self.batch = BatchOperations(config.batch, self.executor)
        self.product_fetcher = BatchProductFetcher(self.products, config.batch)
        self.order_creator = BatchOrderCreator(self.orders, config.batch)
        self.price_updater = BatchPriceUpdater(self.prices, config.batch)
        self.delta_sync = DeltaSync(self.product_fetcher)
        self.conflict_resolver = ConflictResolver()

        logger.info(
            "Marketplace client ready (%s, %s)",
            config.environment.value,
            config.resolved_base_url,
        )

    def product_filter(self) -> ProductFilter:
        """Start a fluent product filter."""
        return ProductFilter(self.products)

    async def fetch_by_ids(self, product_ids: list[str]) -> BatchResult[Product]:
        return await self.product_fetcher.fetch_by_ids(product_ids)

    async def fetch_all(
        self, filters: ProductQuery | None = None, on_progress: ProgressCallback | None = None
    ) -> BatchResult[Product]:
        return await self.product_fetcher.fetch_all(filters, on_progress)

    async def fetch_updated_since(self, timestamp: str, max_pages: int = 0) -> BatchResult[Product]:
        return await self.product_fetcher.fetch_updated_since(timestamp, max_pages)

    async def test_connection(self, endpoint_class: EndpointClass = EndpointClass.SIGNED) -> bool:
        """Check credentials (and the token endpoint for BEARER)."""
        return await self.auth.test_authentication(endpoint_class)

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of metrics, rate limits, circuit breakers and retry config."""
        return {
            "metrics": self.metrics.get_all(),
            "rate_limits": self.rate_limiter.get_remaining(),
            "circuit_breakers": self.breakers.get_all_stats(),
            "retry": self.retry_strategy.get_stats(),
        }

    def reset(self) -> None:
        """Reset rate limiters, circuit breakers and metrics."""
        self.rate_limiter.reset()
        self.breakers.reset()
        self.metrics.reset()
        logger.info("Marketplace client state reset")

    async def close(self) -> None:
        await self.auth.close()
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "MarketplaceClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
