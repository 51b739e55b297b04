"""Product catalog endpoints."""

import logging

from .catalog_types import Endpoint, EndpointClass, Product, ProductPage, ProductQuery
from .executor import RequestExecutor
from .transport import MarketplaceTransport

logger = logging.getLogger(__name__)


class ProductsAPI:
    """Read access to the product catalog (signed-header auth)."""

    def __init__(self, transport: MarketplaceTransport, executor: RequestExecutor):
        self.transport = transport
        self.executor = executor

    async def list(self, query: ProductQuery | None = None) -> ProductPage:
        """
        Fetch one page of products.

        Args:
            query: Server-side filters (page, price range, updated window, ...)

        Returns:
            ProductPage with total, page and docs
        """
        params = (query or ProductQuery()).to_params()

        async def call() -> ProductPage:
            data = await self.transport.request(
                "GET", "/products", EndpointClass.SIGNED, params=params
            )
            return ProductPage.model_validate(data)

        page = await self.executor.execute_request(Endpoint.PRODUCTS, "ProductsAPI.list", call)
        logger.info(
            "Fetched products page %d (%d items, total %d)", page.page, len(page.docs), page.total
        )
        return page

    async def get(self, product_id: str) -> Product:
        """Fetch a single product by id."""

        async def call() -> Product:
            data = await self.transport.request(
                "GET", f"/products/{product_id}", EndpointClass.SIGNED
            )
            return Product.model_validate(data)

        return await self.executor.execute_request(Endpoint.PRODUCTS, "ProductsAPI.get", call)
