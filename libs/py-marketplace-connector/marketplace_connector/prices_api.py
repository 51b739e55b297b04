"""Price simulation endpoint."""

import logging

from .catalog_types import Endpoint, EndpointClass, PriceSimulation
from .exceptions import ValidationError
from .executor import RequestExecutor
from .transport import MarketplaceTransport

logger = logging.getLogger(__name__)


class PriceSimulationsAPI:
    """Simulates seller income for a proposed price (bearer-token auth)."""

    def __init__(self, transport: MarketplaceTransport, executor: RequestExecutor):
        self.transport = transport
        self.executor = executor

    async def simulate(
        self,
        product_id: str,
        price: float,
        country: str | None = None,
    ) -> PriceSimulation:
        """
        Simulate a price.

        Args:
            product_id: Product to price
            price: Proposed price
            country: Optional buyer country code

        Returns:
            PriceSimulation with final_price and income
        """
        if price <= 0:
            raise ValidationError("price must be positive", field="price", value=price)

        params = {"productId": product_id, "price": price, "country": country}

        async def call() -> PriceSimulation:
            data = await self.transport.request(
                "GET", "/prices/simulations", EndpointClass.BEARER, params=params
            )
            return PriceSimulation.model_validate(data)

        simulation = await self.executor.execute_request(
            Endpoint.PRICES, "PriceSimulationsAPI.simulate", call
        )
        logger.debug(
            "Simulated price %s for %s: final=%s income=%s",
            price,
            product_id,
            simulation.final_price,
            simulation.income,
        )
        return simulation
