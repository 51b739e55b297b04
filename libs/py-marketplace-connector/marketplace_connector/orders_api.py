"""Order endpoints."""

import logging
from typing import Any

from .catalog_types import (
    Endpoint,
    EndpointClass,
    OrderCreated,
    OrderDetails,
    OrderKey,
    OrderPayment,
)
from .exceptions import ValidationError
from .executor import RequestExecutor
from .transport import MarketplaceTransport

logger = logging.getLogger(__name__)


class OrdersAPI:
    """
    Order creation, payment and key retrieval.

    Creation and payment are not idempotent upstream; pass an
    idempotency_key to let the vendor de-duplicate retried writes.
    """

    def __init__(self, transport: MarketplaceTransport, executor: RequestExecutor):
        self.transport = transport
        self.executor = executor

    async def create(
        self,
        product_id: str,
        currency: str | None = None,
        max_price: float | None = None,
        idempotency_key: str | None = None,
    ) -> OrderCreated:
        """
        Create an order for one product.

        Args:
            product_id: Product to buy
            currency: Order currency (vendor default is EUR)
            max_price: Reject the order if the price exceeds this
            idempotency_key: Optional de-duplication key

        Returns:
            OrderCreated with order_id, price and currency
        """
        if not product_id:
            raise ValidationError("product_id is required", field="product_id")
        if max_price is not None and max_price <= 0:
            raise ValidationError("max_price must be positive", field="max_price", value=max_price)

        body: dict[str, Any] = {"product_id": product_id}
        if currency:
            body["currency"] = currency
        if max_price is not None:
            body["max_price"] = max_price

        async def call() -> OrderCreated:
            data = await self.transport.request(
                "POST", "/order", EndpointClass.SIGNED, json=body, idempotency_key=idempotency_key
            )
            return OrderCreated.model_validate(data)

        order = await self.executor.execute_request(
            Endpoint.ORDERS, "OrdersAPI.create", call, idempotency_key=idempotency_key
        )
        logger.info("Created order %s for product %s", order.order_id, product_id)
        return order

    async def get_details(self, order_id: str) -> OrderDetails:
        """Fetch order status and price."""

        async def call() -> OrderDetails:
            data = await self.transport.request(
                "GET", f"/order/details/{order_id}", EndpointClass.SIGNED
            )
            return OrderDetails.model_validate(data)

        return await self.executor.execute_request(Endpoint.ORDERS, "OrdersAPI.get_details", call)

    async def pay(self, order_id: str, idempotency_key: str | None = None) -> OrderPayment:
        """Pay for an order."""

        async def call() -> OrderPayment:
            data = await self.transport.request(
                "PUT",
                f"/order/pay/{order_id}",
                EndpointClass.SIGNED,
                idempotency_key=idempotency_key,
            )
            return OrderPayment.model_validate(data)

        payment = await self.executor.execute_request(
            Endpoint.ORDERS, "OrdersAPI.pay", call, idempotency_key=idempotency_key
        )
        logger.info("Paid order %s (transaction %s)", order_id, payment.transaction_id)
        return payment

    async def get_key(self, order_id: str) -> OrderKey:
        """Fetch the key material of a paid order."""

        async def call() -> OrderKey:
            data = await self.transport.request(
                "GET", f"/order/key/{order_id}", EndpointClass.SIGNED
            )
            return OrderKey.model_validate(data)

        return await self.executor.execute_request(Endpoint.ORDERS, "OrdersAPI.get_key", call)
