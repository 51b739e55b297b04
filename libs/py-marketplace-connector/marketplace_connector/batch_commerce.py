"""Batch order creation and price simulation."""

import logging
import uuid
from collections.abc import Callable

from pydantic import BaseModel

from .batch import BatchFailure, BatchOperations, BatchResult
from .catalog_types import OrderCreated, PriceSimulation
from .config import BatchConfig
from .exceptions import ValidationError
from .orders_api import OrdersAPI
from .prices_api import PriceSimulationsAPI

logger = logging.getLogger(__name__)

ORDER_CHUNK_SIZE = 5
ORDER_CONCURRENCY = 2


class OrderRequest(BaseModel):
    """One order to place."""

    product_id: str
    currency: str | None = None
    max_price: float | None = None
    client_order_id: str | None = None

    def idempotency_key(self) -> str:
        """Stable key when a client id is set, otherwise unique per call."""
        if self.client_order_id:
            return f"order-{self.client_order_id}"
        return f"order-{uuid.uuid4()}"


class OrderResult(BaseModel):
    order: OrderCreated
    client_order_id: str | None = None
    idempotency_key: str


class PaidOrder(BaseModel):
    order: OrderResult
    paid: bool
    transaction_id: str | None = None


class PriceUpdateRequest(BaseModel):
    product_id: str
    new_price: float
    current_price: float | None = None
    country: str | None = None

    def changed(self, threshold: float = 0.0) -> bool:
        """True when the price moves by more than threshold (unknown current counts as changed)."""
        if self.current_price is None:
            return True
        return abs(self.new_price - self.current_price) > threshold


class PriceUpdateResult(BaseModel):
    product_id: str
    old_price: float | None = None
    new_price: float
    simulation: PriceSimulation


class BatchOrderCreator:
    """Creates (and optionally pays) orders in small, low-concurrency chunks."""

    def __init__(self, orders_api: OrdersAPI, config: BatchConfig | None = None):
        self.orders_api = orders_api
        base = config or BatchConfig()
        self.batch = BatchOperations(
            base.model_copy(
                update={
                    "max_batch_size": ORDER_CHUNK_SIZE,
                    "max_concurrent_requests": ORDER_CONCURRENCY,
                }
            )
        )

    async def create_orders(self, orders: list[OrderRequest]) -> BatchResult[OrderResult]:
        """Create every order; each request carries its own idempotency key."""
        logger.info("Batch creating %d orders", len(orders))

        async def create(request: OrderRequest) -> OrderResult:
            key = request.idempotency_key()
            created = await self.orders_api.create(
                request.product_id,
                currency=request.currency,
                max_price=request.max_price,
                idempotency_key=key,
            )
            return OrderResult(
                order=created, client_order_id=request.client_order_id, idempotency_key=key
            )

        return await self.batch.execute(orders, create, "BatchOrderCreator.create_orders")

    async def create_and_pay_orders(self, orders: list[OrderRequest]) -> BatchResult[PaidOrder]:
        """
        Create orders, then pay for the ones that were created.

        Failures of the payment step are indexed within the created orders.
        """
        created = await self.create_orders(orders)
        if created.failure_count:
            logger.warning("%d orders failed to create", created.failure_count)

        async def pay(result: OrderResult) -> PaidOrder:
            payment = await self.orders_api.pay(
                result.order.order_id, idempotency_key=f"pay-{result.idempotency_key}"
            )
            return PaidOrder(order=result, paid=payment.success, transaction_id=payment.transaction_id)

        return await self.batch.execute(created.successes, pay, "BatchOrderCreator.pay_orders")

    async def create_orders_with_retry(
        self, orders: list[OrderRequest], max_retries: int = 2
    ) -> BatchResult[OrderResult]:
        """Re-submit failed orders up to max_retries more times."""
        result = await self.create_orders(orders)
        successes = list(result.successes)
        failures = result.failures
        duration = result.duration

        attempt = 0
        while failures and attempt < max_retries:
            attempt += 1
            logger.info("Retrying %d failed orders (round %d)", len(failures), attempt)
            pending = failures
            retry = await self.create_orders([f.item for f in pending])
            successes.extend(retry.successes)
            # Keep the original input index on failures that persist
            failures = [
                BatchFailure(index=pending[f.index].index, error=f.error, item=f.item)
                for f in retry.failures
            ]
            duration += retry.duration

        return BatchResult.build(successes, failures, len(orders), duration)


class BatchPriceUpdater:
    """Simulates price changes for many products, skipping unchanged prices."""

    def __init__(
        self,
        prices_api: PriceSimulationsAPI,
        config: BatchConfig | None = None,
        change_threshold: float = 0.0,
    ):
        if change_threshold < 0:
            raise ValidationError(
                "change_threshold must be non-negative", field="change_threshold", value=change_threshold
            )
        self.prices_api = prices_api
        self.change_threshold = change_threshold
        base = config or BatchConfig()
        self.batch = BatchOperations(
            base.model_copy(update={"max_batch_size": base.product_fetch_chunk_size})
        )

    async def simulate_prices(
        self, updates: list[PriceUpdateRequest]
    ) -> BatchResult[PriceUpdateResult]:
        """Simulate only the updates whose price changed beyond the threshold."""
        changed = [u for u in updates if u.changed(self.change_threshold)]
        if len(changed) < len(updates):
            logger.info(
                "Skipping %d unchanged prices out of %d", len(updates) - len(changed), len(updates)
            )

        async def simulate(update: PriceUpdateRequest) -> PriceUpdateResult:
            simulation = await self.prices_api.simulate(
                update.product_id, update.new_price, update.country
            )
            return PriceUpdateResult(
                product_id=update.product_id,
                old_price=update.current_price,
                new_price=update.new_price,
                simulation=simulation,
            )

        return await self.batch.execute(changed, simulate, "BatchPriceUpdater.simulate_prices")

    async def apply_prices_with_validation(
        self,
        updates: list[PriceUpdateRequest],
        validator: Callable[[PriceUpdateResult], bool] | None = None,
    ) -> BatchResult[PriceUpdateResult]:
        """Simulate, then drop results the validator rejects into failures."""
        simulated = await self.simulate_prices(updates)
        valid: list[PriceUpdateResult] = []
        rejected: list[BatchFailure] = []
        for index, result in enumerate(simulated.successes):
            if validator is None or validator(result):
                valid.append(result)
            else:
                rejected.append(
                    BatchFailure(
                        index=index,
                        error=ValidationError(
                            f"Price validation failed for product {result.product_id}",
                            field="price",
                            value=result.new_price,
                        ),
                        item=result,
                    )
                )

        logger.info("Price validation: %d valid, %d rejected", len(valid), len(rejected))
        failures = simulated.failures + rejected
        return BatchResult.build(valid, failures, len(valid) + len(failures), simulated.duration)
