"""Bulk product retrieval: by id list or by walking the paginated listing."""

import asyncio
import logging
import time
from collections.abc import Callable

from .batch import BatchFailure, BatchOperations, BatchResult
from .catalog_types import Product, ProductQuery
from .config import BatchConfig
from .exceptions import CircuitOpenError
from .products_api import ProductsAPI

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, int], None]


class BatchProductFetcher:
    """
    Fetches many products while staying inside rate limits.

    Page walks pause between pages; id lookups run in small concurrent chunks.
    """

    def __init__(self, products_api: ProductsAPI, config: BatchConfig | None = None):
        self.products_api = products_api
        self.config = config or BatchConfig()
        self.batch = BatchOperations(
            self.config.model_copy(update={"max_batch_size": self.config.product_fetch_chunk_size})
        )

    async def fetch_by_ids(self, product_ids: list[str]) -> BatchResult[Product]:
        """Fetch products by id; missing or failing ids land in failures."""
        logger.info("Batch fetching %d products by id", len(product_ids))
        return await self.batch.execute(
            product_ids, self.products_api.get, "BatchProductFetcher.fetch_by_ids"
        )

    async def fetch_with_filters(
        self,
        filters: ProductQuery | None = None,
        max_pages: int = 0,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult[Product]:
        """
        Walk the listing page by page.

        Args:
            filters: Server-side filters; the page field is ignored
            max_pages: Page limit, 0 for unlimited
            on_progress: Called as on_progress(page, total, accumulated)

        Returns:
            BatchResult whose failures are indexed by page number; truncated
            is set when the walk stopped before the end of the listing
        """
        base = filters or ProductQuery()
        logger.info(
            "Fetching products with filters %s (max pages: %s)",
            base.to_params(),
            max_pages or "unlimited",
        )

        start = time.monotonic()
        products: list[Product] = []
        failures: list[BatchFailure] = []
        expected_total = 0
        consecutive_failures = 0
        reached_end = False
        page = 1

        while max_pages == 0 or page <= max_pages:
            query = base.model_copy(update={"page": page})
            try:
                response = await self.products_api.list(query)
            except CircuitOpenError as e:
                failures.append(BatchFailure(index=page, error=e, item=query))
                logger.error("Circuit breaker is open, stopping pagination at page %d", page)
                break
            except Exception as e:
                failures.append(BatchFailure(index=page, error=e, item=query))
                logger.warning("Failed to fetch page %d: %s", page, e)
                consecutive_failures += 1
                if max_pages > 0:
                    break
                if consecutive_failures >= self.config.max_consecutive_page_failures:
                    logger.error(
                        "%d consecutive page failures, stopping pagination at page %d",
                        consecutive_failures,
                        page,
                    )
                    break
                page += 1
                await asyncio.sleep(self.config.error_backoff)
                continue

            consecutive_failures = 0
            if not response.docs:
                reached_end = True
                break

            products.extend(response.docs)
            expected_total = response.total
            logger.debug(
                "Fetched page %d: %d items (accumulated %d of %d)",
                page,
                len(response.docs),
                len(products),
                expected_total,
            )
            if on_progress:
                on_progress(page, expected_total, len(products))

            if len(products) >= expected_total:
                reached_end = True
                break
            page += 1
            await asyncio.sleep(self.config.page_delay)

        if not reached_end:
            logger.warning(
                "Pagination stopped at page %d with %d of %d products",
                page,
                len(products),
                expected_total,
            )

        duration = time.monotonic() - start
        logger.info(
            "Fetch completed: %d products (expected %d), %d failed pages in %.2fs",
            len(products),
            expected_total,
            len(failures),
            duration,
        )
        return BatchResult.build(
            products,
            failures,
            len(products) + len(failures),
            duration,
            truncated=not reached_end,
        )

    async def fetch_all(
        self, filters: ProductQuery | None = None, on_progress: ProgressCallback | None = None
    ) -> BatchResult[Product]:
        """Fetch the complete catalog (optionally filtered)."""
        return await self.fetch_with_filters(filters, 0, on_progress)

    async def fetch_updated_since(self, timestamp: str, max_pages: int = 0) -> BatchResult[Product]:
        """
        Fetch products updated since a timestamp.

        Args:
            timestamp: "YYYY-MM-DD HH:MM:SS"
            max_pages: Page limit, 0 for unlimited
        """
        return await self.fetch_with_filters(ProductQuery(updated_at_from=timestamp), max_pages)
