"""Incremental catalog sync based on updatedAt timestamps."""

import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from .batch import BatchFailure
from .catalog_types import Product, as_record
from .checkpoints import SyncCheckpoint, to_utc
from .conflicts import TRACKED_FIELDS, detect_changes, parse_timestamp
from .product_fetcher import BatchProductFetcher

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = timedelta(hours=24)
API_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DIFF_FIELDS = TRACKED_FIELDS + ("updatedAt",)

LocalRecord = Product | dict[str, Any] | None
LocalLookup = Callable[[str], LocalRecord | Awaitable[LocalRecord]]


def format_api_timestamp(value: datetime) -> str:
    """Format a timestamp the way the product listing expects (UTC)."""
    return to_utc(value).strftime(API_TIMESTAMP_FORMAT)


@dataclass
class DeltaSyncResult:
    """
    Classified changes since the previous checkpoint.

    checkpoint is the value to persist for the next run; it is never earlier
    than the checkpoint the run started from.
    """

    new: list[Product] = field(default_factory=list)
    updated: list[Product] = field(default_factory=list)
    unchanged: list[Product] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)
    truncated: bool = False
    since: datetime | None = None
    checkpoint: datetime | None = None
    duration: float = 0.0

    @property
    def total_fetched(self) -> int:
        return len(self.new) + len(self.updated) + len(self.unchanged)

    @property
    def changed(self) -> list[Product]:
        return self.new + self.updated


class DeltaSync:
    """Fetches products changed since a checkpoint and classifies them."""

    def __init__(self, fetcher: BatchProductFetcher, max_pages: int = 0):
        self.fetcher = fetcher
        self.max_pages = max_pages

    @staticmethod
    def _resolve_since(checkpoint: SyncCheckpoint | datetime | str | None) -> datetime:
        if checkpoint is None:
            return datetime.now(UTC) - DEFAULT_LOOKBACK
        if isinstance(checkpoint, SyncCheckpoint):
            return checkpoint.last_sync_at
        return to_utc(checkpoint)

    async def sync(
        self,
        checkpoint: SyncCheckpoint | datetime | str | None = None,
        local_lookup: LocalLookup | None = None,
    ) -> DeltaSyncResult:
        """
        Run one incremental sync.

        Args:
            checkpoint: Where the previous run stopped (default: 24 hours ago)
            local_lookup: Returns our stored version of a product id (sync or
                async). Without it, records created after the checkpoint are
                "new" and everything else is "updated".

        Returns:
            DeltaSyncResult with the advanced checkpoint
        """
        start = time.monotonic()
        started_at = datetime.now(UTC)
        since = self._resolve_since(checkpoint)

        logger.info("Starting delta sync since %s", format_api_timestamp(since))
        fetched = await self.fetcher.fetch_updated_since(format_api_timestamp(since), self.max_pages)

        result = DeltaSyncResult(
            since=since, failures=list(fetched.failures), truncated=fetched.truncated
        )
        for product in fetched.successes:
            if local_lookup is None:
                created = product.created_at
                if created and parse_timestamp(created) > since:
                    result.new.append(product)
                else:
                    result.updated.append(product)
                continue

            local = local_lookup(product.id)
            if inspect.isawaitable(local):
                local = await local
            if local is None:
                result.new.append(product)
            elif detect_changes(as_record(local), product.to_record(), DIFF_FIELDS):
                result.updated.append(product)
            else:
                result.unchanged.append(product)

        # Only move forward when the window was fetched completely
        if result.failures or result.truncated:
            logger.warning(
                "Delta sync incomplete (%d failed pages, truncated=%s); keeping checkpoint at %s",
                len(result.failures),
                result.truncated,
                format_api_timestamp(since),
            )
            result.checkpoint = since
        else:
            result.checkpoint = max(since, started_at)
        result.duration = time.monotonic() - start

        logger.info(
            "Delta sync completed: %d new, %d updated, %d unchanged in %.2fs",
            len(result.new),
            len(result.updated),
            len(result.unchanged),
            result.duration,
        )
        return result
