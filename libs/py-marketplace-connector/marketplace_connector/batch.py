"""
Generic batch execution.

Items are split into chunks of max_batch_size; at most max_concurrent_requests
chunks are in flight at once and the items of a chunk run concurrently.
Per-item failures are collected with their original index instead of
aborting the batch.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .catalog_types import Endpoint
from .config import BatchConfig
from .exceptions import BatchPartialFailureError
from .executor import RequestExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class BatchFailure:
    """A failed item: its position in the input, the error and the item itself."""

    index: int
    error: Exception
    item: Any = None

    def to_dict(self) -> dict[str, Any]:
        error = self.error.to_dict() if hasattr(self.error, "to_dict") else {"message": str(self.error)}
        return {"index": self.index, "error": error}


@dataclass(frozen=True)
class BatchResult(Generic[R]):
    """
    Outcome of a batch.

    successes are in input order; success_count + failure_count == total.
    """

    successes: list[R] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)
    success_count: int = 0
    failure_count: int = 0
    total: int = 0
    duration: float = 0.0
    # Set by page walks that stopped before reaching the server-side total
    truncated: bool = False

    @classmethod
    def build(
        cls,
        successes: list[R],
        failures: list[BatchFailure],
        total: int,
        duration: float,
        truncated: bool = False,
    ) -> "BatchResult[R]":
        return cls(
            successes=successes,
            failures=failures,
            success_count=len(successes),
            failure_count=len(failures),
            total=total,
            duration=duration,
            truncated=truncated,
        )

    @property
    def failed_indices(self) -> list[int]:
        return [f.index for f in self.failures]

    @property
    def ok(self) -> bool:
        return self.failure_count == 0


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    """Split a sequence into consecutive chunks of at most size items."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [items[i : i + size] for i in range(0, len(items), size)]


class BatchOperations:
    """Chunked, bounded-concurrency execution of a per-item coroutine."""

    def __init__(self, config: BatchConfig | None = None, executor: RequestExecutor | None = None):
        self.config = config or BatchConfig()
        self.executor = executor

    async def execute(
        self,
        items: Sequence[T],
        per_item_fn: Callable[[T], Awaitable[R]],
        operation: str,
        endpoint: Endpoint | str | None = None,
    ) -> BatchResult[R]:
        """
        Run per_item_fn over every item.

        Args:
            items: Input items
            per_item_fn: Coroutine function applied to each item
            operation: Name used in logs
            endpoint: When given (and an executor is configured), each call is
                routed through RequestExecutor for rate limiting, retry and
                circuit breaking

        Returns:
            BatchResult; never raises for per-item failures
        """
        start = time.monotonic()
        chunk_size = self.config.max_batch_size
        chunks = chunked(items, chunk_size)
        semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)
        outcomes: list[tuple[bool, Any]] = [(False, None)] * len(items)

        logger.info(
            "Starting batch %s: %d items in %d chunks (concurrency %d)",
            operation,
            len(items),
            len(chunks),
            self.config.max_concurrent_requests,
        )

        async def run_item(index: int, item: T) -> None:
            try:
                if endpoint is not None and self.executor is not None:
                    result = await self.executor.execute_request(
                        endpoint, operation, lambda: per_item_fn(item)
                    )
                else:
                    result = await per_item_fn(item)
                outcomes[index] = (True, result)
            except Exception as e:
                logger.debug("Batch %s item %d failed: %s", operation, index, e)
                outcomes[index] = (False, e)

        async def run_chunk(chunk_index: int, chunk: Sequence[T]) -> None:
            async with semaphore:
                offset = chunk_index * chunk_size
                await asyncio.gather(*(run_item(offset + i, item) for i, item in enumerate(chunk)))
                logger.debug("Batch %s finished chunk %d/%d", operation, chunk_index + 1, len(chunks))

        await asyncio.gather(*(run_chunk(i, chunk) for i, chunk in enumerate(chunks)))

        successes: list[R] = []
        failures: list[BatchFailure] = []
        for index, (ok, value) in enumerate(outcomes):
            if ok:
                successes.append(value)
            else:
                failures.append(BatchFailure(index=index, error=value, item=items[index]))

        result = BatchResult.build(successes, failures, len(items), time.monotonic() - start)
        logger.info(
            "Batch %s completed: %d succeeded, %d failed in %.2fs",
            operation,
            result.success_count,
            result.failure_count,
            result.duration,
        )
        return result

    async def execute_strict(
        self,
        items: Sequence[T],
        per_item_fn: Callable[[T], Awaitable[R]],
        operation: str,
        endpoint: Endpoint | str | None = None,
    ) -> list[R]:
        """
        Like execute, but raise when any item failed.

        Raises:
            BatchPartialFailureError: Carrying the successes count and the failures
        """
        result = await self.execute(items, per_item_fn, operation, endpoint)
        if result.failure_count:
            raise BatchPartialFailureError(
                result.success_count,
                result.failure_count,
                [f.to_dict() for f in result.failures],
            )
        return result.successes
