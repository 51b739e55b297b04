"""Runs several sync streams with per-stream failure isolation."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .reconciliation import ReconciliationReport, SyncReconciliation

logger = logging.getLogger(__name__)

SnapshotFn = Callable[[], Awaitable[tuple[list[Any], list[Any]]]]


@dataclass
class SyncStream:
    """
    A named unit of sync work.

    Attributes:
        name: Stream name, unique within one run
        run: Coroutine function performing the sync; its return value is reported
        snapshot: Optional coroutine function returning (remote, local) items
            for the reconciliation pass
    """

    name: str
    run: Callable[[], Awaitable[Any]]
    snapshot: SnapshotFn | None = None


@dataclass
class SyncReport:
    results: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    durations: dict[str, float] = field(default_factory=dict)
    reconciliations: dict[str, ReconciliationReport] = field(default_factory=dict)
    total_duration: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.errors and all(r.valid for r in self.reconciliations.values())


class SyncOrchestrator:
    """Runs streams sequentially or concurrently; one failing stream never stops the rest."""

    def __init__(self, reconciliation: SyncReconciliation | None = None):
        self.reconciliation = reconciliation or SyncReconciliation()

    async def _run_stream(self, stream: SyncStream, report: SyncReport) -> None:
        start = time.monotonic()
        try:
            report.results[stream.name] = await stream.run()
        except Exception as e:
            logger.error("Sync stream %s failed: %s", stream.name, e, exc_info=True)
            report.errors[stream.name] = f"{type(e).__name__}: {e}"
        finally:
            report.durations[stream.name] = time.monotonic() - start

    async def _reconcile_stream(self, stream: SyncStream, report: SyncReport) -> None:
        try:
            remote, local = await stream.snapshot()
            report.reconciliations[stream.name] = self.reconciliation.verify(remote, local)
        except Exception as e:
            logger.error("Reconciliation of %s failed: %s", stream.name, e)
            report.errors[f"{stream.name}.reconcile"] = f"{type(e).__name__}: {e}"

    async def run(
        self,
        streams: list[SyncStream],
        parallel: bool = False,
        reconcile: bool = False,
    ) -> SyncReport:
        """
        Run the given streams.

        Args:
            streams: Streams to run
            parallel: Run all streams concurrently instead of in order
            reconcile: After a stream succeeds, verify its snapshot

        Returns:
            SyncReport with per-stream results and errors
        """
        names = [s.name for s in streams]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate stream names: {names}")

        logger.info("Starting sync of %s (parallel=%s)", ", ".join(names), parallel)
        start = time.monotonic()
        report = SyncReport()

        if parallel:
            await asyncio.gather(*(self._run_stream(s, report) for s in streams))
        else:
            for stream in streams:
                await self._run_stream(stream, report)

        if reconcile:
            for stream in streams:
                if stream.snapshot is not None and stream.name not in report.errors:
                    await self._reconcile_stream(stream, report)

        report.total_duration = time.monotonic() - start
        logger.info(
            "Sync finished in %.2fs: %d succeeded, %d errors",
            report.total_duration,
            len(report.results),
            len(report.errors),
        )
        return report
