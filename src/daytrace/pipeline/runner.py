"""Background loop that keeps pending batches flowing through the pipeline."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from daytrace.config.settings import PipelineConfig
from daytrace.domain.models import BatchStatus, ProcessedBatchResult
from daytrace.errors import StorageError
from daytrace.pipeline.orchestrator import BatchProcessor
from daytrace.storage.database import TimelineStore

logger = logging.getLogger(__name__)


class AnalysisLoop:
    """Polls for pending batches and processes them with bounded concurrency.

    Batches left in ``processing`` by an earlier crash are returned to
    ``pending`` when the loop starts. On stop, the WAL is truncated.
    """

    def __init__(
        self,
        store: TimelineStore,
        processor: BatchProcessor,
        config: PipelineConfig | None = None,
        on_tick: Callable[[], object] | None = None,
    ) -> None:
        self._store = store
        self._processor = processor
        self._config = config or PipelineConfig()
        self._on_tick = on_tick
        self._semaphore = asyncio.Semaphore(self._config.max_concurrent_batches)
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Signal the loop to stop after the current tick."""
        self._stop_event.set()
        logger.info("Analysis loop stop requested")

    async def _process_limited(self, batch_id: int) -> ProcessedBatchResult:
        async with self._semaphore:
            return await self._processor.process_batch(batch_id)

    async def run_once(self) -> list[ProcessedBatchResult]:
        """Process every batch currently pending."""
        if self._on_tick is not None:
            self._on_tick()
        pending = self._store.list_batches(BatchStatus.PENDING)
        if not pending:
            return []
        logger.info("Found %d pending batches", len(pending))
        # oldest first: a later batch may wait for an earlier one to write its cards,
        # so the earlier one must never queue for a slot behind it
        results = await asyncio.gather(*(self._process_limited(b.id) for b in pending))
        failed = sum(1 for r in results if not r.succeeded)
        logger.info("Tick finished: %d analyzed, %d failed", len(results) - failed, failed)
        return list(results)

    async def run(self) -> None:
        self._running = True
        self._stop_event.clear()
        self._store.recover_stuck_batches()
        logger.info(
            "Analysis loop starting (poll=%.0fs, concurrency=%d)",
            self._config.poll_interval, self._config.max_concurrent_batches,
        )
        try:
            while not self._stop_event.is_set():
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("Error in analysis loop: %s", e)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._config.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            try:
                self._store.checkpoint("TRUNCATE")
            except StorageError as e:
                logger.warning("Shutdown checkpoint failed: %s", e)
            logger.info("Analysis loop finished")
