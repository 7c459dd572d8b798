"""Drives one batch end-to-end through the analysis pipeline.

transcribe -> store observations -> synthesize window -> replace cards
-> mark analyzed -> checkpoint. Any failure along the way resolves to a
failed batch plus an error card; ``process_batch`` never raises for a
pipeline failure.

Concurrent batches are kept apart in three ways. Each batch id has its
own lock, and a batch is claimed in the database before any work starts.
Batches whose trailing windows overlap write their cards in end time
order. The read-synthesize-replace step itself runs under mutexes keyed
by coarse time bucket.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Callable, Hashable, Iterable, Sequence

from daytrace.config.settings import PipelineConfig
from daytrace.domain.models import (
    Batch,
    BatchStatus,
    CategoryDescriptor,
    LLMCall,
    ProcessedBatchResult,
    ProcessingStep,
)
from daytrace.errors import NoScreenshotsError, StorageError
from daytrace.pipeline.recovery import build_error_card, humanize_error
from daytrace.pipeline.segments import SegmentPolicy
from daytrace.pipeline.synthesis import SlidingWindowSynthesizer
from daytrace.providers.base import LLMProvider
from daytrace.storage.cleanup import remove_orphaned_artifacts
from daytrace.storage.database import TimelineStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProcessingStep], None]
ProviderSource = Callable[[], LLMProvider]


class KeyedLocks:
    """asyncio locks created on first use.

    An entry is dropped as soon as nobody holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: Counter = Counter()

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class WindowLocks:
    """Mutexes keyed by time bucket.

    A range holds the lock of every bucket it touches, acquired in
    ascending order. Two ranges that overlap always share a bucket.
    """

    def __init__(self, bucket_seconds: int = 3600) -> None:
        self._bucket_seconds = bucket_seconds
        self._locks = KeyedLocks()

    def __len__(self) -> int:
        return len(self._locks)

    def buckets(self, start_ts: int, end_ts: int) -> list[int]:
        last = max(start_ts, end_ts - 1)
        return list(range(start_ts // self._bucket_seconds, last // self._bucket_seconds + 1))

    @asynccontextmanager
    async def hold(self, start_ts: int, end_ts: int) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            for bucket in self.buckets(start_ts, end_ts):
                await stack.enter_async_context(self._locks.hold(bucket))
            yield


class SynthesisOrder:
    """Lets batches with overlapping windows write cards oldest first.

    A batch registers when it is handed to the processor. Before writing
    cards it waits until every registered batch that ends earlier, and
    whose window overlaps its own, has left. A later batch therefore
    always synthesizes over the earlier one's finished cards, and an
    earlier batch never replaces a window a later one already wrote.
    """

    def __init__(self, window_seconds: int) -> None:
        self._window_seconds = window_seconds
        self._ends: dict[int, int] = {}
        self._entries: Counter = Counter()
        self._changed = asyncio.Condition()

    def __len__(self) -> int:
        return len(self._ends)

    def enter(self, batch: Batch) -> None:
        self._ends[batch.id] = batch.end_ts
        self._entries[batch.id] += 1

    async def leave(self, batch_id: int) -> None:
        self._entries[batch_id] -= 1
        if not self._entries[batch_id]:
            del self._entries[batch_id]
            del self._ends[batch_id]
        async with self._changed:
            self._changed.notify_all()

    def blockers(self, batch: Batch) -> list[int]:
        window_start = batch.end_ts - self._window_seconds
        return [
            other
            for other, end_ts in self._ends.items()
            if other != batch.id
            and (end_ts, other) < (batch.end_ts, batch.id)
            and end_ts > window_start
        ]

    async def wait_turn(self, batch: Batch) -> None:
        async with self._changed:
            if self.blockers(batch):
                logger.info("Batch %d waiting for batches %s", batch.id, self.blockers(batch))
            await self._changed.wait_for(lambda: not self.blockers(batch))


class BatchProcessor:
    """Processes batches one at a time per id."""

    def __init__(
        self,
        store: TimelineStore,
        resolver: ProviderSource,
        categories: Sequence[CategoryDescriptor],
        config: PipelineConfig | None = None,
        remove_files: Callable[[Iterable[str]], list[str]] = remove_orphaned_artifacts,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._config = config or PipelineConfig()
        self._remove_files = remove_files
        window_seconds = self._config.window_minutes * 60
        self._policy = SegmentPolicy(
            target_samples=self._config.target_samples,
            min_seconds=self._config.min_segment_seconds,
            max_seconds=self._config.max_segment_seconds,
            idle_seconds=self._config.idle_threshold_seconds,
        )
        self._synthesizer = SlidingWindowSynthesizer(
            store, categories, window_seconds, self._config.min_segment_seconds
        )
        self._windows = WindowLocks(window_seconds)
        self._order = SynthesisOrder(window_seconds)
        self._batch_locks = KeyedLocks()

    def is_busy(self, batch_id: int) -> bool:
        return self._batch_locks.locked(batch_id)

    async def process_batch(
        self, batch_id: int, progress: ProgressCallback | None = None
    ) -> ProcessedBatchResult:
        """Analyze a pending batch.

        A batch that is no longer pending when its turn comes (for example
        a duplicate request that waited on the lock, or a batch another
        process claimed) is left untouched.

        Raises:
            BatchNotFoundError: If no batch has this id.
        """
        batch = self._store.get_batch(batch_id)
        self._order.enter(batch)
        try:
            async with self._batch_locks.hold(batch_id):
                if not self._store.claim_batch(batch_id):
                    status = self._store.get_batch(batch_id).status
                    logger.info("Batch %d is %s, skipping", batch_id, status.value)
                    return ProcessedBatchResult(batch_id=batch_id, status=status)
                return await self._run(self._store.get_batch(batch_id), progress)
        finally:
            await self._order.leave(batch_id)

    async def reprocess_batch(
        self, batch_id: int, progress: ProgressCallback | None = None
    ) -> ProcessedBatchResult:
        """Reset a batch to pending and run the full pipeline again.

        Raises:
            BatchNotFoundError: If no batch has this id.
            BatchBusyError: If another worker is processing the batch.
        """
        batch = self._store.get_batch(batch_id)
        self._order.enter(batch)
        try:
            async with self._batch_locks.hold(batch_id):
                self._store.reset_batch_for_reprocess(batch_id)
                logger.info("Reprocessing batch %d", batch_id)
                if not self._store.claim_batch(batch_id):
                    status = self._store.get_batch(batch_id).status
                    logger.info("Batch %d was claimed elsewhere, skipping", batch_id)
                    return ProcessedBatchResult(batch_id=batch_id, status=status)
                return await self._run(self._store.get_batch(batch_id), progress)
        finally:
            await self._order.leave(batch_id)

    async def _run(self, batch: Batch, progress: ProgressCallback | None) -> ProcessedBatchResult:
        logger.info(
            "Processing batch %d [%d, %d] (%ds)",
            batch.id, batch.start_ts, batch.end_ts, batch.duration_seconds,
        )
        provider: LLMProvider | None = None
        try:
            provider = self._resolver()

            screenshots = self._store.screenshots_for_batch(batch.id)
            if not screenshots:
                raise NoScreenshotsError("No screenshots in batch")

            _notify(progress, ProcessingStep.TRANSCRIBING)
            observations, log = await provider.transcribe_screenshots(
                screenshots, batch.start_ts, batch.end_ts, policy=self._policy, batch_id=batch.id
            )
            self._store.record_llm_call(log, batch.id)
            self._store.save_observations(batch.id, observations)
            logger.info("Batch %d: %d screenshots -> %d observations",
                        batch.id, len(screenshots), len(observations))

            await self._order.wait_turn(batch)
            if not observations:
                # nothing happened on screen; clear whatever an earlier attempt left
                logger.warning("Transcription returned no observations for batch %d", batch.id)
                async with self._windows.hold(batch.start_ts, batch.end_ts):
                    _, orphans = self._store.replace_cards_in_range(
                        batch.start_ts, batch.end_ts, [], batch.id
                    )
                self._remove_files(orphans)
                self._store.update_batch_status(batch.id, BatchStatus.ANALYZED)
                self._checkpoint()
                return ProcessedBatchResult(batch_id=batch.id, status=BatchStatus.ANALYZED)

            _notify(progress, ProcessingStep.GENERATING_CARDS)
            start, end = self._synthesizer.window_for(batch)
            async with self._windows.hold(start, end):
                cards, log = await self._synthesizer.synthesize(provider, batch, observations)
                self._store.record_llm_call(log, batch.id)
                card_ids, orphans = self._store.replace_cards_in_range(start, end, cards, batch.id)
            self._remove_files(orphans)

            self._store.update_batch_status(batch.id, BatchStatus.ANALYZED)
            self._checkpoint()
            logger.info("Batch %d analyzed: %d cards", batch.id, len(card_ids))
            return ProcessedBatchResult(
                batch_id=batch.id, status=BatchStatus.ANALYZED, cards=cards, card_ids=card_ids
            )
        except Exception as e:
            return await self._fail(batch, e, provider)
        finally:
            if provider is not None:
                await provider.aclose()

    async def _fail(
        self, batch: Batch, error: Exception, provider: LLMProvider | None
    ) -> ProcessedBatchResult:
        reason = humanize_error(error)
        logger.error("Batch %d failed: %s (%s: %s)", batch.id, reason, type(error).__name__, error)
        card = build_error_card(batch, error)
        card_ids: list[int] = []
        try:
            current = self._store.get_batch(batch.id).status
            if current in (BatchStatus.PENDING, BatchStatus.PROCESSING):
                self._store.update_batch_status(batch.id, BatchStatus.FAILED, reason)
            self._store.record_llm_call(
                LLMCall(
                    operation="process_batch",
                    provider=provider.name if provider else "",
                    model=provider.model if provider else "",
                    error=str(error),
                ),
                batch.id,
            )
            async with self._windows.hold(batch.start_ts, batch.end_ts):
                card_ids, orphans = self._store.replace_cards_in_range(
                    batch.start_ts, batch.end_ts, [card], batch.id
                )
            self._remove_files(orphans)
            self._checkpoint()
        except StorageError as storage_error:
            logger.error("Could not record failure of batch %d: %s", batch.id, storage_error)
        return ProcessedBatchResult(
            batch_id=batch.id,
            status=BatchStatus.FAILED,
            cards=[card],
            card_ids=card_ids,
            error_message=reason,
        )

    def _checkpoint(self) -> None:
        try:
            self._store.checkpoint("PASSIVE")
        except StorageError as e:
            logger.warning("Passive checkpoint failed: %s", e)


def _notify(progress: ProgressCallback | None, step: ProcessingStep) -> None:
    if progress is not None:
        progress(step)
