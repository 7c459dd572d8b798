"""Tests for the background analysis loop."""

from __future__ import annotations

import asyncio
from typing import Callable
from unittest.mock import MagicMock

import pytest

from conftest import BASE_TS, BATCH_SECONDS, CATEGORIES, ScriptedProvider
from daytrace.config.settings import PipelineConfig
from daytrace.domain.models import BatchStatus, ProcessedBatchResult
from daytrace.pipeline.orchestrator import BatchProcessor
from daytrace.pipeline.runner import AnalysisLoop
from daytrace.storage.database import TimelineStore


class TestAnalysisLoop:
    @pytest.mark.asyncio
    async def test_run_once_processes_pending(self, store: TimelineStore, seed_batch: Callable[..., int]) -> None:
        first = seed_batch(BASE_TS)
        second = seed_batch(BASE_TS + BATCH_SECONDS)
        processor = BatchProcessor(store, ScriptedProvider, CATEGORIES)

        results = await AnalysisLoop(store, processor).run_once()

        assert sorted(r.batch_id for r in results) == [first, second]
        assert all(r.succeeded for r in results)
        assert store.list_batches(BatchStatus.PENDING) == []

    @pytest.mark.asyncio
    async def test_run_recovers_stuck_batches_and_stops(
        self, store: TimelineStore, seed_batch: Callable[..., int]
    ) -> None:
        batch_id = seed_batch()
        store.update_batch_status(batch_id, BatchStatus.PROCESSING)
        processor = BatchProcessor(store, ScriptedProvider, CATEGORIES)
        loop: AnalysisLoop

        def stop_after_tick() -> None:
            loop.stop()

        loop = AnalysisLoop(store, processor, PipelineConfig(poll_interval=30), on_tick=stop_after_tick)
        await asyncio.wait_for(loop.run(), timeout=5)

        assert store.get_batch(batch_id).status == BatchStatus.ANALYZED
        assert loop.is_running is False

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, store: TimelineStore) -> None:
        for i in range(5):
            store.create_batch(BASE_TS + i * BATCH_SECONDS, BASE_TS + (i + 1) * BATCH_SECONDS)
        active = 0
        peak = 0

        async def fake_process(batch_id: int) -> ProcessedBatchResult:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return ProcessedBatchResult(batch_id=batch_id, status=BatchStatus.ANALYZED)

        processor = MagicMock(spec=BatchProcessor)
        processor.process_batch.side_effect = fake_process

        results = await AnalysisLoop(store, processor, PipelineConfig(max_concurrent_batches=2)).run_once()

        assert len(results) == 5
        assert peak == 2

    @pytest.mark.asyncio
    async def test_tick_errors_do_not_kill_loop(self, store: TimelineStore) -> None:
        ticks = 0
        loop: AnalysisLoop

        def flaky_tick() -> None:
            nonlocal ticks
            ticks += 1
            if ticks == 1:
                raise OSError("screenshot directory vanished")
            loop.stop()

        loop = AnalysisLoop(
            store, MagicMock(spec=BatchProcessor), PipelineConfig(poll_interval=0.01), on_tick=flaky_tick
        )
        await asyncio.wait_for(loop.run(), timeout=5)
        assert ticks == 2
