"""Tests for grouping screenshots into batches."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import pytest

from conftest import BASE_TS
from daytrace.config.settings import BatchingConfig
from daytrace.domain.models import BatchStatus, Screenshot
from daytrace.pipeline.batching import batch_ranges, group_captures, ingest_directory
from daytrace.storage.database import TimelineStore


def captures(*offsets: int) -> list[Screenshot]:
    return [Screenshot(id=i, file_path=f"/s/{i}.png", captured_at=BASE_TS + o) for i, o in enumerate(offsets)]


def spans(groups: list[list[Screenshot]]) -> list[tuple[int, int]]:
    return [(g[0].captured_at - BASE_TS, g[-1].captured_at - BASE_TS) for g in groups]


class TestGroupCaptures:
    def test_gap_splits_groups(self) -> None:
        groups = group_captures(captures(0, 10, 20, 500, 510), target_duration=900, max_gap=120)
        assert spans(groups) == [(0, 20), (500, 510)]

    def test_target_duration_splits_groups(self) -> None:
        offsets = range(0, 1900, 100)
        groups = group_captures(captures(*offsets), target_duration=900, max_gap=120)
        assert spans(groups) == [(0, 900), (1000, 1800)]

    def test_open_trailing_group_held_back(self) -> None:
        groups = group_captures(captures(0, 10, 20), target_duration=900, max_gap=120, now=BASE_TS + 60)
        assert groups == []

    def test_trailing_group_closed_after_gap(self) -> None:
        groups = group_captures(captures(0, 10, 20), target_duration=900, max_gap=120, now=BASE_TS + 500)
        assert spans(groups) == [(0, 20)]

    def test_trailing_group_closed_at_target_length(self) -> None:
        groups = group_captures(captures(0, 450, 900), target_duration=900, max_gap=600, now=BASE_TS + 900)
        assert spans(groups) == [(0, 900)]

    def test_unsorted_input(self) -> None:
        groups = group_captures(captures(20, 0, 10), target_duration=900, max_gap=120)
        assert spans(groups) == [(0, 20)]


class TestBatchRanges:
    def offsets(self, ranges) -> list[tuple[int, int]]:
        return [(start - BASE_TS, end - BASE_TS) for start, end, _ in ranges]

    def test_last_capture_covers_one_interval(self) -> None:
        groups = group_captures(captures(0, 10, 20, 500), target_duration=900, max_gap=120)
        assert self.offsets(batch_ranges(groups, 10)) == [(0, 30), (500, 510)]

    def test_single_capture_is_never_empty(self) -> None:
        [(start, end, group)] = batch_ranges([captures(0)], 10)
        assert end - start == 10
        assert len(group) == 1

    def test_end_stops_at_next_capture(self) -> None:
        shots = captures(0, 5, 10, 15)
        groups = group_captures(shots, target_duration=8, max_gap=120)
        assert spans(groups) == [(0, 5), (10, 15)]
        assert self.offsets(batch_ranges(groups, 30, shots)) == [(0, 10), (10, 45)]

    def test_end_stops_at_held_back_capture(self) -> None:
        shots = captures(0, 5, 10)
        groups = group_captures(shots, target_duration=8, max_gap=120, now=BASE_TS + 20)
        assert spans(groups) == [(0, 5)]
        assert self.offsets(batch_ranges(groups, 30, shots)) == [(0, 10)]


class TestIngestDirectory:
    def _write(self, make_image: Callable[..., Path], name: str, offset: int) -> Path:
        path = make_image(name)
        os.utime(path, (BASE_TS + offset, BASE_TS + offset))
        return path

    def test_registers_and_batches(self, store: TimelineStore, make_image: Callable[..., Path]) -> None:
        paths = [self._write(make_image, f"{i}.png", offset) for i, offset in enumerate([0, 60, 120, 1000, 1060])]
        shots = paths[0].parent
        (shots / "notes.txt").write_text("not a screenshot")

        config = BatchingConfig(target_duration_minutes=15, max_gap_minutes=2)
        batch_ids = ingest_directory(store, shots, config, now=BASE_TS + 5000)

        batches = [store.get_batch(b) for b in batch_ids]
        assert [(b.start_ts - BASE_TS, b.end_ts - BASE_TS) for b in batches] == [(0, 130), (1000, 1070)]
        assert all(b.status == BatchStatus.PENDING for b in batches)
        assert len(store.screenshots_for_batch(batch_ids[0])) == 3

    def test_second_pass_adds_nothing(self, store: TimelineStore, make_image: Callable[..., Path]) -> None:
        path = self._write(make_image, "a.png", 0)
        ingest_directory(store, path.parent, now=BASE_TS + 5000)
        assert ingest_directory(store, path.parent, now=BASE_TS + 5000) == []
        assert len(store.list_batches()) == 1

    def test_open_batch_waits_for_more_captures(
        self, store: TimelineStore, make_image: Callable[..., Path]
    ) -> None:
        path = self._write(make_image, "a.png", 0)
        assert ingest_directory(store, path.parent, now=BASE_TS + 30) == []
        assert len(store.unbatched_screenshots()) == 1

    def test_missing_directory(self, store: TimelineStore, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            ingest_directory(store, tmp_path / "nope")

    def test_single_capture_batch_has_a_span(self, store: TimelineStore, make_image: Callable[..., Path]) -> None:
        path = self._write(make_image, "a.png", 0)
        [batch_id] = ingest_directory(store, path.parent, BatchingConfig(), now=BASE_TS + 5000)
        batch = store.get_batch(batch_id)
        assert (batch.start_ts - BASE_TS, batch.end_ts - BASE_TS) == (0, 10)
