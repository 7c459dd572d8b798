"""Grouping captured screenshots into time-boxed batches."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Sequence

from daytrace.config.settings import BatchingConfig
from daytrace.domain.models import Screenshot
from daytrace.storage.database import TimelineStore

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp"}


def group_captures(
    captures: Sequence[Screenshot],
    target_duration: int,
    max_gap: int,
    now: int | None = None,
) -> list[list[Screenshot]]:
    """Split time-ordered captures into closed batches.

    A new group starts when the gap since the previous capture exceeds
    ``max_gap`` or the group would span more than ``target_duration``
    seconds. When ``now`` is given, the trailing group is held back while
    its last capture is within ``max_gap`` of it, since more captures may
    still join.
    """
    ordered = sorted(captures, key=lambda c: c.captured_at)
    groups: list[list[Screenshot]] = []
    current: list[Screenshot] = []
    for capture in ordered:
        if current:
            gap = capture.captured_at - current[-1].captured_at
            span = capture.captured_at - current[0].captured_at
            if gap > max_gap or span > target_duration:
                groups.append(current)
                current = []
        current.append(capture)

    if current:
        closed_by_length = current[-1].captured_at - current[0].captured_at >= target_duration
        if now is None or closed_by_length or now - current[-1].captured_at > max_gap:
            groups.append(current)
    return groups


def batch_ranges(
    groups: Sequence[Sequence[Screenshot]],
    capture_interval: int,
    captures: Sequence[Screenshot] = (),
) -> list[tuple[int, int, Sequence[Screenshot]]]:
    """Time range of each closed group.

    A batch runs from its first capture until its last capture has been on
    screen for one capture interval, so even a single capture covers a
    non-empty span. The end never reaches past the next known capture.
    """
    times = sorted({c.captured_at for c in captures} | {g[0].captured_at for g in groups})
    ranges = []
    for group in groups:
        start_ts = group[0].captured_at
        last = group[-1].captured_at
        end_ts = last + capture_interval
        later = [t for t in times if t > last]
        if later:
            end_ts = min(end_ts, later[0])
        ranges.append((start_ts, end_ts, group))
    return ranges


def ingest_directory(
    store: TimelineStore,
    directory: Path | str,
    config: BatchingConfig | None = None,
    now: int | None = None,
) -> list[int]:
    """Register new screenshots found in ``directory`` and close batches.

    The capture time of a file is its modification time.

    Returns:
        Ids of the batches created.
    """
    config = config or BatchingConfig()
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Screenshot directory not found: {directory}")

    added = 0
    for path in sorted(directory.iterdir()):
        if path.suffix.lower() not in IMAGE_SUFFIXES or not path.is_file():
            continue
        resolved = str(path.resolve())
        if store.has_screenshot(resolved):
            continue
        store.add_screenshot(resolved, int(path.stat().st_mtime))
        added += 1
    if added:
        logger.info("Registered %d new screenshots from %s", added, directory)

    pending = store.unbatched_screenshots()
    groups = group_captures(
        pending,
        target_duration=int(config.target_duration_minutes * 60),
        max_gap=int(config.max_gap_minutes * 60),
        now=int(time.time()) if now is None else now,
    )
    batch_ids = []
    for start_ts, end_ts, group in batch_ranges(groups, config.capture_interval_seconds, pending):
        batch_id = store.create_batch(start_ts, end_ts, [s.id for s in group if s.id is not None])
        batch_ids.append(batch_id)
    if batch_ids:
        logger.info("Closed %d batches", len(batch_ids))
    return batch_ids
