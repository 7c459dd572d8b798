"""Transcription stage: screenshots in, timestamped observations out.

A batch is sampled down to a bounded number of frames, each frame is
described independently by the provider, and the resulting timeline is
merged by the provider into a handful of coherent activity segments.
Individual frame failures are skipped; the stage only fails when no
frame could be described at all.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Sequence

from daytrace.domain.models import LLMCall, Observation, Screenshot
from daytrace.errors import (
    EmptyTranscriptionError,
    NoScreenshotsError,
    ProviderAuthError,
    ProviderError,
    ProviderParseError,
)
from daytrace.pipeline.segments import Segment, SegmentPolicy, fold_short_spans
from daytrace.utils.jsontext import extract_json
from daytrace.utils.timefmt import format_offset, parse_offset

if TYPE_CHECKING:
    from daytrace.providers.base import LLMProvider

logger = logging.getLogger(__name__)


FRAME_PROMPT = """Describe what you see on this computer screen in 1-2 sentences.
Focus on: what application/site is open, what the user is doing, and any relevant details visible.
Be specific and factual.

GOOD EXAMPLES:
- "VS Code open with index.js file, writing a React component for user authentication."
- "Gmail compose window writing email to client@company.com about project timeline."
- "Slack conversation in #engineering channel discussing API rate limiting issues."

BAD EXAMPLES:
- "User is coding" (too vague)
- "Looking at a website" (doesn't identify which site)
- "Working on computer" (completely non-specific)"""


MERGE_PROMPT = """You are analyzing a timeline of computer screen activity. Here's what happened:

{timeline}

Group these into 3-8 coherent activity segments. Each segment should represent a continuous purpose or activity.

Return ONLY a JSON array in this format (no markdown, no explanation):
[
  {{
    "startTimestamp": "MM:SS",
    "endTimestamp": "MM:SS",
    "description": "What the user was doing during this period"
  }}
]

Guidelines:
- Minimum segment length: {min_seconds} seconds
- Maximum segment length: ~{max_seconds} seconds
- Group related activities together
- Brief interruptions (<{min_seconds} seconds) should be included in the main activity
- If the screen stays the same for {idle_seconds}+ seconds, note that the user was idle

The recording is {duration} long."""


def sample_screenshots(screenshots: Sequence[Screenshot], target_samples: int = 15) -> list[Screenshot]:
    """Sort by capture time and keep every ``stride``-th screenshot.

    ``stride = max(1, count // target_samples)``, which bounds the number
    of frames described per batch independent of capture density.
    """
    ordered = sorted(screenshots, key=lambda s: s.captured_at)
    stride = max(1, len(ordered) // max(1, target_samples))
    return ordered[::stride]


def build_timeline(frames: Sequence[tuple[int, str]]) -> str:
    """Render ``(offset_seconds, description)`` pairs as a text timeline."""
    lines = ["Timeline of screen activity:"]
    for offset, description in frames:
        lines.append(f"{format_offset(offset)}: {description}")
    return "\n".join(lines)


def parse_segments(
    raw: str,
    anchor_ts: int,
    limit_ts: int | None = None,
    provider: str = "",
) -> list[Segment]:
    """Parse the merge response into segments anchored at ``anchor_ts``.

    Malformed entries are skipped. Segment ends are clamped to
    ``limit_ts`` when given.

    Raises:
        ProviderParseError: If the response holds no JSON array.
    """
    try:
        data = extract_json(raw)
    except ValueError as e:
        raise ProviderParseError(
            "Segment response is not JSON", provider=provider, raw_response=raw
        ) from e
    if isinstance(data, dict):
        data = data.get("segments", data.get("observations"))
    if not isinstance(data, list):
        raise ProviderParseError(
            "Segment response is not a JSON array", provider=provider, raw_response=raw
        )

    segments: list[Segment] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        start = parse_offset(entry.get("startTimestamp"))
        end = parse_offset(entry.get("endTimestamp"))
        description = entry.get("description")
        if start is None or end is None or not isinstance(description, str) or not description.strip():
            logger.debug("Skipping malformed segment: %r", entry)
            continue
        start_ts = anchor_ts + start
        end_ts = anchor_ts + end
        if limit_ts is not None:
            end_ts = min(end_ts, limit_ts)
        if end_ts <= start_ts:
            continue
        segments.append(Segment(start_ts=start_ts, end_ts=end_ts, description=description.strip()))

    segments.sort(key=lambda s: s.start_ts)
    return segments


async def transcribe(
    provider: LLMProvider,
    screenshots: Sequence[Screenshot],
    batch_start_ts: int,
    batch_end_ts: int | None = None,
    policy: SegmentPolicy | None = None,
    batch_id: int | None = None,
) -> tuple[list[Observation], LLMCall]:
    """Turn a batch's screenshots into observations via ``provider``.

    Raises:
        NoScreenshotsError: If ``screenshots`` is empty.
        EmptyTranscriptionError: If no sampled frame could be described.
        ProviderAuthError: On the first rejected credential.
        ProviderError: If the merge call fails.
    """
    if not screenshots:
        raise NoScreenshotsError("No screenshots in batch")

    policy = policy or SegmentPolicy()
    started = datetime.now()
    clock = time.perf_counter()

    sampled = sample_screenshots(screenshots, policy.target_samples)
    logger.info(
        "Describing %d of %d screenshots (%s)", len(sampled), len(screenshots), provider.name
    )

    frames: list[tuple[int, str]] = []
    last_error: Exception | None = None
    for shot in sampled:
        offset = max(0, shot.captured_at - batch_start_ts)
        try:
            description, _ = await provider.describe_frame(shot, FRAME_PROMPT)
        except ProviderAuthError:
            raise
        except (OSError, ProviderError) as e:
            last_error = e
            logger.warning(
                "Frame at %s skipped (%s): %s", format_offset(offset), shot.file_path, e
            )
            continue
        description = description.strip()
        if description:
            frames.append((offset, description))

    if not frames:
        raise EmptyTranscriptionError(
            "Failed to describe any screenshots. Please check your API key and network connection."
        ) from last_error

    if batch_end_ts is not None:
        duration = batch_end_ts - batch_start_ts
    else:
        duration = sampled[-1].captured_at - batch_start_ts

    prompt = MERGE_PROMPT.format(
        timeline=build_timeline(frames),
        min_seconds=policy.min_seconds,
        max_seconds=policy.max_seconds,
        idle_seconds=policy.idle_seconds,
        duration=format_offset(duration),
    )
    raw, _ = await provider.complete_text(prompt, operation="merge_frames")

    segments = parse_segments(raw, batch_start_ts, batch_end_ts, provider=provider.name)
    segments = fold_short_spans(segments, policy.min_seconds)

    observations = [
        Observation(
            batch_id=batch_id if batch_id is not None else (screenshots[0].batch_id or 0),
            start_ts=seg.start_ts,
            end_ts=seg.end_ts,
            text=seg.description,
            model=provider.model,
        )
        for seg in segments
    ]

    latency = time.perf_counter() - clock
    log = LLMCall(
        timestamp=started,
        latency=latency,
        operation="transcribe_screenshots",
        provider=provider.name,
        model=provider.model,
        input=f"Screenshot transcription: {len(screenshots)} screenshots -> {len(observations)} observations",
        output=raw,
    )
    return observations, log
