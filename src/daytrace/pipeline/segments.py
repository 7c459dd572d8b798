"""Segment length policy shared by transcription and card synthesis."""

from __future__ import annotations

from typing import Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, Field

Span = TypeVar("Span", bound=BaseModel)


class SegmentPolicy(BaseModel):
    """Tunables for sampling and segmenting a batch."""

    model_config = ConfigDict(frozen=True)

    target_samples: int = Field(default=15, gt=0)
    min_seconds: int = Field(default=12, ge=0)
    max_seconds: int = Field(default=60, gt=0)
    idle_seconds: int = Field(default=30, gt=0)


class Segment(BaseModel):
    """An activity segment anchored to absolute time."""

    model_config = ConfigDict(frozen=True)

    start_ts: int
    end_ts: int
    description: str


def fold_short_spans(spans: Sequence[Span], min_seconds: int) -> list[Span]:
    """Absorb spans shorter than ``min_seconds`` into a neighbour.

    Spans must be sorted by ``start_ts``. A short span extends the previous
    span's end, or the next span's start when it comes first. A lone span
    is kept whatever its length.
    """
    result: list[Span] = []
    leading: Span | None = None
    for span in spans:
        if leading is not None:
            span = span.model_copy(update={"start_ts": min(leading.start_ts, span.start_ts)})
            leading = None
        if span.end_ts - span.start_ts >= min_seconds:
            result.append(span)
        elif result:
            prev = result[-1]
            result[-1] = prev.model_copy(update={"end_ts": max(prev.end_ts, span.end_ts)})
        else:
            leading = span
    if leading is not None:
        # every span was short; keep them merged as one
        result.append(leading)
    return result
