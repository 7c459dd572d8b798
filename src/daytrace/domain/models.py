"""Core domain models for the daytrace system.

These models represent the data flowing through the analysis pipeline:
screenshots grouped into batches, the observations transcribed from
them, the timeline cards synthesized from observations, and the audit
records of every LLM call. All timestamps are Unix epoch seconds.
"""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from daytrace.utils.timefmt import format_clock


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class BatchStatus(str, enum.Enum):
    """Lifecycle of a batch. Only reprocessing rewinds a status."""

    PENDING = "pending"
    PROCESSING = "processing"
    ANALYZED = "analyzed"
    FAILED = "failed"


class ProcessingStep(str, enum.Enum):
    """Progress notifications emitted while a batch is processed."""

    TRANSCRIBING = "transcribing"
    GENERATING_CARDS = "generating_cards"


# ---------------------------------------------------------------------------
# Capture models
# ---------------------------------------------------------------------------


class Screenshot(BaseModel):
    """A single captured screen image, produced by the capture subsystem."""

    model_config = ConfigDict(frozen=True)

    id: int | None = Field(default=None, description="Storage row id")
    file_path: str = Field(description="Absolute path to the image file")
    captured_at: int = Field(description="Capture time (epoch seconds)")
    batch_id: int | None = Field(default=None, description="Owning batch, once closed")


class Batch(BaseModel):
    """A time-boxed group of screenshots analyzed as one unit."""

    id: int
    start_ts: int
    end_ts: int
    status: BatchStatus = BatchStatus.PENDING
    failure_reason: str | None = None

    @property
    def duration_seconds(self) -> int:
        return self.end_ts - self.start_ts


# ---------------------------------------------------------------------------
# Analysis models
# ---------------------------------------------------------------------------


class Observation(BaseModel):
    """A timestamped textual description of what happened on screen.

    Append-only: once stored, an observation is only ever removed by
    reprocessing its whole batch.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    batch_id: int = Field(description="Batch that produced this observation")
    start_ts: int
    end_ts: int
    text: str = Field(description="What the user was doing during the span")
    metadata: str | None = None
    model: str = Field(default="", description="Model that produced the text")
    created_at: datetime = Field(default_factory=datetime.now)


class AppSites(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: str | None = None
    secondary: str | None = None


class Distraction(BaseModel):
    """A short detour inside a larger activity."""

    model_config = ConfigDict(frozen=True)

    start_ts: int
    end_ts: int
    title: str
    summary: str = ""


class TimelineCard(BaseModel):
    """One entry of the activity timeline.

    Cards within a window are created and destroyed as a set; a card is
    never patched in place.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    batch_id: int | None = Field(default=None, description="Batch whose cycle wrote this card")
    start_ts: int
    end_ts: int
    category: str
    subcategory: str = ""
    title: str
    summary: str = ""
    detailed_summary: str = ""
    distractions: list[Distraction] | None = None
    app_sites: AppSites | None = None
    video_artifact_path: str | None = Field(
        default=None, description="Timelapse owned by this card, reclaimed when the card is deleted"
    )

    @property
    def start_time(self) -> str:
        return format_clock(self.start_ts)

    @property
    def end_time(self) -> str:
        return format_clock(self.end_ts)

    @property
    def duration_seconds(self) -> int:
        return self.end_ts - self.start_ts


class LLMCall(BaseModel):
    """Audit record of a single provider call. Never read by the pipeline."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=datetime.now)
    latency: float = Field(default=0.0, ge=0.0, description="Wall-clock seconds")
    operation: str = ""
    provider: str = ""
    model: str = ""
    input: str | None = None
    output: str | None = None
    error: str | None = None


class CategoryDescriptor(BaseModel):
    """A user-configured timeline category."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str | None = None
    is_idle: bool = False


class ActivityGenerationContext(BaseModel):
    """Everything a provider needs to synthesize a window's cards."""

    batch_observations: list[Observation] = Field(
        description="Observations produced by the batch that triggered this cycle"
    )
    existing_cards: list[TimelineCard] = Field(
        default_factory=list, description="Cards currently overlapping the window"
    )
    window_start: int = Field(description="Start of the synthesis window")
    current_time: int = Field(description="Window end; no card may end after it")
    categories: list[CategoryDescriptor] = Field(default_factory=list)


class ProcessedBatchResult(BaseModel):
    """Outcome of one orchestrator run for a batch."""

    batch_id: int
    status: BatchStatus
    cards: list[TimelineCard] = Field(default_factory=list)
    card_ids: list[int] = Field(default_factory=list)
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == BatchStatus.ANALYZED
