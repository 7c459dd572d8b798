"""Domain models for daytrace.

This package contains the core data structures and enumerations used
throughout the pipeline. All models use Pydantic v2 for validation and
serialization.
"""

from daytrace.domain.models import (
    ActivityGenerationContext,
    AppSites,
    Batch,
    BatchStatus,
    CategoryDescriptor,
    Distraction,
    LLMCall,
    Observation,
    ProcessedBatchResult,
    ProcessingStep,
    Screenshot,
    TimelineCard,
)

__all__ = [
    "ActivityGenerationContext",
    "AppSites",
    "Batch",
    "BatchStatus",
    "CategoryDescriptor",
    "Distraction",
    "LLMCall",
    "Observation",
    "ProcessedBatchResult",
    "ProcessingStep",
    "Screenshot",
    "TimelineCard",
]
