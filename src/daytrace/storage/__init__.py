"""Persistence for batches, observations and timeline cards."""

from daytrace.storage.cleanup import remove_orphaned_artifacts
from daytrace.storage.database import TimelineStore

__all__ = ["TimelineStore", "remove_orphaned_artifacts"]
