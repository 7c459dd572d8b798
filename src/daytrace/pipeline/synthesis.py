"""Sliding-window activity card synthesis.

Each completed batch refreshes the cards of the trailing window
``[batch.end_ts - window, batch.end_ts]``. All observations in the window
are re-read, not only the new batch's, so corrections from fresh context
flow into the whole window.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from daytrace.domain.models import (
    ActivityGenerationContext,
    Batch,
    CategoryDescriptor,
    LLMCall,
    Observation,
    TimelineCard,
)

if TYPE_CHECKING:
    from daytrace.providers.base import LLMProvider
    from daytrace.storage.database import TimelineStore

logger = logging.getLogger(__name__)


class SlidingWindowSynthesizer:
    """Builds the replacement card set for a batch's trailing window."""

    def __init__(
        self,
        store: TimelineStore,
        categories: Sequence[CategoryDescriptor],
        window_seconds: int = 3600,
        min_card_seconds: int = 12,
    ) -> None:
        self._store = store
        self._categories = list(categories)
        self._window_seconds = window_seconds
        self._min_card_seconds = min_card_seconds

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    def window_for(self, batch: Batch) -> tuple[int, int]:
        return batch.end_ts - self._window_seconds, batch.end_ts

    def build_context(
        self, batch: Batch, batch_observations: Sequence[Observation]
    ) -> tuple[list[Observation], ActivityGenerationContext]:
        """Read the window and assemble the generation context."""
        start, end = self.window_for(batch)
        recent = self._store.observations_in_range(start, end)
        existing = self._store.cards_in_range(start, end)
        logger.debug(
            "Window [%d, %d]: %d observations, %d existing cards",
            start, end, len(recent), len(existing),
        )
        context = ActivityGenerationContext(
            batch_observations=list(batch_observations),
            existing_cards=existing,
            window_start=start,
            current_time=end,
            categories=self._categories,
        )
        return recent, context

    async def synthesize(
        self,
        provider: LLMProvider,
        batch: Batch,
        batch_observations: Sequence[Observation],
    ) -> tuple[list[TimelineCard], LLMCall]:
        recent, context = self.build_context(batch, batch_observations)
        cards, log = await provider.generate_activity_cards(
            recent, context, min_card_seconds=self._min_card_seconds
        )
        logger.info("Synthesized %d cards for batch %d", len(cards), batch.id)
        return cards, log
