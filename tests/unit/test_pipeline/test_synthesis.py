"""Tests for sliding-window card synthesis."""

from __future__ import annotations

import pytest

from conftest import BASE_TS, BATCH_SECONDS, CATEGORIES, ScriptedProvider
from daytrace.domain.models import Batch, Observation, TimelineCard
from daytrace.pipeline.synthesis import SlidingWindowSynthesizer
from daytrace.storage.database import TimelineStore


def batch(batch_id: int, start: int) -> Batch:
    return Batch(id=batch_id, start_ts=start, end_ts=start + BATCH_SECONDS)


class TestSlidingWindowSynthesizer:
    def test_window_trails_batch_end(self, store: TimelineStore) -> None:
        synthesizer = SlidingWindowSynthesizer(store, CATEGORIES)
        assert synthesizer.window_for(batch(1, BASE_TS)) == (BASE_TS + BATCH_SECONDS - 3600, BASE_TS + BATCH_SECONDS)

    def test_context_reads_earlier_batches(self, store: TimelineStore) -> None:
        earlier = store.create_batch(BASE_TS - BATCH_SECONDS, BASE_TS)
        current = store.create_batch(BASE_TS, BASE_TS + BATCH_SECONDS)
        store.save_observations(earlier, [
            Observation(batch_id=earlier, start_ts=BASE_TS - 600, end_ts=BASE_TS, text="Writing docs"),
            Observation(batch_id=earlier, start_ts=BASE_TS - 7200, end_ts=BASE_TS - 6000, text="Too old"),
        ])
        fresh = [Observation(batch_id=current, start_ts=BASE_TS, end_ts=BASE_TS + 300, text="Coding")]
        store.save_observations(current, fresh)
        store.replace_cards_in_range(
            BASE_TS - 600, BASE_TS,
            [TimelineCard(start_ts=BASE_TS - 600, end_ts=BASE_TS, category="Work", title="Docs")],
            earlier,
        )

        synthesizer = SlidingWindowSynthesizer(store, CATEGORIES)
        recent, context = synthesizer.build_context(store.get_batch(current), fresh)

        assert [o.text for o in recent] == ["Writing docs", "Coding"]
        assert [c.title for c in context.existing_cards] == ["Docs"]
        assert context.batch_observations == fresh
        assert context.window_start == BASE_TS + BATCH_SECONDS - 3600
        assert context.current_time == BASE_TS + BATCH_SECONDS
        assert [c.name for c in context.categories] == ["Work", "Personal", "Idle"]

    @pytest.mark.asyncio
    async def test_synthesize_prompts_with_whole_window(self, store: TimelineStore) -> None:
        earlier = store.create_batch(BASE_TS - BATCH_SECONDS, BASE_TS)
        current = store.create_batch(BASE_TS, BASE_TS + BATCH_SECONDS)
        store.save_observations(earlier, [
            Observation(batch_id=earlier, start_ts=BASE_TS - 900, end_ts=BASE_TS, text="Writing docs"),
        ])
        fresh = [Observation(batch_id=current, start_ts=BASE_TS, end_ts=BASE_TS + 900, text="Coding")]
        store.save_observations(current, fresh)

        provider = ScriptedProvider()
        synthesizer = SlidingWindowSynthesizer(store, CATEGORIES)
        cards, log = await synthesizer.synthesize(provider, store.get_batch(current), fresh)

        prompt = provider.calls("cards")[0].messages[0].text
        assert "[30:00 - 45:00] Writing docs" in prompt
        assert "[45:00 - 60:00] Coding" in prompt
        assert [c.title for c in cards] == ["Pipeline refactor", "Code review"]
        assert log.operation == "generate_cards"
