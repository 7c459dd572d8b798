"""Tests for card prompting and parsing."""

from __future__ import annotations

import json

import pytest

from conftest import BASE_TS, BATCH_SECONDS, CATEGORIES, DEFAULT_CARDS
from daytrace.domain.models import (
    ActivityGenerationContext,
    CategoryDescriptor,
    Observation,
    TimelineCard,
)
from daytrace.errors import ProviderParseError
from daytrace.pipeline.cards import (
    build_card_prompt,
    categories_section,
    normalize_category,
    parse_cards,
)

WINDOW_END = BASE_TS + BATCH_SECONDS
WINDOW_START = WINDOW_END - 3600


def observation(start: int, end: int, text: str = "Coding") -> Observation:
    return Observation(batch_id=1, start_ts=start, end_ts=end, text=text)


OBSERVATIONS = [
    observation(BASE_TS, BASE_TS + 450, "Editing pipeline.py"),
    observation(BASE_TS + 450, WINDOW_END, "Reviewing a pull request"),
]


def context(existing: list[TimelineCard] | None = None, categories=CATEGORIES) -> ActivityGenerationContext:
    return ActivityGenerationContext(
        batch_observations=OBSERVATIONS,
        existing_cards=existing or [],
        window_start=WINDOW_START,
        current_time=WINDOW_END,
        categories=list(categories),
    )


def card_json(**fields) -> str:
    entry = {"startTimestamp": "45:00", "endTimestamp": "50:00", "title": "Work", "category": "Work"}
    entry.update(fields)
    return json.dumps([entry])


class TestNormalizeCategory:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Work", "Work"),
            ("  personal ", "Personal"),
            ("IDLE", "Idle"),
            ("idle time", "Idle"),
            ("Gaming", "Work"),
            ("", "Work"),
            (None, "Work"),
        ],
    )
    def test_maps_onto_configured_names(self, raw, expected: str) -> None:
        assert normalize_category(raw, CATEGORIES) == expected

    def test_idle_alias_without_idle_category(self) -> None:
        categories = [CategoryDescriptor(name="Deep work"), CategoryDescriptor(name="Meetings")]
        assert normalize_category("idle", categories) == "Deep work"

    def test_no_categories_keeps_label(self) -> None:
        assert normalize_category(" Reading ", []) == "Reading"


class TestCategoriesSection:
    def test_lists_categories_and_idle_rule(self) -> None:
        section = categories_section(CATEGORIES)
        assert '1. "Work" - Focused work' in section
        assert '3. "Idle" - Use when the user is idle for most of this period.' in section
        assert 'Only use "Idle" when the user is idle' in section
        assert 'Allowed values: ["Work", "Personal", "Idle"]' in section

    def test_empty(self) -> None:
        assert "No categories configured" in categories_section([])


class TestBuildCardPrompt:
    def test_offsets_are_relative_to_window(self) -> None:
        existing = TimelineCard(
            start_ts=WINDOW_START + 600, end_ts=WINDOW_START + 1200, category="Work", title="Standup"
        )
        prompt = build_card_prompt(OBSERVATIONS, context([existing]))
        assert "[45:00 - 52:30] Editing pipeline.py" in prompt
        assert "[10:00 - 20:00] Work: Standup" in prompt
        assert "The window ends at 60:00" in prompt


class TestParseCards:
    def test_default_reply(self) -> None:
        cards = parse_cards(DEFAULT_CARDS, OBSERVATIONS, context())
        assert [(c.start_ts, c.end_ts) for c in cards] == [
            (BASE_TS, BASE_TS + 450),
            (BASE_TS + 450, WINDOW_END),
        ]
        assert {c.category for c in cards} == {"Work"}
        assert cards[1].app_sites.primary == "github.com"

    def test_end_clamped_to_window_end(self) -> None:
        cards = parse_cards(card_json(endTimestamp="75:00"), OBSERVATIONS, context())
        assert cards[0].end_ts == WINDOW_END

    def test_missing_times_fall_back_to_observation_span(self) -> None:
        raw = json.dumps([{"title": "Everything", "category": "Work"}])
        cards = parse_cards(raw, OBSERVATIONS, context())
        assert (cards[0].start_ts, cards[0].end_ts) == (BASE_TS, WINDOW_END)

    def test_overlapping_cards_are_pushed_apart(self) -> None:
        raw = json.dumps([
            {"startTimestamp": "45:00", "endTimestamp": "55:00", "title": "A", "category": "Work"},
            {"startTimestamp": "50:00", "endTimestamp": "60:00", "title": "B", "category": "Work"},
        ])
        cards = parse_cards(raw, OBSERVATIONS, context())
        assert [(c.title, c.start_ts, c.end_ts) for c in cards] == [
            ("A", BASE_TS, BASE_TS + 600),
            ("B", BASE_TS + 600, WINDOW_END),
        ]

    def test_untitled_entries_skipped(self) -> None:
        raw = json.dumps([
            {"startTimestamp": "45:00", "endTimestamp": "50:00", "title": "  "},
            {"startTimestamp": "50:00", "endTimestamp": "60:00", "title": "Kept", "category": "Personal"},
        ])
        cards = parse_cards(raw, OBSERVATIONS, context())
        assert [c.title for c in cards] == ["Kept"]
        assert cards[0].category == "Personal"

    def test_distractions_parsed(self) -> None:
        raw = card_json(distractions=[
            {"startTimestamp": "46:00", "endTimestamp": "47:00", "title": "Twitter", "summary": "Scrolled"},
            {"startTimestamp": "bad", "endTimestamp": "47:00", "title": "Skipped"},
        ])
        card = parse_cards(raw, OBSERVATIONS, context())[0]
        assert [(d.title, d.start_ts) for d in card.distractions] == [("Twitter", BASE_TS + 60)]

    def test_no_usable_cards_with_observations(self) -> None:
        with pytest.raises(ProviderParseError):
            parse_cards("[]", OBSERVATIONS, context())

    def test_no_cards_without_observations_is_fine(self) -> None:
        assert parse_cards("[]", [], context()) == []

    def test_not_json(self) -> None:
        with pytest.raises(ProviderParseError):
            parse_cards("I could not find any activity.", OBSERVATIONS, context())
