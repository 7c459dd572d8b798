"""Activity card prompting and parsing.

Builds the card-generation prompt for a synthesis window and turns the
model's JSON back into a clean, non-overlapping set of timeline cards
whose categories belong to the configured set.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from daytrace.domain.models import (
    ActivityGenerationContext,
    AppSites,
    CategoryDescriptor,
    Distraction,
    Observation,
    TimelineCard,
)
from daytrace.errors import ProviderParseError
from daytrace.pipeline.segments import fold_short_spans
from daytrace.utils.jsontext import extract_json
from daytrace.utils.timefmt import format_clock, format_offset, parse_offset

logger = logging.getLogger(__name__)

IDLE_ALIASES = ("idle", "idle time")


CARD_PROMPT = """You are analyzing someone's computer usage to maintain their activity timeline.
All times below are offsets (MM:SS) from {window_label}, the start of the analysis window.
The window ends at {now_offset}; no card may end after that.

OBSERVATIONS:
{observations}

EXISTING CARDS (your answer replaces all of them):
{existing}

{categories}

Produce the complete list of activity cards covering the observations. Each card has:
1. A title (2-6 words describing the main activity)
2. A summary (2-3 sentences describing what was accomplished)
3. A category (pick one from the allowed categories above)

Return ONLY a JSON array in this format (no markdown, no explanation):
[
  {{
    "startTimestamp": "MM:SS",
    "endTimestamp": "MM:SS",
    "title": "Brief title",
    "summary": "What was accomplished",
    "category": "Category name",
    "subcategory": "Optional finer label",
    "detailedSummary": "Optional longer description",
    "appSites": {{"primary": "main app or site", "secondary": null}}
  }}
]

Guidelines:
- Focus on outcomes and achievements, not just actions
- Be specific about what was worked on
- Group related activities together; keep continuity with existing cards when the activity continues
- Include meaningful details (topics, projects, tools)
- Cards must not overlap
- Keep the title concise but descriptive"""


def categories_section(descriptors: Sequence[CategoryDescriptor]) -> str:
    """Describe the allowed categories for the prompt."""
    if not descriptors:
        return "USER CATEGORIES: No categories configured. Use consistent labels based on the activity story."

    allowed = ", ".join(f'"{d.name}"' for d in descriptors)
    lines = ["USER CATEGORIES (choose exactly one label):"]
    for index, descriptor in enumerate(descriptors, start=1):
        desc = (descriptor.description or "").strip()
        if descriptor.is_idle and not desc:
            desc = "Use when the user is idle for most of this period."
        suffix = f" - {desc}" if desc else ""
        lines.append(f'{index}. "{descriptor.name}"{suffix}')

    idle = next((d for d in descriptors if d.is_idle), None)
    if idle is not None:
        lines.append(
            f'Only use "{idle.name}" when the user is idle for more than half of the timeframe. '
            "Otherwise pick the closest non-idle label."
        )
    lines.append(f"Return the category exactly as written. Allowed values: [{allowed}].")
    return "\n".join(lines)


def normalize_category(raw: object, categories: Sequence[CategoryDescriptor]) -> str:
    """Map a model-supplied label onto a configured category name.

    Matching is case-insensitive and exact; idle aliases map to the idle
    category; anything else falls back to the first configured category.
    """
    cleaned = raw.strip() if isinstance(raw, str) else ""
    if not categories:
        return cleaned
    if not cleaned:
        return categories[0].name
    normalized = cleaned.lower()
    for descriptor in categories:
        if descriptor.name.strip().lower() == normalized:
            return descriptor.name
    idle = next((d for d in categories if d.is_idle), None)
    if idle is not None and normalized in IDLE_ALIASES:
        return idle.name
    return categories[0].name


def build_card_prompt(observations: Sequence[Observation], context: ActivityGenerationContext) -> str:
    base = context.window_start
    obs_lines = [
        f"[{format_offset(o.start_ts - base)} - {format_offset(o.end_ts - base)}] {o.text}"
        for o in sorted(observations, key=lambda o: o.start_ts)
    ]
    card_lines = [
        f"[{format_offset(c.start_ts - base)} - {format_offset(c.end_ts - base)}] "
        f"{c.category}: {c.title} -- {c.summary}"
        for c in sorted(context.existing_cards, key=lambda c: c.start_ts)
    ]
    return CARD_PROMPT.format(
        window_label=format_clock(base),
        now_offset=format_offset(context.current_time - base),
        observations="\n".join(obs_lines) or "(none)",
        existing="\n".join(card_lines) or "(none)",
        categories=categories_section(context.categories),
    )


def parse_cards(
    raw: str,
    observations: Sequence[Observation],
    context: ActivityGenerationContext,
    min_card_seconds: int = 12,
    provider: str = "",
) -> list[TimelineCard]:
    """Parse the card response into the window's replacement card set.

    Entries without a title are skipped. Missing times fall back to the
    observation span; ends are clamped to ``context.current_time`` and
    overlapping starts are pushed past the previous card.

    Raises:
        ProviderParseError: If the response is not JSON, or yields no
            usable card although observations were supplied.
    """
    try:
        data = extract_json(raw)
    except ValueError as e:
        raise ProviderParseError(
            "Card response is not JSON", provider=provider, raw_response=raw
        ) from e
    if isinstance(data, dict):
        data = data.get("cards", [data])
    if not isinstance(data, list):
        raise ProviderParseError(
            "Card response is not a JSON array", provider=provider, raw_response=raw
        )

    base = context.window_start
    floor = min([base] + [c.start_ts for c in context.existing_cards])
    ceiling = context.current_time
    if observations:
        span_start = min(o.start_ts for o in observations)
        span_end = max(o.end_ts for o in observations)
    else:
        span_start, span_end = base, ceiling

    cards: list[TimelineCard] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        title = entry.get("title")
        if not isinstance(title, str) or not title.strip():
            logger.debug("Skipping card without title: %r", entry)
            continue
        start = parse_offset(entry.get("startTimestamp"))
        end = parse_offset(entry.get("endTimestamp"))
        start_ts = base + start if start is not None else span_start
        end_ts = base + end if end is not None else span_end
        start_ts = max(start_ts, floor)
        end_ts = min(end_ts, ceiling)
        if end_ts <= start_ts:
            continue
        cards.append(
            TimelineCard(
                start_ts=start_ts,
                end_ts=end_ts,
                category=normalize_category(entry.get("category"), context.categories),
                subcategory=_text(entry.get("subcategory")),
                title=title.strip(),
                summary=_text(entry.get("summary")),
                detailed_summary=_text(entry.get("detailedSummary")),
                distractions=_distractions(entry.get("distractions"), base),
                app_sites=_app_sites(entry.get("appSites")),
            )
        )

    cards.sort(key=lambda c: c.start_ts)
    cleaned: list[TimelineCard] = []
    for card in cards:
        if cleaned and card.start_ts < cleaned[-1].end_ts:
            card = card.model_copy(update={"start_ts": cleaned[-1].end_ts})
            if card.end_ts <= card.start_ts:
                continue
        cleaned.append(card)
    cleaned = fold_short_spans(cleaned, min_card_seconds)

    if observations and not cleaned:
        raise ProviderParseError(
            "Card response contained no usable cards", provider=provider, raw_response=raw
        )
    return cleaned


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _app_sites(value: Any) -> AppSites | None:
    if not isinstance(value, dict):
        return None
    primary = value.get("primary")
    secondary = value.get("secondary")
    if not isinstance(primary, str) and not isinstance(secondary, str):
        return None
    return AppSites(
        primary=primary if isinstance(primary, str) else None,
        secondary=secondary if isinstance(secondary, str) else None,
    )


def _distractions(value: Any, base: int) -> list[Distraction] | None:
    if not isinstance(value, list):
        return None
    result = []
    for item in value:
        if not isinstance(item, dict) or not isinstance(item.get("title"), str):
            continue
        start = parse_offset(item.get("startTimestamp"))
        end = parse_offset(item.get("endTimestamp"))
        if start is None or end is None or end < start:
            continue
        result.append(
            Distraction(
                start_ts=base + start,
                end_ts=base + end,
                title=item["title"],
                summary=_text(item.get("summary")),
            )
        )
    return result or None
