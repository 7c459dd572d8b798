"""Turning pipeline failures into user-facing error cards.

A failed batch still gets a visible timeline entry: one "System / Error"
card spanning the batch, written through the same replace path as
regular cards so a later successful reprocess supersedes it.
"""

from __future__ import annotations

from daytrace.domain.models import Batch, TimelineCard
from daytrace.utils.timefmt import format_clock

ERROR_CATEGORY = "System"
ERROR_SUBCATEGORY = "Error"
GENERIC_MESSAGE = "An unexpected error occurred."

ERROR_MESSAGES: dict[tuple[str, str], str] = {
    ("provider", "auth"): "Invalid API key. Please check your API key in Settings.",
    ("provider", "rate_limited"): "Rate limited. Too many requests to the AI provider. Please wait a few minutes.",
    ("provider", "timeout"): "Request timed out. The AI took too long to respond.",
    ("provider", "connection"): "Couldn't connect to the AI service. Check your internet connection.",
    ("provider", "server"): "AI service error. The service may be temporarily down.",
    ("provider", "http"): "The AI service returned HTTP error {status}. Check your API settings.",
    ("provider", "parse"): "The AI returned an unexpected response format.",
    ("provider", "vision_unsupported"): "The selected AI model can't read screenshots.",
    ("pipeline", "no_provider"): "No AI provider is configured. Please set one up in Settings.",
    ("pipeline", "batch_not_found"): "The recording batch couldn't be found.",
    ("pipeline", "no_screenshots"): "No screenshots found in this time period.",
    ("pipeline", "empty_transcription"): "The AI couldn't describe any of the screenshots in this recording.",
    ("storage", "error"): "Failed to save the analysis results.",
    ("storage", "invalid_transition"): "The recording batch was in an unexpected state.",
}

# Checked in order against the lowercased message when no code matches.
FALLBACK_PATTERNS: list[tuple[tuple[str, ...], str]] = [
    (("rate limit", "429"), "The AI service is temporarily overwhelmed. This usually resolves itself in a few minutes."),
    (("network", "connection"), "Couldn't connect to the AI service. Check your internet connection."),
    (("api key", "unauthorized", "401", "not logged in"), "There's an issue with your API key. Please check your settings."),
    (("503",), "The AI service returned a 503 error and may be temporarily down. If you see many of these in a row, wait a while before retrying."),
    (("timeout", "timed out"), "The AI took too long to respond. This might be due to a long recording or slow connection."),
    (("no observations",), "The AI couldn't understand what was happening in this recording."),
    (("exceed", "duration"), "The AI got confused about the recording timing."),
    (("no llm provider", "not configured", "not installed"), "No AI provider is configured. Please set one up in Settings."),
    (("invalid response", "json"), "The AI returned an unexpected response format."),
]


def humanize_error(error: BaseException) -> str:
    """Map an exception onto a short message suitable for the timeline."""
    domain = getattr(error, "domain", None)
    code = getattr(error, "code", None)
    template = ERROR_MESSAGES.get((domain, code)) if domain and code else None
    if template is not None:
        return template.format(status=getattr(error, "status_code", None) or "?")

    description = str(error).lower()
    for needles, message in FALLBACK_PATTERNS:
        if any(needle in description for needle in needles):
            return message
    return GENERIC_MESSAGE


def build_error_card(batch: Batch, error: BaseException) -> TimelineCard:
    """Build the single error card covering ``batch``'s own range."""
    start = format_clock(batch.start_ts)
    end = format_clock(batch.end_ts)
    minutes = batch.duration_seconds // 60
    human = humanize_error(error)
    return TimelineCard(
        batch_id=batch.id,
        start_ts=batch.start_ts,
        end_ts=batch.end_ts,
        category=ERROR_CATEGORY,
        subcategory=ERROR_SUBCATEGORY,
        title="Processing failed",
        summary=(
            f"Failed to process {minutes} minutes of recording from {start} to {end}. "
            f"{human} Your recording is safe and can be reprocessed."
        ),
        detailed_summary=(
            f"Error details: {error}\n\n"
            f"This recording batch (ID: {batch.id}) failed during AI processing. "
            "The original screenshots are preserved and can be reprocessed. "
            "Common causes include network issues, API rate limits, or temporary service outages."
        ),
    )
