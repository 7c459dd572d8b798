"""Timestamp helpers shared by prompts, parsers and cards."""

from __future__ import annotations

from datetime import datetime


def format_clock(ts: int) -> str:
    """Format epoch seconds as a local wall-clock label, e.g. ``9:05 AM``."""
    return datetime.fromtimestamp(ts).strftime("%I:%M %p").lstrip("0")


def format_offset(seconds: float) -> str:
    """Format an offset in seconds as ``MM:SS`` (minutes may exceed 59)."""
    total = max(0, int(seconds))
    return f"{total // 60:02d}:{total % 60:02d}"


def parse_offset(value: object) -> int | None:
    """Parse ``MM:SS`` or ``HH:MM:SS`` into seconds.

    Returns None for anything that is not a well-formed timestamp so
    callers can skip the entry instead of anchoring it at zero.
    """
    if not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        return None
    if any(n < 0 for n in numbers):
        return None
    if len(numbers) == 3:
        hours, minutes, seconds = numbers
        return hours * 3600 + minutes * 60 + seconds
    minutes, seconds = numbers
    return minutes * 60 + seconds
