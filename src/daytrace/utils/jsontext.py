"""Lenient JSON extraction from LLM responses."""

from __future__ import annotations

import json
import re
from typing import Any


def extract_json(raw: str) -> Any:
    """Pull the first JSON array or object out of a model response.

    Handles markdown code fences, prose around the payload and invalid
    backslash escapes.

    Raises:
        ValueError: If no parseable JSON value is found.
    """
    text = raw.strip()

    # Remove markdown code block if present
    match = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if match:
        text = match.group(1).strip()

    candidates = [text]
    # Find the outermost array or object in the text, whichever opens first
    starts = [i for i in (text.find("["), text.find("{")) if i >= 0]
    if starts:
        start = min(starts)
        closer = "]" if text[start] == "[" else "}"
        end = text.rfind(closer)
        if end > start:
            candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass
        # Fix invalid escape sequences by replacing lone backslashes
        fixed = re.sub(r'\\(?!["\\/bfnrtu])', r"\\\\", candidate)
        try:
            return json.loads(fixed)
        except json.JSONDecodeError:
            pass

    raise ValueError("No JSON value found in response")
