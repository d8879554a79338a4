"""Pull the JSON payload out of a model response."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?\s*```")


def _outermost(text: str) -> str | None:
    """The span from the first ``{``/``[`` to the last matching closer."""
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return None
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return None
    return text[start : end + 1]


def extract_json(text: str) -> Any:
    """Decode the JSON payload a response culminates in.

    Tries, in order: the whole text, the last fenced block, the outermost
    bracketed span. Raises ``ValueError`` when none decodes.
    """
    stripped = text.strip()
    if not stripped:
        raise ValueError("Empty response")

    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    # Try fenced blocks, last one first (models often restate a corrected block)
    for block in reversed(_FENCE_RE.findall(stripped)):
        try:
            return json.loads(block)
        except json.JSONDecodeError:
            continue

    span = _outermost(stripped)
    if span is not None:
        try:
            return json.loads(span)
        except json.JSONDecodeError:
            pass

    raise ValueError("Response does not contain a JSON payload")
