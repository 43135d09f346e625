"""Text helpers for agent output.

extract_json recovers a single JSON value from free-form agent text. Agents
wrap JSON in prose or code fences inconsistently, so several candidate
substrings are tried in priority order.
"""

import json
import re
from typing import Any, Optional

from ccagent.errors import NoJsonFound

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def _balanced_span(text: str, open_char: str, close_char: str) -> Optional[str]:
    """Return the first balanced open/close span starting at the first open_char.

    Braces inside string literals (with backslash escapes) do not count.
    """
    start = text.find(open_char)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]

        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    return None


def json_candidates(text: str) -> list[str]:
    """List candidate JSON substrings of text, most specific first."""
    candidates = []

    fenced = _FENCE_PATTERN.search(text)
    if fenced and fenced.group(1):
        candidates.append(fenced.group(1).strip())

    trimmed = text.strip()
    if trimmed:
        candidates.append(trimmed)

    for open_char, close_char in (("{", "}"), ("[", "]")):
        span = _balanced_span(text, open_char, close_char)
        if span:
            candidates.append(span)

    return candidates


def extract_json(text: str) -> Any:
    """Parse the first JSON candidate found in text.

    Args:
        text: Raw agent output

    Returns:
        The parsed JSON value

    Raises:
        NoJsonFound: If text is not a string or no candidate parses
    """
    if not isinstance(text, str):
        raise NoJsonFound("Expected string output when extracting JSON")

    for candidate in json_candidates(text):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    raise NoJsonFound("Unable to parse JSON from agent output")


def short_text(text: Optional[str], length: int = 160) -> str:
    """Collapse whitespace and truncate to length, marking cuts with '...'."""
    value = re.sub(r"\s+", " ", text or "").strip()
    if len(value) <= length:
        return value
    return value[: length - 3] + "..."


def safe_title(title: Any, fallback: str = "story") -> str:
    """Slugify a story title for commit messages."""
    if not title or not isinstance(title, str):
        return fallback
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")[:48]
    return slug or fallback
