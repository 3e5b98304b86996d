"""
Recover JSON objects from chat model replies that wrap them in prose or fences.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Sequence

from .errors import MalformedStructuredOutput

_FENCE_PATTERN = re.compile(
    r"```[ \t]*(?:json)?[ \t]*\r?\n?(.*?)\r?\n?[ \t]*```",
    re.DOTALL | re.IGNORECASE,
)


def parse_direct(text: str) -> dict[str, Any] | None:
    """Tier 1: the whole reply is a JSON object."""
    return _loads_object(text.strip())


def parse_fenced_block(text: str) -> dict[str, Any] | None:
    """Tier 2: the object sits inside a ```json fenced block."""
    for block in fenced_blocks(text):
        parsed = _loads_object(block)
        if parsed is not None:
            return parsed
    return None


def fenced_blocks(text: str) -> list[str]:
    """Contents of every fenced code block in ``text``, in order."""
    return [match.group(1).strip() for match in _FENCE_PATTERN.finditer(text)]


def parse_balanced_braces(text: str) -> dict[str, Any] | None:
    """Tier 3: the first top-level ``{...}`` span that parses."""
    for span in _iter_brace_spans(text):
        parsed = _loads_object(span)
        if parsed is not None:
            return parsed
    return None


_TIERS: Sequence[Callable[[str], dict[str, Any] | None]] = (
    parse_direct,
    parse_fenced_block,
    parse_balanced_braces,
)


def parse_structured_response(text: str | None) -> dict[str, Any]:
    """
    Return the JSON object embedded in ``text`` or raise ``MalformedStructuredOutput``.
    """
    raw = text or ""
    if raw.strip():
        for tier in _TIERS:
            parsed = tier(raw)
            if parsed is not None:
                return parsed
    raise MalformedStructuredOutput(
        "Model response did not contain a parseable JSON object.",
        raw_text=raw,
    )


def _loads_object(candidate: str) -> dict[str, Any] | None:
    if not candidate:
        return None
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    if isinstance(parsed, dict):
        return parsed
    return None


def _iter_brace_spans(text: str):
    depth = 0
    start: int | None = None
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"' and depth > 0:
            in_string = True
        elif char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start is not None:
                yield text[start : index + 1]
                start = None
