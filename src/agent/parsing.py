"""Permissive extraction of JSON from free-form LLM output."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def extract_json(text: str | None) -> Any | None:
    """Return the first JSON value found in ``text``, or None.

    Tries, in order: the whole text, fenced code blocks, and the first
    balanced ``{...}`` or ``[...]`` region. Never raises.
    """
    return _extract(text, lambda value: True)


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Like ``extract_json`` but only accepts a JSON object.

    Arrays and other values ahead of the object are skipped.
    """
    return _extract(text, lambda value: isinstance(value, dict))


def _extract(text: str | None, accept: Callable[[Any], bool]) -> Any | None:
    if not text:
        return None

    cleaned = text.strip()
    parsed = _try_load(cleaned)
    if parsed is not None and accept(parsed):
        return parsed

    for block in _FENCE_RE.findall(cleaned):
        parsed = _try_load(block.strip())
        if parsed is not None and accept(parsed):
            return parsed

    for start, char in enumerate(cleaned):
        if char in "{[":
            region = _balanced_region(cleaned, start)
            if region is not None:
                parsed = _try_load(region)
                if parsed is not None and accept(parsed):
                    return parsed

    logger.debug("No JSON found in response: %s", cleaned[:200])
    return None


def _try_load(candidate: str) -> Any | None:
    if not candidate or candidate[0] not in "{[":
        return None
    try:
        return json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None


def _balanced_region(text: str, start: int) -> str | None:
    """Slice from ``start`` to its matching closer, honouring JSON strings."""
    closers = {"{": "}", "[": "]"}
    stack: list[str] = []
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in closers:
            stack.append(closers[char])
        elif char in "}]":
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return text[start : index + 1]
    return None
