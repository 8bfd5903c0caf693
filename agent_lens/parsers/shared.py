"""Lenient helpers shared by the session log parsers.

Source logs are loosely shaped, externally produced JSON. Every lookup goes
through these helpers so a missing or mistyped field falls back to a default
instead of raising.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import Any

from agent_lens import config

ELLIPSIS = "…"


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def coerce_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return default


def coerce_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def coerce_optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def non_negative(value: Any) -> int:
    return max(0, coerce_int(value))


def truncate_title(text: str, limit: int | None = None) -> str | None:
    """Trim a prompt into a display title, or ``None`` when it is blank."""
    max_chars = limit if limit is not None else config.TITLE_MAX_CHARS
    cleaned = (text or "").strip()
    if not cleaned:
        return None
    if len(cleaned) > max_chars:
        return cleaned[:max_chars] + ELLIPSIS
    return cleaned


def split_lines(content: str) -> list[tuple[int, str]]:
    """Return ``(line_number, text)`` for every non-blank line."""
    return [
        (number, line)
        for number, line in enumerate((content or "").split("\n"), start=1)
        if line.strip()
    ]


def parse_json_object(line: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(line)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def iter_json_objects(
    content: str,
    log: logging.Logger,
    *,
    label: str,
) -> Iterator[dict[str, Any]]:
    """Yield each line that decodes to a JSON object, skipping the rest."""
    for number, line in split_lines(content):
        parsed = parse_json_object(line)
        if parsed is None:
            log.debug("%s: skipping malformed line %d", label, number)
            continue
        yield parsed
