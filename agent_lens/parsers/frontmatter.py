"""Split markdown definition files into YAML frontmatter and body."""
from __future__ import annotations

import re
from typing import Any

import yaml

_FRONTMATTER_PATTERN = re.compile(r"\A---[ \t]*\n(.*?)^---[ \t]*(?:\n(.*))?\Z", re.DOTALL | re.MULTILINE)


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Return ``(frontmatter, body)``; files without frontmatter return ``({}, text)``."""
    match = _FRONTMATTER_PATTERN.match(text or "")
    if not match:
        return {}, text or ""
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        data = {}
    if not isinstance(data, dict):
        data = {}
    return data, (match.group(2) or "").strip()
