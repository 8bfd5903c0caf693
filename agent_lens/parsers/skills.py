"""Parse skill definition files.

Two layouts are recognised: ``.github/skills/<name>/SKILL.md`` and the flat
``.github/skills/<name>.skill.md``.
"""
from __future__ import annotations

import re

from agent_lens.models import SkillDefinition
from agent_lens.parsers.frontmatter import extract_frontmatter

_FLAT_SKILL_PATTERN = re.compile(r"^(.+)\.skill\.md$")


def _name_from_path(file_path: str) -> str:
    parts = file_path.replace("\\", "/").split("/")
    if "SKILL.md" in parts:
        index = len(parts) - 1 - parts[::-1].index("SKILL.md")
        if index > 0:
            return parts[index - 1]
    match = _FLAT_SKILL_PATTERN.match(parts[-1])
    if match:
        return match.group(1)
    return "unknown"


def parse_skill(content: str, file_path: str) -> SkillDefinition:
    data, body = extract_frontmatter(content)
    name = data.get("name")
    description = data.get("description")
    return SkillDefinition(
        name=name if isinstance(name, str) else _name_from_path(file_path),
        description=description if isinstance(description, str) else "",
        body=body,
        filePath=file_path,
    )
