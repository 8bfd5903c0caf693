"""Free-text detectors for custom agents and skills."""
from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from urllib.parse import unquote

from agent_lens.models import SkillRef, ToolCallInfo

_MODE_INSTRUCTIONS_PATTERN = re.compile(
    r'<modeInstructions>\s*You are currently running in "([^"]+)" mode'
)
_SKILLS_BLOCK_PATTERN = re.compile(r"<skills>([\s\S]*?)</skills>")
_SKILL_ENTRY_PATTERN = re.compile(
    r"<skill>\s*<name>(.*?)</name>\s*<description>.*?</description>\s*<file>(.*?)</file>\s*</skill>",
    re.DOTALL,
)
_SKILL_DIR_FILE_PATTERN = re.compile(r"\.github/skills/([^/]+)/SKILL\.md$")
_SKILL_FLAT_FILE_PATTERN = re.compile(r"\.github/skills/([^/]+)\.skill\.md$")

_READ_FILE_TOOL = "read_file"
_AGENT_FILE_SUFFIX = ".agent.md"


def agent_name_from_uri(uri: str) -> str | None:
    """Derive a custom agent name from a mode id such as ``file:///x/planner.agent.md``."""
    cleaned = unquote((uri or "").strip()).rstrip("/")
    if not cleaned:
        return None
    filename = re.split(r"[/\\]", cleaned)[-1]
    if filename.endswith(_AGENT_FILE_SUFFIX):
        stem = filename[: -len(_AGENT_FILE_SUFFIX)]
    elif "." in filename:
        stem = filename.rsplit(".", 1)[0]
    else:
        stem = filename
    return stem or None


def detect_custom_agent(text: str) -> str | None:
    match = _MODE_INSTRUCTIONS_PATTERN.search(text or "")
    return match.group(1) if match else None


def detect_available_skills(text: str) -> list[SkillRef]:
    block = _SKILLS_BLOCK_PATTERN.search(text or "")
    if not block:
        return []
    return [
        SkillRef(name=match.group(1), file=match.group(2))
        for match in _SKILL_ENTRY_PATTERN.finditer(block.group(1))
    ]


def skill_name_from_path(file_path: str) -> str | None:
    normalized = (file_path or "").replace("\\", "/")
    for pattern in (_SKILL_DIR_FILE_PATTERN, _SKILL_FLAT_FILE_PATTERN):
        match = pattern.search(normalized)
        if match:
            return match.group(1)
    return None


def detect_loaded_skills(
    tool_calls: Iterable[ToolCallInfo],
    tool_call_args: Mapping[str, str],
) -> list[str]:
    """Names of skills whose definition file was read by a ``read_file`` call."""
    loaded: list[str] = []
    for call in tool_calls:
        if call.name != _READ_FILE_TOOL:
            continue
        raw_args = tool_call_args.get(call.id)
        if not raw_args:
            continue
        try:
            args = json.loads(raw_args)
        except json.JSONDecodeError:
            continue
        if not isinstance(args, dict):
            continue
        file_path = args.get("filePath")
        skill_name = skill_name_from_path(file_path) if isinstance(file_path, str) else None
        if skill_name:
            loaded.append(skill_name)
    return loaded
