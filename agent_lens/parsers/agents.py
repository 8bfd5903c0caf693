"""Parse custom agent definition files (``*.agent.md``)."""
from __future__ import annotations

from typing import Any

from agent_lens.models import AgentDefinition, Handoff
from agent_lens.parsers.frontmatter import extract_frontmatter
from agent_lens.parsers.shared import as_dict, as_list, coerce_str

_AGENT_FILE_SUFFIX = ".agent.md"


def _name_from_path(file_path: str) -> str:
    filename = file_path.replace("\\", "/").rsplit("/", 1)[-1]
    if filename.endswith(_AGENT_FILE_SUFFIX):
        return filename[: -len(_AGENT_FILE_SUFFIX)]
    return filename


def _to_string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    return [coerce_str(item) for item in as_list(value)]


def _parse_handoffs(value: Any) -> list[Handoff]:
    handoffs: list[Handoff] = []
    for raw in as_list(value):
        raw = as_dict(raw)
        send = raw.get("send")
        handoffs.append(Handoff(
            label=coerce_str(raw.get("label")),
            agent=coerce_str(raw.get("agent")),
            prompt=coerce_str(raw.get("prompt")),
            send=bool(send) if send is not None else True,
        ))
    return handoffs


def parse_agent(content: str, file_path: str) -> AgentDefinition:
    data, body = extract_frontmatter(content)
    name = data.get("name")
    description = data.get("description")
    return AgentDefinition(
        name=name if isinstance(name, str) else _name_from_path(file_path),
        description=description if isinstance(description, str) else "",
        tools=_to_string_list(data.get("tools")),
        model=_to_string_list(data.get("model")),
        handoffs=_parse_handoffs(data.get("handoffs")),
        body=body,
        filePath=file_path,
    )
