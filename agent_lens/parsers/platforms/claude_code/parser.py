"""Parse Claude Code transcript JSONL into Session models.

Every transcript line is an independent record (``user``, ``assistant``,
``progress``, ``summary``, ...). Each main-conversation assistant record is one
request. Records flagged ``isSidechain`` belong to delegated sub-agent
conversations, which Claude Code also writes to their own files; those files are
parsed separately and interleaved into the main timeline by timestamp.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import Any

from agent_lens.date_utils import iso_to_epoch_ms
from agent_lens.models import (
    RequestTimings,
    RequestUsage,
    Session,
    SessionRequest,
    SubagentInput,
    ToolCallInfo,
)
from agent_lens.parsers.shared import (
    as_dict,
    as_list,
    coerce_str,
    iter_json_objects,
    non_negative,
)

logger = logging.getLogger("agent_lens.parsers.claude_code")

_TASK_TOOL = "Task"
# Claude Code appends "agentId: <id> (for resuming ...)" to Task tool results.
_AGENT_ID_PATTERN = re.compile(r"agentId: ([\w-]+) \(for resuming")
_COMPACT_AGENT_PREFIX = "acompact-"
_COMPACT_AGENT_NAME = "compact"

_MAIN_AGENT_ID = "claude-code"
_SUBAGENT_AGENT_ID = "claude-code:subagent"


def _content_blocks(message: dict[str, Any]) -> list[dict[str, Any]]:
    return [as_dict(block) for block in as_list(message.get("content"))]


def _collapse_text(content: Any) -> str | None:
    """Return the record's text, or ``None`` when it carries no text blocks."""
    if isinstance(content, str):
        return content
    texts = [
        block["text"]
        for block in (as_dict(item) for item in as_list(content))
        if block.get("type") == "text" and isinstance(block.get("text"), str) and block["text"]
    ]
    return "\n".join(texts) if texts else None


def _tool_result_text(block: dict[str, Any]) -> str:
    content = block.get("content")
    if isinstance(content, str):
        return content
    return _collapse_text(content if isinstance(content, list) else []) or ""


def _tool_calls(message: dict[str, Any]) -> list[ToolCallInfo]:
    calls: list[ToolCallInfo] = []
    for block in _content_blocks(message):
        block_id = block.get("id")
        name = block.get("name")
        if block.get("type") == "tool_use" and isinstance(block_id, str) and block_id and isinstance(name, str) and name:
            calls.append(ToolCallInfo(id=block_id, name=name))
    return calls


def _usage(message: dict[str, Any]) -> RequestUsage:
    usage = as_dict(message.get("usage"))
    return RequestUsage(
        promptTokens=non_negative(usage.get("input_tokens")),
        completionTokens=non_negative(usage.get("output_tokens")),
        cacheReadTokens=non_negative(usage.get("cache_read_input_tokens")),
        cacheCreationTokens=non_negative(usage.get("cache_creation_input_tokens")),
    )


def _build_request(
    record: dict[str, Any],
    message: dict[str, Any],
    *,
    prompt: str,
    agent_id: str,
    custom_agent_name: str | None,
    is_subagent: bool | None,
) -> SessionRequest:
    return SessionRequest(
        requestId=coerce_str(record.get("uuid")),
        timestamp=iso_to_epoch_ms(record.get("timestamp")),
        agentId=agent_id,
        customAgentName=custom_agent_name,
        modelId=coerce_str(message.get("model")),
        messageText=prompt,
        timings=RequestTimings(),
        usage=_usage(message),
        toolCalls=_tool_calls(message),
        availableSkills=[],
        loadedSkills=[],
        isSubagent=is_subagent,
    )


def subagent_display_name(agent_id: str, subagent_type: str | None) -> str:
    if subagent_type:
        return subagent_type
    if agent_id.startswith(_COMPACT_AGENT_PREFIX):
        return _COMPACT_AGENT_NAME
    return agent_id


def build_subagent_type_map(content: str, *, log: logging.Logger | None = None) -> dict[str, str]:
    """Map sub-agent ids to their declared type (e.g. ``"abc123" -> "Explore"``).

    ``Task`` tool_use blocks declare ``subagent_type``; the matching tool_result
    text names the spawned agent id. Only the last id in a result counts: the
    body may mention other agents, but Claude Code appends the real one last.
    """
    log = log or logger
    type_by_tool_id: dict[str, str] = {}
    agent_by_tool_id: dict[str, str] = {}

    for record in iter_json_objects(content, log, label="Claude type map"):
        if record.get("isSidechain") is True:
            continue
        message = as_dict(record.get("message"))
        record_type = record.get("type")

        if record_type == "assistant":
            for block in _content_blocks(message):
                block_id = block.get("id")
                subagent_type = as_dict(block.get("input")).get("subagent_type")
                if (
                    block.get("type") == "tool_use"
                    and block.get("name") == _TASK_TOOL
                    and isinstance(block_id, str)
                    and block_id
                    and isinstance(subagent_type, str)
                    and subagent_type
                ):
                    type_by_tool_id[block_id] = subagent_type

        elif record_type == "user":
            for block in _content_blocks(message):
                tool_use_id = block.get("tool_use_id")
                if block.get("type") != "tool_result" or not isinstance(tool_use_id, str) or not tool_use_id:
                    continue
                matches = _AGENT_ID_PATTERN.findall(_tool_result_text(block))
                if matches:
                    agent_by_tool_id[tool_use_id] = matches[-1]

    type_by_agent: dict[str, str] = {}
    for tool_id, agent_id in agent_by_tool_id.items():
        subagent_type = type_by_tool_id.get(tool_id)
        if subagent_type:
            type_by_agent[agent_id] = subagent_type
        else:
            log.debug("Claude: no Task declaration for agent %s (tool %s)", agent_id, tool_id)
    return type_by_agent


def parse_subagent_content(
    subagent: SubagentInput,
    *,
    log: logging.Logger | None = None,
) -> list[SessionRequest]:
    """Parse one delegated conversation; every record in it is a sidechain record."""
    log = log or logger
    agent_name = subagent_display_name(subagent.agentId, subagent.subagentType)
    requests: list[SessionRequest] = []
    for record in iter_json_objects(subagent.content, log, label=f"Claude subagent {subagent.agentId}"):
        if record.get("type") != "assistant":
            continue
        message = record.get("message")
        if not isinstance(message, dict):
            continue
        requests.append(_build_request(
            record,
            message,
            prompt="",
            agent_id=_SUBAGENT_AGENT_ID,
            custom_agent_name=agent_name,
            is_subagent=True,
        ))
    return requests


def parse_claude_session_jsonl(
    content: str,
    summary: str | None = None,
    subagents: Iterable[SubagentInput] | None = None,
    *,
    log: logging.Logger | None = None,
) -> Session:
    """Parse a Claude Code transcript, interleaving any delegated conversations."""
    log = log or logger
    if not (content or "").strip():
        log.debug("Claude: empty content")
        return Session(
            sessionId="unknown",
            title=summary,
            creationDate=0,
            requests=[],
            source="claude",
            provider="claude",
        )

    session_id = ""
    creation_date = 0
    custom_title: str | None = None
    summary_title: str | None = None
    pending_prompt = ""
    requests: list[SessionRequest] = []

    for record in iter_json_objects(content, log, label="Claude"):
        record_session_id = record.get("sessionId")
        if not session_id and isinstance(record_session_id, str) and record_session_id:
            session_id = record_session_id
        if not creation_date:
            creation_date = iso_to_epoch_ms(record.get("timestamp"))

        record_type = record.get("type")
        if record_type == "custom-title":
            custom_title = coerce_str(record.get("title")).strip() or custom_title
            continue
        if record_type == "summary":
            summary_title = coerce_str(record.get("summary")).strip() or summary_title
            continue

        if record.get("isSidechain") is True:
            continue
        message = record.get("message")
        if not isinstance(message, dict):
            continue

        if record_type == "user":
            text = _collapse_text(message.get("content"))
            if text is not None:
                pending_prompt = text
        elif record_type == "assistant":
            requests.append(_build_request(
                record,
                message,
                prompt=pending_prompt,
                agent_id=_MAIN_AGENT_ID,
                custom_agent_name=None,
                is_subagent=None,
            ))
            pending_prompt = ""

    subagent_list = list(subagents or [])
    if subagent_list:
        type_by_agent = build_subagent_type_map(content, log=log)
        for subagent in subagent_list:
            if subagent.subagentType is None and subagent.agentId in type_by_agent:
                subagent = subagent.model_copy(update={"subagentType": type_by_agent[subagent.agentId]})
            elif subagent.subagentType is None:
                log.debug("Claude: unresolved subagent type for %s", subagent.agentId)
            requests.extend(parse_subagent_content(subagent, log=log))

    log.debug("Claude: %d request(s) from %d subagent file(s)", len(requests), len(subagent_list))
    return Session(
        sessionId=session_id or "unknown",
        title=summary or custom_title or summary_title,
        creationDate=creation_date,
        # Session sorts by timestamp: sub-agents run concurrently with the main thread.
        requests=requests,
        source="claude",
        provider="claude",
    )
