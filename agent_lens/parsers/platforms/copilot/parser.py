"""Parse Copilot Chat session logs into Session models.

Copilot persists a chat as a JSONL stream of patches against one JSON document:

* ``kind: 0`` replaces the document,
* ``kind: 1`` sets the value ``v`` at key path ``k``,
* ``kind: 2`` appends the items in ``v`` to the array at key path ``k``.

The stream is replayed in order into a single working state. The active chat
mode (``inputState.mode``) changes between request appends, so the custom agent
for each request is sampled at the moment the request is appended.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from agent_lens.date_utils import coerce_epoch_ms, iso_to_epoch_ms
from agent_lens.models import (
    RequestTimings,
    RequestUsage,
    Session,
    SessionRequest,
    ToolCallInfo,
)
from agent_lens.parsers.detectors import (
    agent_name_from_uri,
    detect_available_skills,
    detect_custom_agent,
    detect_loaded_skills,
)
from agent_lens.parsers.shared import (
    as_dict,
    as_list,
    coerce_optional_int,
    coerce_str,
    iter_json_objects,
    non_negative,
    truncate_title,
)

logger = logging.getLogger("agent_lens.parsers.copilot")

_KIND_INIT = 0
_KIND_SET = 1
_KIND_APPEND = 2

_MODE_PATH = ["inputState", "mode"]
_REQUESTS_PATH = ["requests"]

_SUBAGENT_TOOL = "runSubagent"
_SERIALIZED_INVOCATION = "toolInvocationSerialized"


def _empty_session(source: str) -> Session:
    return Session(
        sessionId="unknown",
        title=None,
        creationDate=0,
        requests=[],
        source=source,
        provider="copilot",
    )


def _is_index(key: Any) -> bool:
    return isinstance(key, int) and not isinstance(key, bool)


def _child(container: Any, key: Any) -> Any:
    if isinstance(container, dict):
        return container.get(key if isinstance(key, str) else str(key))
    if isinstance(container, list) and _is_index(key) and 0 <= key < len(container):
        return container[key]
    return None


def _resolve_path(state: dict[str, Any], path: list[Any]) -> Any:
    current: Any = state
    for key in path:
        current = _child(current, key)
        if current is None:
            return None
    return current


def _set_path(state: dict[str, Any], path: list[Any], value: Any) -> bool:
    parent = _resolve_path(state, path[:-1])
    last = path[-1]
    if isinstance(parent, dict):
        parent[last if isinstance(last, str) else str(last)] = value
        return True
    if isinstance(parent, list) and _is_index(last):
        if 0 <= last < len(parent):
            parent[last] = value
            return True
        if last == len(parent):
            parent.append(value)
            return True
    return False


def _append_path(state: dict[str, Any], path: list[Any], items: list[Any]) -> bool:
    target = _resolve_path(state, path)
    if not isinstance(target, list):
        return False
    target.extend(items)
    return True


def _agent_name_from_mode(mode: Any) -> str | None:
    mode = as_dict(mode)
    mode_id = mode.get("id")
    if mode.get("kind") == "agent" and isinstance(mode_id, str):
        return agent_name_from_uri(mode_id)
    return None


def parse_session_jsonl(content: str, *, log: logging.Logger | None = None) -> Session:
    """Replay a Copilot JSONL patch stream into a Session."""
    log = log or logger
    if not (content or "").strip():
        log.debug("Copilot JSONL: empty content")
        return _empty_session("jsonl")

    state: dict[str, Any] = {}
    current_agent: str | None = None
    # Parallel to state["requests"]: the custom agent active when each was appended.
    agent_by_request: list[str | None] = []

    for entry in iter_json_objects(content, log, label="Copilot JSONL"):
        kind = entry.get("kind")
        if not _is_index(kind):
            continue
        path = as_list(entry.get("k"))
        value = entry.get("v")

        if kind == _KIND_INIT:
            if not isinstance(value, dict):
                continue
            state = dict(value)
            current_agent = _agent_name_from_mode(as_dict(state.get("inputState")).get("mode"))
            agent_by_request = [None] * len(as_list(state.get("requests")))
        elif kind == _KIND_SET:
            if not path:
                continue
            _set_path(state, path, value)
            if path == _MODE_PATH:
                current_agent = _agent_name_from_mode(value)
            elif path == _REQUESTS_PATH:
                agent_by_request = [None] * len(as_list(value))
        elif kind == _KIND_APPEND:
            if not path or not isinstance(value, list):
                continue
            if _append_path(state, path, value) and path == _REQUESTS_PATH:
                agent_by_request.extend([current_agent] * len(value))

    return _extract_session(state, "jsonl", agent_by_request, log)


def parse_session_json(content: str, *, log: logging.Logger | None = None) -> Session:
    """Parse a whole-document Copilot session snapshot."""
    log = log or logger
    try:
        state = json.loads(content or "")
    except json.JSONDecodeError:
        log.debug("Copilot JSON: unreadable document")
        return _empty_session("json")
    if not isinstance(state, dict):
        return _empty_session("json")
    return _extract_session(state, "json", None, log)


def parse_chat_replay(content: str, *, log: logging.Logger | None = None) -> Session:
    """Parse a Copilot chat-replay export (one JSON document of prompts and logs)."""
    log = log or logger
    try:
        data = json.loads(content or "")
    except json.JSONDecodeError:
        log.debug("Copilot chat replay: unreadable document")
        return _empty_session("chatreplay")
    if not isinstance(data, dict):
        return _empty_session("chatreplay")

    prompts = [as_dict(prompt) for prompt in as_list(data.get("prompts"))]
    requests: list[SessionRequest] = []

    for prompt in prompts:
        logs = [as_dict(item) for item in as_list(prompt.get("logs"))]
        request_log = next((item for item in logs if item.get("kind") == "request"), None)
        if request_log is None:
            continue

        meta = as_dict(request_log.get("metadata"))
        usage = as_dict(meta.get("usage"))
        tool_logs = [item for item in logs if item.get("kind") == "toolCall"]
        tool_calls = [
            ToolCallInfo(id=coerce_str(item.get("id")), name=coerce_str(item.get("tool")))
            for item in tool_logs
        ]
        tool_call_args = {coerce_str(item.get("id")): coerce_str(item.get("args")) for item in tool_logs}

        system_text = ""
        for message in as_list(as_dict(request_log.get("requestMessages")).get("messages")):
            message_content = as_dict(message).get("content")
            if isinstance(message_content, str):
                system_text += message_content + "\n"

        requests.append(SessionRequest(
            requestId=coerce_str(request_log.get("id")) or coerce_str(prompt.get("promptId")),
            timestamp=iso_to_epoch_ms(meta.get("startTime")),
            agentId=coerce_str(request_log.get("name")),
            customAgentName=detect_custom_agent(system_text),
            modelId=coerce_str(meta.get("model")),
            messageText=coerce_str(prompt.get("prompt")),
            timings=RequestTimings(
                firstProgress=coerce_optional_int(meta.get("timeToFirstToken")),
                totalElapsed=coerce_optional_int(meta.get("duration")),
            ),
            usage=RequestUsage(
                promptTokens=non_negative(usage.get("prompt_tokens")),
                completionTokens=non_negative(usage.get("completion_tokens")),
            ),
            toolCalls=tool_calls,
            availableSkills=detect_available_skills(system_text),
            loadedSkills=detect_loaded_skills(tool_calls, tool_call_args),
        ))

    session_id = coerce_str(prompts[0].get("promptId")) if prompts else ""
    log.debug("Copilot chat replay: %d request(s)", len(requests))
    return Session(
        sessionId=session_id or "unknown",
        title=None,
        creationDate=iso_to_epoch_ms(data.get("exportedAt")),
        requests=requests,
        source="chatreplay",
        provider="copilot",
    )


# --- Tool call enrichment ---

def _enrich_subagent_tool_calls(
    tool_calls: list[ToolCallInfo],
    response: list[Any],
) -> list[ToolCallInfo]:
    """Replace flat ``runSubagent`` calls with entries built from the response array.

    The response array uses different ids than ``toolCallRounds`` and may hold
    sub-agent runs the rounds never mention, so it is authoritative here.
    """
    descriptions: dict[str, str] = {}
    children: dict[str, list[ToolCallInfo]] = {}

    for entry in response:
        entry = as_dict(entry)
        if entry.get("kind") != _SERIALIZED_INVOCATION:
            continue
        call_id = coerce_str(entry.get("toolCallId"))
        tool_id = coerce_str(entry.get("toolId"))
        parent_id = coerce_str(entry.get("subAgentInvocationId"))

        if tool_id == _SUBAGENT_TOOL and call_id and call_id not in descriptions:
            specific = as_dict(entry.get("toolSpecificData"))
            if specific.get("kind") == "subagent":
                descriptions[call_id] = coerce_str(specific.get("description"))

        if parent_id and call_id:
            children.setdefault(parent_id, []).append(ToolCallInfo(id=call_id, name=tool_id))

    if not descriptions:
        return tool_calls

    def is_replaced(call: ToolCallInfo) -> bool:
        return call.name == _SUBAGENT_TOOL or call.id in descriptions

    insert_at = next(
        (index for index, call in enumerate(tool_calls) if is_replaced(call)),
        len(tool_calls),
    )
    enriched = [
        ToolCallInfo(
            id=call_id,
            name=_SUBAGENT_TOOL,
            subagentDescription=description,
            childToolCalls=children.get(call_id, []),
        )
        for call_id, description in descriptions.items()
    ]
    remaining = [call for call in tool_calls[insert_at:] if not is_replaced(call)]
    return tool_calls[:insert_at] + enriched + remaining


def _extract_mcp_sources(response: list[Any]) -> dict[str, str]:
    """Map tool name to MCP server label; one name always maps to one server."""
    servers: dict[str, str] = {}
    for entry in response:
        entry = as_dict(entry)
        if entry.get("kind") != _SERIALIZED_INVOCATION:
            continue
        source = as_dict(entry.get("source"))
        if source.get("type") != "mcp":
            continue
        tool_id = coerce_str(entry.get("toolId"))
        server_label = coerce_str(source.get("serverLabel"))
        if tool_id and server_label and tool_id not in servers:
            servers[tool_id] = server_label
    return servers


def _apply_mcp_sources(tool_calls: list[ToolCallInfo], servers: dict[str, str]) -> list[ToolCallInfo]:
    if not servers:
        return tool_calls
    return [
        call.model_copy(update={
            "mcpServer": servers.get(call.name) or call.mcpServer,
            "childToolCalls": (
                _apply_mcp_sources(call.childToolCalls, servers) if call.childToolCalls else call.childToolCalls
            ),
        })
        for call in tool_calls
    ]


# --- Shared extraction ---

def _extract_request(raw: dict[str, Any], stamped_agent: str | None) -> SessionRequest:
    agent = as_dict(raw.get("agent"))
    result = as_dict(raw.get("result"))
    meta = as_dict(result.get("metadata"))
    timings = as_dict(result.get("timings"))
    usage = as_dict(result.get("usage"))
    response = as_list(raw.get("response"))

    tool_calls: list[ToolCallInfo] = []
    tool_call_args: dict[str, str] = {}
    for round_ in as_list(meta.get("toolCallRounds")):
        for call in as_list(as_dict(round_).get("toolCalls")):
            call = as_dict(call)
            call_id = coerce_str(call.get("id"))
            tool_calls.append(ToolCallInfo(id=call_id, name=coerce_str(call.get("name"))))
            arguments = call.get("arguments")
            if isinstance(arguments, str) and arguments:
                tool_call_args[call_id] = arguments

    tool_calls = _enrich_subagent_tool_calls(tool_calls, response)
    tool_calls = _apply_mcp_sources(tool_calls, _extract_mcp_sources(response))

    for call_id, call_result in as_dict(meta.get("toolCallResults")).items():
        result_content = as_list(as_dict(call_result).get("content"))
        if result_content:
            tool_call_args.setdefault(call_id, coerce_str(as_dict(result_content[0]).get("value")))

    system_text = ""
    for part in as_list(meta.get("renderedUserMessage")):
        value = as_dict(part).get("value")
        if isinstance(value, str):
            system_text += value + "\n"

    custom_agent = stamped_agent if stamped_agent is not None else detect_custom_agent(system_text)

    return SessionRequest(
        requestId=coerce_str(raw.get("requestId")),
        timestamp=coerce_epoch_ms(raw.get("timestamp")),
        agentId=coerce_str(agent.get("id")),
        customAgentName=custom_agent,
        modelId=coerce_str(raw.get("modelId")),
        messageText=coerce_str(as_dict(raw.get("message")).get("text")),
        timings=RequestTimings(
            firstProgress=coerce_optional_int(timings.get("firstProgress")),
            totalElapsed=coerce_optional_int(timings.get("totalElapsed")),
        ),
        usage=RequestUsage(
            promptTokens=non_negative(usage.get("promptTokens")),
            completionTokens=non_negative(usage.get("completionTokens")),
        ),
        toolCalls=tool_calls,
        availableSkills=detect_available_skills(system_text),
        loadedSkills=detect_loaded_skills(tool_calls, tool_call_args),
    )


def _extract_session(
    state: dict[str, Any],
    source: str,
    agent_by_request: list[str | None] | None,
    log: logging.Logger,
) -> Session:
    stamps = agent_by_request or []
    requests = [
        _extract_request(as_dict(raw), stamps[index] if index < len(stamps) else None)
        for index, raw in enumerate(as_list(state.get("requests")))
    ]

    # An explicit customTitle wins; otherwise the first prompt keeps sessions from showing as GUIDs.
    title = coerce_str(state.get("customTitle")) or None
    if not title and requests:
        title = truncate_title(requests[0].messageText)

    log.debug("Copilot %s: %d request(s)", source, len(requests))
    return Session(
        sessionId=coerce_str(state.get("sessionId")) or "unknown",
        title=title,
        creationDate=coerce_epoch_ms(state.get("creationDate")),
        requests=requests,
        source=source,
        provider="copilot",
    )
