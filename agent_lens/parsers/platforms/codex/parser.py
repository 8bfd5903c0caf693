"""Parse Codex CLI rollout JSONL into Session models.

Every line is a typed envelope ``{timestamp, type, payload}`` where ``type`` is
one of ``session_meta``, ``response_item``, ``event_msg`` or ``turn_context``.
The first envelope must be ``session_meta``; without it the session identity is
unknown and the file yields an empty session.

Turns are delimited by ``task_started`` / ``task_complete`` events. Older logs
have no turn events at all, so user messages open implicit turns instead.
Token counts are cumulative session totals and are decoded into per-turn deltas.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any

from agent_lens.date_utils import iso_to_epoch_ms
from agent_lens.models import (
    RequestTimings,
    RequestUsage,
    Session,
    SessionRequest,
    ToolCallInfo,
)
from agent_lens.parsers.shared import (
    as_dict,
    as_list,
    coerce_int,
    coerce_str,
    parse_json_object,
    split_lines,
    truncate_title,
)

logger = logging.getLogger("agent_lens.parsers.codex")

_AGENT_ID = "codex-cli"
_DEFAULT_MODEL = "codex"
_EMPTY_SESSION_ID = "codex-empty"

_TURN_START_EVENTS = {"task_started"}
_TURN_END_EVENTS = {"task_complete", "turn_aborted"}
_TOOL_CALL_ITEMS = {"function_call", "custom_tool_call"}
_OUTPUT_ITEMS = {"function_call_output", "custom_tool_call_output", "reasoning"}
_TEXT_PART_TYPES = {"input_text", "output_text"}

# Setup text Codex injects as user messages ahead of the real prompt.
_CONTEXT_PREAMBLES = (
    "<environment_context>",
    "<user_instructions>",
    "# AGENTS.md instructions",
    "<INSTRUCTIONS>",
)
_IDE_CONTEXT_HEADER = "# Context from my IDE setup"
_IDE_REQUEST_MARKER = "## My request for Codex:"


@dataclass
class _TurnState:
    model: str
    timestamp: int
    explicit: bool
    prompt: str = ""
    tool_calls: list[ToolCallInfo] = field(default_factory=list)
    last_usage: dict[str, Any] | None = None
    has_output: bool = False


def _empty_session() -> Session:
    return Session(
        sessionId=_EMPTY_SESSION_ID,
        title=None,
        creationDate=0,
        requests=[],
        source="codex",
        provider="codex",
    )


def _content_text(content: Any) -> str:
    parts = [
        part["text"]
        for part in (as_dict(item) for item in as_list(content))
        if part.get("type") in _TEXT_PART_TYPES and isinstance(part.get("text"), str) and part["text"]
    ]
    return "\n".join(parts)


def is_context_preamble(text: str) -> bool:
    return text.lstrip().startswith(_CONTEXT_PREAMBLES)


def prompt_title(prompt: str) -> str | None:
    """Title from a prompt, unwrapping IDE request blocks to the request itself."""
    text = prompt.strip()
    if text.startswith(_IDE_CONTEXT_HEADER) and _IDE_REQUEST_MARKER in text:
        text = text.split(_IDE_REQUEST_MARKER, 1)[1]
    return truncate_title(text)


def usage_delta(current: dict[str, Any] | None, previous: dict[str, Any]) -> RequestUsage:
    """Per-turn usage from cumulative totals; regressions clamp to zero."""
    if current is None:
        return RequestUsage(promptTokens=0, completionTokens=0, cacheReadTokens=0)

    def delta(key: str) -> int:
        return max(0, coerce_int(current.get(key)) - coerce_int(previous.get(key)))

    return RequestUsage(
        promptTokens=delta("input_tokens"),
        completionTokens=delta("output_tokens"),
        cacheReadTokens=delta("cached_input_tokens"),
    )


def parse_codex_session_jsonl(content: str, *, log: logging.Logger | None = None) -> Session:
    """Replay a Codex rollout into one request per turn."""
    log = log or logger
    lines = split_lines(content)
    if not lines:
        log.debug("Codex: empty content")
        return _empty_session()

    _, first_line = lines[0]
    first = parse_json_object(first_line)
    if first is None or first.get("type") != "session_meta" or not isinstance(first.get("payload"), dict):
        log.debug("Codex: first line is not session metadata")
        return _empty_session()

    meta = first["payload"]
    session_id = coerce_str(meta.get("id")) or (
        "codex-" + hashlib.sha1(first_line.encode("utf-8")).hexdigest()[:12]
    )
    creation_date = iso_to_epoch_ms(meta.get("timestamp")) or iso_to_epoch_ms(first.get("timestamp"))
    session_model = coerce_str(meta.get("model_provider")) or _DEFAULT_MODEL

    requests: list[SessionRequest] = []
    turn: _TurnState | None = None
    previous_totals: dict[str, Any] = {}

    def open_turn(timestamp: int, explicit: bool) -> _TurnState:
        return _TurnState(model=session_model, timestamp=timestamp, explicit=explicit)

    def finalize_turn() -> None:
        nonlocal turn, previous_totals
        if turn is None:
            return
        usage = usage_delta(turn.last_usage, previous_totals)
        if turn.last_usage is not None:
            previous_totals = turn.last_usage
        requests.append(SessionRequest(
            requestId=f"codex-turn-{len(requests)}",
            timestamp=turn.timestamp or creation_date,
            agentId=_AGENT_ID,
            customAgentName=None,
            modelId=turn.model,
            messageText=turn.prompt,
            timings=RequestTimings(),
            usage=usage,
            toolCalls=turn.tool_calls,
            availableSkills=[],
            loadedSkills=[],
        ))
        turn = None

    def set_prompt(text: str, timestamp: int) -> None:
        nonlocal turn
        if turn is None:
            turn = open_turn(timestamp, explicit=False)
        elif not turn.explicit and turn.has_output:
            # Legacy logs: the next user message starts the next turn.
            finalize_turn()
            turn = open_turn(timestamp, explicit=False)
        turn.prompt = text

    for number, line in lines[1:]:
        envelope = parse_json_object(line)
        if envelope is None:
            log.debug("Codex: skipping malformed line %d", number)
            continue
        payload = as_dict(envelope.get("payload"))
        envelope_type = envelope.get("type")
        timestamp = iso_to_epoch_ms(envelope.get("timestamp")) or creation_date

        if envelope_type == "event_msg":
            event_type = payload.get("type")
            if event_type in _TURN_START_EVENTS:
                if turn is not None and not turn.explicit and not turn.has_output:
                    # A user message announced just before the turn started.
                    turn.explicit = True
                    turn.timestamp = timestamp
                else:
                    finalize_turn()
                    turn = open_turn(timestamp, explicit=True)
            elif event_type in _TURN_END_EVENTS:
                finalize_turn()
            elif event_type == "user_message":
                text = coerce_str(payload.get("message"))
                if text:
                    set_prompt(text, timestamp)
            elif event_type == "token_count":
                totals = as_dict(payload.get("info")).get("total_token_usage")
                if not isinstance(totals, dict):
                    continue
                if turn is None:
                    log.debug("Codex: token count outside a turn at line %d", number)
                    continue
                turn.last_usage = totals
                turn.has_output = True
            elif event_type == "agent_message" and turn is not None:
                turn.has_output = True

        elif envelope_type == "response_item":
            item_type = payload.get("type")
            if item_type == "message" and payload.get("role") == "user":
                text = _content_text(payload.get("content"))
                if not text or is_context_preamble(text):
                    continue
                set_prompt(text, timestamp)
            elif item_type in _TOOL_CALL_ITEMS:
                if turn is None:
                    turn = open_turn(timestamp, explicit=False)
                turn.tool_calls.append(ToolCallInfo(
                    id=coerce_str(payload.get("call_id")),
                    name=coerce_str(payload.get("name")) or "unknown",
                ))
                turn.has_output = True
            elif turn is not None and (
                item_type in _OUTPUT_ITEMS
                or (item_type == "message" and payload.get("role") == "assistant")
            ):
                turn.has_output = True

        elif envelope_type == "turn_context":
            model = coerce_str(payload.get("model"))
            if model:
                session_model = model
                if turn is not None:
                    turn.model = model

    finalize_turn()

    title = next(
        (title for title in (prompt_title(request.messageText) for request in requests) if title),
        None,
    )
    log.debug("Codex: %d turn(s) in session %s", len(requests), session_id)
    return Session(
        sessionId=session_id,
        title=title,
        creationDate=creation_date,
        requests=requests,
        source="codex",
        provider="codex",
    )
