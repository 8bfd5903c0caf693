"""Session parser registry for platform-specific implementations."""
from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from agent_lens.models import Session, SubagentInput
from agent_lens.observability import record_ingestion, record_parser_failure, start_span
from agent_lens.parsers.platforms.claude_code.parser import parse_claude_session_jsonl
from agent_lens.parsers.platforms.codex.parser import parse_codex_session_jsonl
from agent_lens.parsers.platforms.copilot.parser import (
    parse_chat_replay,
    parse_session_json,
    parse_session_jsonl,
)
from agent_lens.parsers.shared import parse_json_object, split_lines

logger = logging.getLogger("agent_lens.parsers")

FORMAT_COPILOT_JSONL = "copilot-jsonl"
FORMAT_COPILOT_JSON = "copilot-json"
FORMAT_CHAT_REPLAY = "chatreplay"
FORMAT_CLAUDE = "claude"
FORMAT_CODEX = "codex"

_CLAUDE_RECORD_TYPES = {
    "user",
    "assistant",
    "progress",
    "system",
    "summary",
    "custom-title",
    "file-history-snapshot",
    "queue-operation",
}
_SUBAGENT_FILE_PREFIX = "agent-"

_SIMPLE_PARSERS: dict[str, Callable[..., Session]] = {
    FORMAT_COPILOT_JSONL: parse_session_jsonl,
    FORMAT_COPILOT_JSON: parse_session_json,
    FORMAT_CHAT_REPLAY: parse_chat_replay,
    FORMAT_CODEX: parse_codex_session_jsonl,
}


def detect_format(content: str) -> str | None:
    """Sniff which session log format ``content`` is written in."""
    # A truncated or corrupt leading line must not hide an otherwise valid log.
    first = next(
        (record for record in (parse_json_object(line) for _, line in split_lines(content)) if record is not None),
        None,
    )
    if first is not None:
        kind = first.get("kind")
        if isinstance(kind, int) and not isinstance(kind, bool):
            return FORMAT_COPILOT_JSONL
        if first.get("type") == "session_meta":
            return FORMAT_CODEX
        if first.get("type") in _CLAUDE_RECORD_TYPES or ("sessionId" in first and "uuid" in first):
            return FORMAT_CLAUDE

    if not (content or "").strip():
        return None
    try:
        document = json.loads(content)
    except json.JSONDecodeError:
        return None
    if not isinstance(document, dict):
        return None
    if isinstance(document.get("prompts"), list):
        return FORMAT_CHAT_REPLAY
    if "requests" in document:
        return FORMAT_COPILOT_JSON
    return None


def parse_session_text(
    content: str,
    *,
    fmt: str | None = None,
    summary: str | None = None,
    subagents: Iterable[SubagentInput] | None = None,
    log: logging.Logger | None = None,
) -> Session | None:
    """Parse raw session text, sniffing the format unless ``fmt`` is given."""
    log = log or logger
    fmt = fmt or detect_format(content)
    if fmt == FORMAT_CLAUDE:
        return parse_claude_session_jsonl(content, summary, subagents, log=log)
    parser = _SIMPLE_PARSERS.get(fmt or "")
    if parser is None:
        log.debug("No parser registered for format %r", fmt)
        return None
    return parser(content, log=log)


def _subagent_id(path: Path) -> str:
    stem = path.stem
    if stem.startswith(_SUBAGENT_FILE_PREFIX):
        return stem[len(_SUBAGENT_FILE_PREFIX):]
    return stem


def _load_subagents(paths: Iterable[Path], log: logging.Logger) -> list[SubagentInput]:
    subagents: list[SubagentInput] = []
    for path in paths:
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            log.warning("Skipping subagent file %s: %s", path, exc)
            continue
        subagents.append(SubagentInput(content=content, agentId=_subagent_id(path)))
    return subagents


def parse_session_file(
    path: Path,
    *,
    summary: str | None = None,
    subagent_paths: Iterable[Path] = (),
    log: logging.Logger | None = None,
) -> Session | None:
    """Parse a session file by delegating to the matching platform parser.

    Claude Code delegated conversations live in their own ``agent-<id>.jsonl``
    files; pass them as ``subagent_paths`` to interleave them into the timeline.
    """
    log = log or logger
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        log.warning("Cannot read session file %s: %s", path, exc)
        record_parser_failure("unreadable")
        return None

    fmt = detect_format(content)
    if fmt is None:
        log.debug("Unrecognised session format: %s", path)
        record_parser_failure("unknown")
        return None

    subagents = _load_subagents(subagent_paths, log) if fmt == FORMAT_CLAUDE else None
    started = time.monotonic()
    with start_span("agent_lens.parse_session", {"format": fmt, "path": str(path)}):
        try:
            session = parse_session_text(content, fmt=fmt, summary=summary, subagents=subagents, log=log)
        except Exception:
            log.exception("Parser %s failed for %s", fmt, path)
            record_parser_failure(fmt)
            return None
    record_ingestion(fmt, "ok" if session and session.requests else "empty", (time.monotonic() - started) * 1000)
    return session
