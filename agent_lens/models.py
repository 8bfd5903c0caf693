"""Pydantic models for the normalized session timeline."""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SessionProviderType = Literal["copilot", "claude", "codex"]

# ── Session-related models ──────────────────────────────────────────

class ToolCallInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = ""
    subagentDescription: Optional[str] = None
    childToolCalls: Optional[list[ToolCallInfo]] = None
    mcpServer: Optional[str] = None


class SkillRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    file: str


class RequestTimings(BaseModel):
    firstProgress: Optional[int] = None
    totalElapsed: Optional[int] = None


class RequestUsage(BaseModel):
    promptTokens: int = Field(default=0, ge=0)
    completionTokens: int = Field(default=0, ge=0)
    cacheReadTokens: Optional[int] = Field(default=None, ge=0)
    cacheCreationTokens: Optional[int] = Field(default=None, ge=0)


class SessionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    requestId: str = ""
    timestamp: int = 0  # epoch milliseconds
    agentId: str = ""
    customAgentName: Optional[str] = None
    modelId: str = ""
    messageText: str = ""
    timings: RequestTimings = Field(default_factory=RequestTimings)
    usage: RequestUsage = Field(default_factory=RequestUsage)
    toolCalls: list[ToolCallInfo] = Field(default_factory=list)
    availableSkills: list[SkillRef] = Field(default_factory=list)
    loadedSkills: list[str] = Field(default_factory=list)
    isSubagent: Optional[bool] = None


class Session(BaseModel):
    """One parsed conversation; built once by a parser and never mutated."""

    model_config = ConfigDict(frozen=True)

    sessionId: str
    title: Optional[str] = None
    creationDate: int = 0  # epoch milliseconds
    requests: list[SessionRequest] = Field(default_factory=list)
    source: str = ""  # "jsonl" | "json" | "chatreplay" | "claude" | "codex"
    provider: SessionProviderType
    scope: Optional[str] = None  # "workspace" | "fallback" | "global"

    @field_validator("requests")
    @classmethod
    def _order_requests(cls, requests: list[SessionRequest]) -> list[SessionRequest]:
        # Stable: requests sharing a timestamp keep their input order.
        return sorted(requests, key=lambda request: request.timestamp)


class SubagentInput(BaseModel):
    """One delegated Claude Code conversation, read from its own file."""

    content: str = ""
    agentId: str
    subagentType: Optional[str] = None


# ── Definition-file models ─────────────────────────────────────────

class Handoff(BaseModel):
    label: str = ""
    agent: str = ""
    prompt: str = ""
    send: bool = True


class AgentDefinition(BaseModel):
    name: str
    description: str = ""
    tools: list[str] = Field(default_factory=list)
    model: list[str] = Field(default_factory=list)
    handoffs: list[Handoff] = Field(default_factory=list)
    body: str = ""
    filePath: str = ""


class SkillDefinition(BaseModel):
    name: str
    description: str = ""
    body: str = ""
    filePath: str = ""
