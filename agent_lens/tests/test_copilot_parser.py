import json
import unittest

from agent_lens.parsers.platforms.copilot.parser import (
    parse_chat_replay,
    parse_session_json,
    parse_session_jsonl,
)


def _jsonl(entries: list[dict]) -> str:
    return "\n".join(json.dumps(entry) for entry in entries)


def _mode(agent_file: str) -> dict:
    return {"id": f"file:///repo/.github/agents/{agent_file}", "kind": "agent"}


def _request(request_id: str, timestamp: int, text: str, **extra) -> dict:
    raw = {
        "requestId": request_id,
        "timestamp": timestamp,
        "agent": {"id": "github.copilot.editsAgent"},
        "modelId": "copilot/claude-sonnet-4",
        "message": {"text": text},
    }
    raw.update(extra)
    return raw


SKILLS_PROMPT = (
    "<skills>\n"
    "<skill>\n<name>testing</name>\n<description>Write tests</description>\n"
    "<file>/repo/.github/skills/testing/SKILL.md</file>\n</skill>\n"
    "<skill>\n<name>docs</name>\n<description>Write docs</description>\n"
    "<file>/repo/.github/skills/docs.skill.md</file>\n</skill>\n"
    "</skills>"
)


class CopilotJsonlParserTests(unittest.TestCase):
    def test_replays_init_and_appends_into_requests(self) -> None:
        content = _jsonl(
            [
                {
                    "kind": 0,
                    "v": {
                        "sessionId": "abc-123",
                        "creationDate": 1770000000000,
                        "requests": [],
                    },
                },
                {
                    "kind": 2,
                    "k": ["requests"],
                    "v": [
                        _request(
                            "req-1",
                            1770000001000,
                            "Add a login page",
                            result={
                                "timings": {"firstProgress": 900, "totalElapsed": 4200},
                                "usage": {"promptTokens": 1200, "completionTokens": 300},
                            },
                        )
                    ],
                },
            ]
        )

        session = parse_session_jsonl(content)

        self.assertEqual(session.sessionId, "abc-123")
        self.assertEqual(session.provider, "copilot")
        self.assertEqual(session.source, "jsonl")
        self.assertEqual(session.creationDate, 1770000000000)
        self.assertEqual(session.title, "Add a login page")
        self.assertEqual(len(session.requests), 1)
        request = session.requests[0]
        self.assertEqual(request.requestId, "req-1")
        self.assertEqual(request.agentId, "github.copilot.editsAgent")
        self.assertEqual(request.modelId, "copilot/claude-sonnet-4")
        self.assertEqual(request.timings.firstProgress, 900)
        self.assertEqual(request.timings.totalElapsed, 4200)
        self.assertEqual(request.usage.promptTokens, 1200)
        self.assertEqual(request.usage.completionTokens, 300)
        self.assertIsNone(request.customAgentName)

    def test_set_updates_nested_request_fields(self) -> None:
        content = _jsonl(
            [
                {"kind": 0, "v": {"sessionId": "s1", "creationDate": 0, "requests": []}},
                {"kind": 2, "k": ["requests"], "v": [_request("req-1", 5, "hello")]},
                {
                    "kind": 1,
                    "k": ["requests", 0, "result"],
                    "v": {"usage": {"promptTokens": 10, "completionTokens": 20}},
                },
                {"kind": 1, "k": ["customTitle"], "v": "Renamed chat"},
            ]
        )

        session = parse_session_jsonl(content)

        self.assertEqual(session.title, "Renamed chat")
        self.assertEqual(session.requests[0].usage.promptTokens, 10)
        self.assertEqual(session.requests[0].usage.completionTokens, 20)

    def test_detects_custom_agent_from_initial_mode(self) -> None:
        content = _jsonl(
            [
                {
                    "kind": 0,
                    "v": {
                        "sessionId": "s1",
                        "creationDate": 0,
                        "requests": [],
                        "inputState": {"mode": _mode("planner.agent.md")},
                    },
                },
                {"kind": 2, "k": ["requests"], "v": [_request("req-1", 0, "plan this")]},
            ]
        )

        session = parse_session_jsonl(content)
        self.assertEqual(session.requests[0].customAgentName, "planner")

    def test_mode_is_sampled_when_each_request_is_appended(self) -> None:
        content = _jsonl(
            [
                {
                    "kind": 0,
                    "v": {
                        "sessionId": "s2",
                        "creationDate": 0,
                        "requests": [],
                        "inputState": {"mode": _mode("planner.agent.md")},
                    },
                },
                {"kind": 2, "k": ["requests"], "v": [_request("req-1", 0, "first")]},
                {"kind": 1, "k": ["inputState", "mode"], "v": _mode("architect.agent.md")},
                {"kind": 2, "k": ["requests"], "v": [_request("req-2", 1, "second")]},
                {"kind": 1, "k": ["inputState", "mode"], "v": _mode("tester.agent.md")},
                {"kind": 2, "k": ["requests"], "v": [_request("req-3", 2, "third")]},
                {"kind": 1, "k": ["inputState", "mode"], "v": {"id": "agent", "kind": "ask"}},
            ]
        )

        session = parse_session_jsonl(content)

        self.assertEqual(
            [request.customAgentName for request in session.requests],
            ["planner", "architect", "tester"],
        )

    def test_url_encoded_agent_uri_is_decoded(self) -> None:
        content = _jsonl(
            [
                {
                    "kind": 0,
                    "v": {
                        "sessionId": "s3",
                        "requests": [],
                        "inputState": {"mode": _mode("code%20reviewer.agent.md")},
                    },
                },
                {"kind": 2, "k": ["requests"], "v": [_request("req-1", 0, "review")]},
            ]
        )

        session = parse_session_jsonl(content)
        self.assertEqual(session.requests[0].customAgentName, "code reviewer")

    def test_falls_back_to_mode_instructions_without_mode_state(self) -> None:
        rendered = [
            {
                "value": '<modeInstructions>\nYou are currently running in "Planner" mode. '
                "Plan before you build.</modeInstructions>"
            }
        ]
        content = _jsonl(
            [
                {"kind": 0, "v": {"sessionId": "s4", "requests": []}},
                {
                    "kind": 2,
                    "k": ["requests"],
                    "v": [
                        _request(
                            "req-1",
                            0,
                            "plan",
                            result={"metadata": {"renderedUserMessage": rendered}},
                        )
                    ],
                },
            ]
        )

        session = parse_session_jsonl(content)
        self.assertEqual(session.requests[0].customAgentName, "Planner")

    def test_mode_attribution_wins_over_mode_instructions(self) -> None:
        rendered = [{"value": '<modeInstructions>You are currently running in "Other" mode'}]
        content = _jsonl(
            [
                {
                    "kind": 0,
                    "v": {
                        "sessionId": "s5",
                        "requests": [],
                        "inputState": {"mode": _mode("planner.agent.md")},
                    },
                },
                {
                    "kind": 2,
                    "k": ["requests"],
                    "v": [_request("req-1", 0, "x", result={"metadata": {"renderedUserMessage": rendered}})],
                },
            ]
        )

        session = parse_session_jsonl(content)
        self.assertEqual(session.requests[0].customAgentName, "planner")

    def test_subagent_calls_are_rebuilt_from_response_entries(self) -> None:
        metadata = {
            "toolCallRounds": [
                {
                    "toolCalls": [
                        {"id": "round-1", "name": "read_file"},
                        {"id": "round-2", "name": "runSubagent"},
                    ]
                },
                {"toolCalls": [{"id": "round-3", "name": "grep_search"}]},
            ]
        }
        response = [
            {"kind": "markdownContent", "content": {"value": "Delegating."}},
            {
                "kind": "toolInvocationSerialized",
                "toolId": "runSubagent",
                "toolCallId": "sub-1",
                "toolSpecificData": {"kind": "subagent", "description": "Investigate the failing test"},
            },
            {
                "kind": "toolInvocationSerialized",
                "toolId": "read_file",
                "toolCallId": "child-1",
                "subAgentInvocationId": "sub-1",
            },
            {
                "kind": "toolInvocationSerialized",
                "toolId": "mcp_github_search_issues",
                "toolCallId": "child-2",
                "subAgentInvocationId": "sub-1",
                "source": {"type": "mcp", "serverLabel": "GitHub"},
            },
        ]
        content = _jsonl(
            [
                {"kind": 0, "v": {"sessionId": "s6", "requests": []}},
                {
                    "kind": 2,
                    "k": ["requests"],
                    "v": [_request("req-1", 0, "fix it", result={"metadata": metadata}, response=response)],
                },
            ]
        )

        calls = parse_session_jsonl(content).requests[0].toolCalls

        self.assertEqual([call.id for call in calls], ["round-1", "sub-1", "round-3"])
        subagent = calls[1]
        self.assertEqual(subagent.name, "runSubagent")
        self.assertEqual(subagent.subagentDescription, "Investigate the failing test")
        assert subagent.childToolCalls is not None
        self.assertEqual([child.id for child in subagent.childToolCalls], ["child-1", "child-2"])
        self.assertIsNone(subagent.childToolCalls[0].mcpServer)
        self.assertEqual(subagent.childToolCalls[1].mcpServer, "GitHub")

    def test_mcp_server_labels_apply_by_tool_name(self) -> None:
        metadata = {
            "toolCallRounds": [
                {
                    "toolCalls": [
                        {"id": "call-1", "name": "mcp_github_list_prs"},
                        {"id": "call-2", "name": "mcp_github_list_prs"},
                        {"id": "call-3", "name": "read_file"},
                    ]
                }
            ]
        }
        response = [
            {
                "kind": "toolInvocationSerialized",
                "toolId": "mcp_github_list_prs",
                "toolCallId": "other-id",
                "source": {"type": "mcp", "serverLabel": "GitHub"},
            }
        ]
        content = _jsonl(
            [
                {"kind": 0, "v": {"sessionId": "s7", "requests": []}},
                {
                    "kind": 2,
                    "k": ["requests"],
                    "v": [_request("req-1", 0, "list", result={"metadata": metadata}, response=response)],
                },
            ]
        )

        calls = parse_session_jsonl(content).requests[0].toolCalls

        self.assertEqual([call.mcpServer for call in calls], ["GitHub", "GitHub", None])
        self.assertEqual([call.id for call in calls], ["call-1", "call-2", "call-3"])

    def test_available_and_loaded_skills(self) -> None:
        metadata = {
            "renderedUserMessage": [{"value": SKILLS_PROMPT}],
            "toolCallRounds": [
                {
                    "toolCalls": [
                        {
                            "id": "call-1",
                            "name": "read_file",
                            "arguments": json.dumps({"filePath": "/repo/.github/skills/testing/SKILL.md"}),
                        },
                        {"id": "call-2", "name": "read_file"},
                        {"id": "call-3", "name": "read_file", "arguments": "{not json"},
                    ]
                }
            ],
            "toolCallResults": {
                "call-2": {"content": [{"value": json.dumps({"filePath": "/repo/.github/skills/docs.skill.md"})}]}
            },
        }
        content = _jsonl(
            [
                {"kind": 0, "v": {"sessionId": "s8", "requests": []}},
                {"kind": 2, "k": ["requests"], "v": [_request("req-1", 0, "test", result={"metadata": metadata})]},
            ]
        )

        request = parse_session_jsonl(content).requests[0]

        self.assertEqual([skill.name for skill in request.availableSkills], ["testing", "docs"])
        self.assertEqual(request.availableSkills[0].file, "/repo/.github/skills/testing/SKILL.md")
        self.assertEqual(request.loadedSkills, ["testing", "docs"])

    def test_title_truncates_long_first_prompt(self) -> None:
        for length, expected in ((80, "a" * 80), (81, "a" * 80 + "…")):
            content = _jsonl(
                [
                    {"kind": 0, "v": {"sessionId": "s9", "requests": []}},
                    {"kind": 2, "k": ["requests"], "v": [_request("req-1", 0, "  " + "a" * length + "  ")]},
                ]
            )
            with self.subTest(length=length):
                self.assertEqual(parse_session_jsonl(content).title, expected)

    def test_malformed_lines_are_skipped(self) -> None:
        content = "\n".join(
            [
                json.dumps({"kind": 0, "v": {"sessionId": "s10", "requests": []}}),
                "{not json",
                "",
                json.dumps({"kind": 2, "k": ["requests"], "v": [_request("req-1", 3, "ok")]}),
                json.dumps({"kind": 2, "k": ["missing", "path"], "v": [1]}),
                json.dumps({"kind": 1, "k": ["requests", 7, "result"], "v": {}}),
            ]
        )

        session = parse_session_jsonl(content)

        self.assertEqual(session.sessionId, "s10")
        self.assertEqual([request.requestId for request in session.requests], ["req-1"])

    def test_non_finite_numbers_do_not_raise(self) -> None:
        content = _jsonl(
            [
                {"kind": 0, "v": {"sessionId": "s12", "creationDate": float("inf"), "requests": []}},
                {
                    "kind": 2,
                    "k": ["requests"],
                    "v": [
                        _request(
                            "req-1",
                            float("inf"),
                            "hello",
                            result={
                                "timings": {"firstProgress": float("inf"), "totalElapsed": float("nan")},
                                "usage": {"promptTokens": float("-inf"), "completionTokens": 12},
                            },
                        )
                    ],
                },
            ]
        )

        session = parse_session_jsonl(content)

        self.assertEqual(session.creationDate, 0)
        request = session.requests[0]
        self.assertEqual(request.timestamp, 0)
        self.assertIsNone(request.timings.firstProgress)
        self.assertIsNone(request.timings.totalElapsed)
        self.assertEqual(request.usage.promptTokens, 0)
        self.assertEqual(request.usage.completionTokens, 12)

    def test_empty_content_yields_unknown_session(self) -> None:
        for content in ("", "   \n\n"):
            session = parse_session_jsonl(content)
            self.assertEqual(session.sessionId, "unknown")
            self.assertEqual(session.requests, [])
            self.assertIsNone(session.title)

    def test_parsing_is_deterministic(self) -> None:
        content = _jsonl(
            [
                {"kind": 0, "v": {"sessionId": "s11", "requests": [], "inputState": {"mode": _mode("planner.agent.md")}}},
                {"kind": 2, "k": ["requests"], "v": [_request("req-2", 20, "later"), _request("req-1", 10, "earlier")]},
            ]
        )

        first = parse_session_jsonl(content)
        second = parse_session_jsonl(content)

        self.assertEqual(first.model_dump(), second.model_dump())
        self.assertEqual([request.requestId for request in first.requests], ["req-1", "req-2"])


class CopilotJsonParserTests(unittest.TestCase):
    def test_parses_whole_document_snapshot(self) -> None:
        document = {
            "sessionId": "json-1",
            "creationDate": 1770000000000,
            "requests": [_request("req-1", 1770000000500, "Explain the build")],
        }

        session = parse_session_json(json.dumps(document))

        self.assertEqual(session.source, "json")
        self.assertEqual(session.sessionId, "json-1")
        self.assertEqual(session.title, "Explain the build")
        self.assertEqual(len(session.requests), 1)

    def test_unreadable_document_yields_empty_session(self) -> None:
        session = parse_session_json("{truncated")
        self.assertEqual(session.sessionId, "unknown")
        self.assertEqual(session.requests, [])


class ChatReplayParserTests(unittest.TestCase):
    def test_parses_prompts_with_request_and_tool_logs(self) -> None:
        document = {
            "exportedAt": "2026-02-12T21:13:03.592Z",
            "totalPrompts": 1,
            "prompts": [
                {
                    "prompt": "Hello from chatreplay",
                    "promptId": "prompt-1",
                    "logs": [
                        {
                            "id": "log-1",
                            "kind": "request",
                            "name": "panel/editAgent",
                            "metadata": {
                                "model": "claude-sonnet-4",
                                "startTime": "2026-02-12T21:12:00.000Z",
                                "timeToFirstToken": 850,
                                "duration": 3000,
                                "usage": {"prompt_tokens": 500, "completion_tokens": 120},
                            },
                            "requestMessages": {
                                "messages": [
                                    {"role": "system", "content": SKILLS_PROMPT},
                                    {"role": "user", "content": [{"type": "text"}]},
                                ]
                            },
                        },
                        {
                            "id": "tool-1",
                            "kind": "toolCall",
                            "tool": "read_file",
                            "args": json.dumps({"filePath": ".github/skills/testing/SKILL.md"}),
                        },
                    ],
                },
                {"prompt": "no request log", "promptId": "prompt-2", "logs": []},
            ],
        }

        session = parse_chat_replay(json.dumps(document))

        self.assertEqual(session.source, "chatreplay")
        self.assertEqual(session.sessionId, "prompt-1")
        self.assertEqual(session.creationDate, 1770930783592)
        self.assertEqual(len(session.requests), 1)
        request = session.requests[0]
        self.assertEqual(request.requestId, "log-1")
        self.assertEqual(request.agentId, "panel/editAgent")
        self.assertEqual(request.modelId, "claude-sonnet-4")
        self.assertEqual(request.messageText, "Hello from chatreplay")
        self.assertEqual(request.timestamp, 1770930720000)
        self.assertEqual(request.timings.firstProgress, 850)
        self.assertEqual(request.timings.totalElapsed, 3000)
        self.assertEqual(request.usage.promptTokens, 500)
        self.assertEqual(request.usage.completionTokens, 120)
        self.assertEqual([call.name for call in request.toolCalls], ["read_file"])
        self.assertEqual(len(request.availableSkills), 2)
        self.assertEqual(request.loadedSkills, ["testing"])


if __name__ == "__main__":
    unittest.main()
