"""Tests for inbound message parsing and the line codec."""

from __future__ import annotations

import json

import pytest

from claude_agents_sdk._errors import CLIJSONDecodeError, ProtocolDesyncError
from claude_agents_sdk._internal.codec import (
    ControlCancelEnvelope,
    ControlRequestEnvelope,
    ControlResponseEnvelope,
    LineDecoder,
    decode_line,
    encode,
)
from claude_agents_sdk._internal.message_parser import parse_content_block, parse_message
from claude_agents_sdk.control_protocol import (
    ControlRequest,
    ControlResponse,
    ControlResponseError,
    InitializeRequest,
    PermissionResponse,
    SetModelRequest,
    ToolResultResponse,
    UserInput,
    UserInputData,
    model_to_dict,
)
from claude_agents_sdk.types import (
    AssistantMessage,
    ErrorMessage,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
    UnknownMessage,
    UserMessage,
)


# ─────────────────────────────────────────────────────────────────────────────
# Message parsing
# ─────────────────────────────────────────────────────────────────────────────


class TestParseMessage:
    """Tests for turning decoded payloads into typed messages."""

    def test_assistant_blocks_in_order(self):
        message = parse_message(
            {
                "type": "assistant",
                "message": {
                    "model": "claude-sonnet-4-5",
                    "content": [
                        {"type": "thinking", "thinking": "Let me check", "signature": "sig"},
                        {"type": "text", "text": "Reading the file."},
                        {"type": "tool_use", "id": "tu_1", "name": "Read", "input": {"path": "a.py"}},
                    ],
                },
            }
        )
        assert isinstance(message, AssistantMessage)
        assert message.model == "claude-sonnet-4-5"
        assert message.content == [
            ThinkingBlock(thinking="Let me check", signature="sig"),
            TextBlock(text="Reading the file."),
            ToolUseBlock(id="tu_1", name="Read", input={"path": "a.py"}),
        ]
        assert message.tool_uses == [ToolUseBlock(id="tu_1", name="Read", input={"path": "a.py"})]
        assert message.text == "Reading the file."

    def test_assistant_string_content(self):
        message = parse_message({"type": "assistant", "message": {"content": "plain"}})
        assert message.content == [TextBlock(text="plain")]

    def test_user_tool_result(self):
        message = parse_message(
            {
                "type": "user",
                "message": {
                    "content": [
                        {"type": "tool_result", "tool_use_id": "tu_1", "content": "ok", "is_error": False}
                    ]
                },
                "parent_tool_use_id": "tu_0",
            }
        )
        assert isinstance(message, UserMessage)
        assert message.content == [ToolResultBlock(tool_use_id="tu_1", content="ok", is_error=False)]
        assert message.parent_tool_use_id == "tu_0"

    def test_user_text(self):
        message = parse_message({"type": "user", "message": {"content": "hello"}})
        assert message.content == "hello"
        assert message.text == "hello"

    def test_system_keeps_payload(self):
        data = {"type": "system", "subtype": "init", "session_id": "s1", "tools": ["Bash"]}
        message = parse_message(data)
        assert isinstance(message, SystemMessage)
        assert message.is_init
        assert message.data == data

    def test_result_with_usage(self):
        message = parse_message(
            {
                "type": "result",
                "subtype": "success",
                "duration_ms": 1500,
                "duration_api_ms": 1200,
                "is_error": False,
                "num_turns": 2,
                "session_id": "s1",
                "total_cost_usd": 0.05,
                "usage": {"input_tokens": 100, "output_tokens": 40, "cache_read_input_tokens": 7},
                "stop_reason": "end_turn",
            }
        )
        assert isinstance(message, ResultMessage)
        assert message.num_turns == 2
        assert message.stop_reason == "end_turn"
        cost = message.cost
        assert (cost.input_tokens, cost.output_tokens, cost.cache_read_input_tokens) == (100, 40, 7)
        assert cost.total_cost_usd == pytest.approx(0.05)

    def test_result_without_cost_counts_zero(self):
        message = parse_message({"type": "result", "session_id": "s1"})
        assert message.cost.total_cost_usd == 0.0
        assert message.cost.input_tokens == 0

    def test_error_message(self):
        message = parse_message({"type": "error", "error": {"type": "overloaded", "message": "busy"}})
        assert isinstance(message, ErrorMessage)
        assert message.error == "busy"

    def test_stream_event(self):
        message = parse_message(
            {"type": "stream_event", "uuid": "u1", "session_id": "s1", "event": {"type": "delta"}}
        )
        assert isinstance(message, StreamEvent)
        assert message.event == {"type": "delta"}

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "brand_new"},
            {"no_type": True},
            [1, 2, 3],
            "a string",
        ],
    )
    def test_unrecognized_payloads_never_raise(self, payload):
        assert isinstance(parse_message(payload), UnknownMessage)

    def test_unknown_block_is_kept(self):
        block = parse_content_block({"type": "image", "source": {"data": "..."}})
        assert isinstance(block, UnknownBlock)
        assert block.type == "image"
        assert block.raw["source"] == {"data": "..."}

    def test_non_dict_block(self):
        block = parse_content_block(42)
        assert isinstance(block, UnknownBlock)
        assert block.raw == {"value": 42}


# ─────────────────────────────────────────────────────────────────────────────
# Line codec
# ─────────────────────────────────────────────────────────────────────────────


class TestDecodeLine:
    def test_control_request(self):
        decoded = decode_line(
            json.dumps(
                {
                    "type": "control_request",
                    "request_id": "cli_1",
                    "request": {"subtype": "can_use_tool", "tool_name": "Bash"},
                }
            )
        )
        assert decoded == ControlRequestEnvelope(
            request_id="cli_1",
            subtype="can_use_tool",
            request={"subtype": "can_use_tool", "tool_name": "Bash"},
        )

    def test_control_response_success(self):
        decoded = decode_line(
            json.dumps(
                {
                    "type": "control_response",
                    "response": {"subtype": "success", "request_id": "req_1", "response": {"ok": 1}},
                }
            )
        )
        assert isinstance(decoded, ControlResponseEnvelope)
        assert not decoded.is_error
        assert decoded.response == {"ok": 1}

    def test_control_response_error(self):
        decoded = decode_line(
            json.dumps(
                {
                    "type": "control_response",
                    "response": {"subtype": "error", "request_id": "req_2", "error": "nope"},
                }
            )
        )
        assert decoded.is_error
        assert decoded.error == "nope"
        assert decoded.response == {}

    def test_control_cancel(self):
        decoded = decode_line('{"type": "control_cancel_request", "request_id": "cli_9"}')
        assert decoded == ControlCancelEnvelope(request_id="cli_9")

    def test_invalid_json(self):
        with pytest.raises(CLIJSONDecodeError) as exc_info:
            decode_line("{not json")
        assert exc_info.value.line == "{not json"


class TestLineDecoder:
    """Tests for escalation of consecutive decode failures."""

    def test_isolated_bad_lines_are_skipped(self):
        decoder = LineDecoder(max_consecutive_errors=3)
        assert decoder.feed("garbage") is None
        assert decoder.feed("more garbage") is None
        assert isinstance(decoder.feed('{"type": "user", "message": {"content": "x"}}'), UserMessage)
        assert decoder.consecutive_errors == 0
        assert decoder.feed("garbage again") is None

    def test_consecutive_bad_lines_desync(self):
        decoder = LineDecoder(max_consecutive_errors=3)
        decoder.feed("a")
        decoder.feed("b")
        with pytest.raises(ProtocolDesyncError) as exc_info:
            decoder.feed("c")
        assert exc_info.value.lines == ["a", "b", "c"]

    def test_desync_is_permanent(self):
        decoder = LineDecoder(max_consecutive_errors=1)
        with pytest.raises(ProtocolDesyncError):
            decoder.feed("x")
        with pytest.raises(ProtocolDesyncError):
            decoder.feed('{"type": "result"}')


# ─────────────────────────────────────────────────────────────────────────────
# Outbound wire models
# ─────────────────────────────────────────────────────────────────────────────


class TestEncode:
    """Tests for the JSON shape of outbound lines."""

    def test_user_input(self):
        line = encode(UserInput(message=UserInputData(content="hello")))
        assert line.endswith("\n")
        assert "\n" not in line[:-1]
        assert json.loads(line) == {
            "type": "user",
            "message": {"role": "user", "content": "hello"},
            "session_id": "default",
        }

    def test_initialize_uses_cli_field_names(self):
        request = ControlRequest(
            request_id="req_1",
            request=InitializeRequest(
                hooks={"PreToolUse": [{"matcher": "Bash", "hookCallbackIds": ["hook_0"]}]},
                sdk_mcp_servers=["calc"],
            ),
        )
        assert model_to_dict(request) == {
            "type": "control_request",
            "request_id": "req_1",
            "request": {
                "subtype": "initialize",
                "hooks": {"PreToolUse": [{"matcher": "Bash", "hookCallbackIds": ["hook_0"]}]},
                "sdkMcpServers": ["calc"],
            },
        }

    def test_set_model_default(self):
        request = ControlRequest(request_id="req_3", request=SetModelRequest())
        assert model_to_dict(request)["request"] == {"subtype": "set_model"}

    def test_permission_response(self):
        response = PermissionResponse(
            tool_use_id="tu_1", decision="allow", updated_input={"command": "ls -la"}
        )
        assert json.loads(encode(response)) == {
            "type": "permission_response",
            "tool_use_id": "tu_1",
            "decision": "allow",
            "updatedInput": {"command": "ls -la"},
        }

    def test_tool_result(self):
        response = ToolResultResponse(
            tool_use_id="tu_2", content=[{"type": "text", "text": "boom"}], is_error=True
        )
        assert json.loads(encode(response))["is_error"] is True

    def test_control_error_response(self):
        response = ControlResponse(response=ControlResponseError(request_id="cli_1", error="bad"))
        assert json.loads(encode(response)) == {
            "type": "control_response",
            "response": {"subtype": "error", "request_id": "cli_1", "error": "bad"},
        }

    def test_non_ascii_survives(self):
        line = encode(UserInput(message=UserInputData(content="héllo ✓")))
        assert json.loads(line)["message"]["content"] == "héllo ✓"
