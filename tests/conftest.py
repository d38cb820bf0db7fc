"""Pytest configuration and fixtures for all tests."""

from __future__ import annotations

import json
import math
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any

import anyio
import pytest

from claude_agents_sdk._errors import CLIBrokenPipeError
from claude_agents_sdk._internal.registry import SessionRegistry
from claude_agents_sdk._internal.transport import Transport

Item = dict[str, Any] | str
Responder = Callable[[dict[str, Any]], Iterable[Item] | None]

SERVER_INFO = {"commands": [], "output_style": "default"}


# ─────────────────────────────────────────────────────────────────────────────
# Message builders
# ─────────────────────────────────────────────────────────────────────────────


def system_init(session_id: str = "cli-session-1") -> dict[str, Any]:
    return {
        "type": "system",
        "subtype": "init",
        "session_id": session_id,
        "model": "claude-sonnet-4-5",
        "tools": ["Bash", "Read"],
    }


def assistant_text(text: str) -> dict[str, Any]:
    return {
        "type": "assistant",
        "message": {"content": [{"type": "text", "text": text}], "model": "claude-sonnet-4-5"},
    }


def assistant_tool_uses(*uses: tuple[str, str, dict[str, Any]]) -> dict[str, Any]:
    """Assistant message with one tool_use block per ``(id, name, input)``."""
    return {
        "type": "assistant",
        "message": {
            "content": [
                {"type": "tool_use", "id": use_id, "name": name, "input": tool_input}
                for use_id, name, tool_input in uses
            ],
            "model": "claude-sonnet-4-5",
        },
    }


def user_tool_result(tool_use_id: str, content: str, is_error: bool = False) -> dict[str, Any]:
    return {
        "type": "user",
        "message": {
            "content": [
                {
                    "type": "tool_result",
                    "tool_use_id": tool_use_id,
                    "content": content,
                    "is_error": is_error,
                }
            ]
        },
    }


def result_message(num_turns: int = 1, **overrides: Any) -> dict[str, Any]:
    data = {
        "type": "result",
        "subtype": "success",
        "duration_ms": 120,
        "duration_api_ms": 100,
        "is_error": False,
        "num_turns": num_turns,
        "session_id": "cli-session-1",
        "total_cost_usd": 0.01,
        "usage": {"input_tokens": 10, "output_tokens": 5},
    }
    data.update(overrides)
    return data


def control_request(request_id: str, subtype: str, **fields: Any) -> dict[str, Any]:
    return {
        "type": "control_request",
        "request_id": request_id,
        "request": {"subtype": subtype, **fields},
    }


# ─────────────────────────────────────────────────────────────────────────────
# Fake transport
# ─────────────────────────────────────────────────────────────────────────────


class FakeTransport(Transport):
    """In-memory transport that plays the CLI side of the protocol.

    ``turns`` holds one batch of lines per user message: each user message
    the session writes releases the next batch. ``init`` picks how the
    handshake is acknowledged: ``"response"`` answers the initialize request,
    ``"system"`` emits a ``system/init`` message, ``"error"`` rejects the
    request and ``"none"`` never answers.
    Responders see every written message and may return more lines to emit.
    """

    def __init__(
        self,
        turns: list[list[Item]] | None = None,
        *,
        init: str = "response",
        eof_on_end_input: bool = True,
    ) -> None:
        self._send, self._receive = anyio.create_memory_object_stream[str](math.inf)
        self.turns = list(turns or [])
        self.init = init
        self.eof_on_end_input = eof_on_end_input
        self.responders: list[Responder] = []
        self.written: list[dict[str, Any]] = []
        self.control_errors: dict[str, str] = {}
        self.control_replies: dict[str, dict[str, Any]] = {}
        self.answer_control = True
        self.connected = False
        self.closed = False
        self.close_calls = 0
        self.input_ended = False
        self.fail_connect: BaseException | None = None

    # Scripting helpers

    def feed(self, *items: Item) -> None:
        for item in items:
            line = item if isinstance(item, str) else json.dumps(item)
            try:
                self._send.send_nowait(line)
            except (anyio.ClosedResourceError, anyio.BrokenResourceError):
                return

    def finish(self) -> None:
        """Simulate the CLI closing its stdout."""
        self._send.close()

    def add_responder(self, responder: Responder) -> None:
        self.responders.append(responder)

    def written_of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [message for message in self.written if message.get("type") == message_type]

    def control_requests(self, subtype: str | None = None) -> list[dict[str, Any]]:
        return [
            message
            for message in self.written_of_type("control_request")
            if subtype is None or message["request"]["subtype"] == subtype
        ]

    def control_response_for(self, request_id: str) -> dict[str, Any] | None:
        for message in self.written_of_type("control_response"):
            if message["response"]["request_id"] == request_id:
                return message["response"]
        return None

    async def wait_for(
        self, predicate: Callable[[FakeTransport], bool], timeout: float = 2.0
    ) -> None:
        with anyio.fail_after(timeout):
            while not predicate(self):
                await anyio.sleep(0.005)

    # Transport interface

    async def connect(self) -> None:
        if self.fail_connect is not None:
            raise self.fail_connect
        self.connected = True

    async def write(self, data: str) -> None:
        if self.closed or self.input_ended:
            raise CLIBrokenPipeError("Cannot write to closed fake transport")
        assert data.endswith("\n")
        message = json.loads(data)
        self.written.append(message)
        self._react(message)

    def _react(self, message: dict[str, Any]) -> None:
        if message.get("type") == "control_request":
            request_id = message["request_id"]
            subtype = message["request"]["subtype"]
            if subtype == "initialize":
                if self.init == "response":
                    self.feed(_control_success(request_id, SERVER_INFO))
                elif self.init == "system":
                    self.feed(system_init())
                elif self.init == "error":
                    self.feed(_control_error(request_id, "initialization refused"))
            elif self.answer_control:
                if subtype in self.control_errors:
                    self.feed(_control_error(request_id, self.control_errors[subtype]))
                else:
                    self.feed(_control_success(request_id, self.control_replies.get(subtype, {})))
        elif message.get("type") == "user" and self.turns:
            self.feed(*self.turns.pop(0))

        for responder in self.responders:
            extra = responder(message)
            if extra:
                self.feed(*extra)

    def read_lines(self) -> AsyncIterator[str]:
        return self._read_impl()

    async def _read_impl(self) -> AsyncIterator[str]:
        try:
            async for line in self._receive:
                yield line
        except anyio.ClosedResourceError:
            return

    async def end_input(self) -> None:
        self.input_ended = True
        if self.eof_on_end_input:
            self.finish()

    async def close(self) -> None:
        self.close_calls += 1
        if self.closed:
            return
        self.closed = True
        self._send.close()

    def is_ready(self) -> bool:
        return self.connected and not self.closed


def _control_success(request_id: str, response: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "control_response",
        "response": {"subtype": "success", "request_id": request_id, "response": response},
    }


def _control_error(request_id: str, error: str) -> dict[str, Any]:
    return {
        "type": "control_response",
        "response": {"subtype": "error", "request_id": request_id, "error": error},
    }


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def registry() -> SessionRegistry:
    """A private registry so sessions from other tests are never visible."""
    return SessionRegistry()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()

