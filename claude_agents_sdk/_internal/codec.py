"""Line codec for the CLI protocol.

Inbound: one JSON value per line, decoded into a ``Message`` or, for the
control protocol, into an envelope the session routes internally.
Outbound: pydantic wire models serialized to one JSON line each.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from claude_agents_sdk._errors import CLIJSONDecodeError, ProtocolDesyncError
from claude_agents_sdk._internal.message_parser import parse_message
from claude_agents_sdk.control_protocol import model_to_line
from claude_agents_sdk.types import Message
from claude_agents_sdk.utils.log import get_logger

logger = get_logger(__name__)

MAX_CONSECUTIVE_DECODE_ERRORS = 3


@dataclass(frozen=True)
class ControlRequestEnvelope:
    """A request the CLI sends to the SDK (permission prompt, hook, MCP call)."""

    request_id: str
    subtype: str
    request: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ControlResponseEnvelope:
    """The CLI's answer to a control request the SDK sent."""

    request_id: str
    subtype: str
    response: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def is_error(self) -> bool:
        return self.subtype == "error"


@dataclass(frozen=True)
class ControlCancelEnvelope:
    """The CLI withdrew a control request it sent earlier."""

    request_id: str


Decoded = Message | ControlRequestEnvelope | ControlResponseEnvelope | ControlCancelEnvelope


def decode_line(line: str) -> Decoded:
    """Decode one framed line.

    Raises:
        CLIJSONDecodeError: If the line is not valid JSON.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise CLIJSONDecodeError(line, e) from e

    if isinstance(data, dict):
        match data.get("type"):
            case "control_request":
                request = data.get("request")
                request = request if isinstance(request, dict) else {}
                return ControlRequestEnvelope(
                    request_id=str(data.get("request_id", "")),
                    subtype=str(request.get("subtype", "")),
                    request=request,
                )
            case "control_response":
                response = data.get("response")
                response = response if isinstance(response, dict) else {}
                payload = response.get("response")
                return ControlResponseEnvelope(
                    request_id=str(response.get("request_id", "")),
                    subtype=str(response.get("subtype", "success")),
                    response=payload if isinstance(payload, dict) else {},
                    error=response.get("error"),
                )
            case "control_cancel_request":
                return ControlCancelEnvelope(request_id=str(data.get("request_id", "")))

    return parse_message(data)


def encode(message: BaseModel) -> str:
    """Serialize an outbound wire model as one newline-terminated line."""
    return model_to_line(message)


class LineDecoder:
    """Stateful decoder that escalates repeated decode failures.

    A single malformed line is skipped. ``max_consecutive_errors`` malformed
    lines in a row mean the stream is desynchronized; the decoder then raises
    ``ProtocolDesyncError`` and refuses every later line.
    """

    def __init__(self, max_consecutive_errors: int = MAX_CONSECUTIVE_DECODE_ERRORS):
        self.max_consecutive_errors = max_consecutive_errors
        self._bad_lines: list[str] = []
        self._failed: ProtocolDesyncError | None = None

    @property
    def consecutive_errors(self) -> int:
        return len(self._bad_lines)

    def feed(self, line: str) -> Decoded | None:
        """Decode ``line``; return None when it was skipped as malformed."""
        if self._failed is not None:
            raise self._failed
        try:
            decoded = decode_line(line)
        except CLIJSONDecodeError as e:
            self._bad_lines.append(line)
            if len(self._bad_lines) >= self.max_consecutive_errors:
                self._failed = ProtocolDesyncError(
                    f"Protocol desync: {len(self._bad_lines)} consecutive malformed lines",
                    lines=list(self._bad_lines),
                )
                raise self._failed from e
            logger.warning(
                "[codec] Skipping malformed line",
                extra={"consecutive": len(self._bad_lines), "preview": line[:100]},
            )
            return None
        self._bad_lines.clear()
        return decoded


__all__ = [
    "ControlRequestEnvelope",
    "ControlResponseEnvelope",
    "ControlCancelEnvelope",
    "Decoded",
    "LineDecoder",
    "MAX_CONSECUTIVE_DECODE_ERRORS",
    "decode_line",
    "encode",
]
