"""Pydantic models for messages the SDK writes to the CLI.

Every outbound line is one of these models, serialized with
``model_to_line``. Inbound lines are decoded by
``claude_agents_sdk._internal.message_parser`` instead, since they must
tolerate variants this SDK does not know about.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    """Base class for outbound protocol messages."""

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
    )


# ============================================================================
# Conversation input
# ============================================================================


class UserInputData(WireModel):
    role: Literal["user"] = "user"
    content: str | list[dict[str, Any]]


class UserInput(WireModel):
    """A user turn sent to the CLI over stdin."""

    type: Literal["user"] = "user"
    message: UserInputData
    parent_tool_use_id: str | None = None
    session_id: str = "default"


# ============================================================================
# Control requests (SDK -> CLI)
# ============================================================================


class InitializeRequest(WireModel):
    subtype: Literal["initialize"] = "initialize"
    hooks: dict[str, list[dict[str, Any]]] | None = None
    sdk_mcp_servers: list[str] = Field(default_factory=list, alias="sdkMcpServers")


class InterruptRequest(WireModel):
    subtype: Literal["interrupt"] = "interrupt"


class SetPermissionModeRequest(WireModel):
    subtype: Literal["set_permission_mode"] = "set_permission_mode"
    mode: str


class SetModelRequest(WireModel):
    subtype: Literal["set_model"] = "set_model"
    model: str | None = None


class RewindFilesRequest(WireModel):
    """Restore files the CLI tracks to their state at a user message."""

    subtype: Literal["rewind_files"] = "rewind_files"
    user_message_id: str


class McpStatusRequest(WireModel):
    subtype: Literal["mcp_status"] = "mcp_status"


class ControlRequest(WireModel):
    """Control request envelope."""

    type: Literal["control_request"] = "control_request"
    request_id: str
    request: (
        InitializeRequest
        | InterruptRequest
        | SetPermissionModeRequest
        | SetModelRequest
        | RewindFilesRequest
        | McpStatusRequest
    )


# ============================================================================
# Control responses (SDK -> CLI, answering CLI control requests)
# ============================================================================


class ControlResponseSuccess(WireModel):
    subtype: Literal["success"] = "success"
    request_id: str
    response: dict[str, Any] | None = None


class ControlResponseError(WireModel):
    subtype: Literal["error"] = "error"
    request_id: str
    error: str


class ControlResponse(WireModel):
    """Control response envelope."""

    type: Literal["control_response"] = "control_response"
    response: ControlResponseSuccess | ControlResponseError


# ============================================================================
# Tool call resolutions
# ============================================================================


class ToolResultResponse(WireModel):
    """Result (or error) for one tool use, paired by ``tool_use_id``."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: list[dict[str, Any]] = Field(default_factory=list)
    is_error: bool = False


class PermissionResponse(WireModel):
    """Permission verdict for a tool the CLI executes itself."""

    type: Literal["permission_response"] = "permission_response"
    tool_use_id: str
    decision: Literal["allow", "deny"]
    updated_input: dict[str, Any] | None = Field(default=None, alias="updatedInput")
    message: str | None = None
    interrupt: bool | None = None


OutboundMessage = (
    UserInput | ControlRequest | ControlResponse | ToolResultResponse | PermissionResponse
)


def model_to_dict(model: BaseModel) -> dict[str, Any]:
    """Convert a model to a JSON-ready dict, dropping unset optionals."""
    return model.model_dump(exclude_none=True, by_alias=True, mode="json")


def model_to_line(model: BaseModel) -> str:
    """Serialize a model as one newline-terminated JSON line."""
    return model.model_dump_json(exclude_none=True, by_alias=True) + "\n"


def text_content(text: str) -> list[dict[str, Any]]:
    return [{"type": "text", "text": text}]


__all__ = [
    "WireModel",
    "UserInputData",
    "UserInput",
    "InitializeRequest",
    "InterruptRequest",
    "SetPermissionModeRequest",
    "SetModelRequest",
    "RewindFilesRequest",
    "McpStatusRequest",
    "ControlRequest",
    "ControlResponseSuccess",
    "ControlResponseError",
    "ControlResponse",
    "ToolResultResponse",
    "PermissionResponse",
    "OutboundMessage",
    "model_to_dict",
    "model_to_line",
    "text_content",
]
