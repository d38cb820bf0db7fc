"""Public type definitions for the Claude Agents SDK."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    Literal,
    NotRequired,
    TypedDict,
)

if TYPE_CHECKING:
    from claude_agents_sdk.mcp import McpSdkServerConfig

# =============================================================================
# ContentBlock Types
# =============================================================================


@dataclass(frozen=True)
class TextBlock:
    """Text content block."""

    text: str


@dataclass(frozen=True)
class ThinkingBlock:
    """Thinking/reasoning content block.

    Contains extended thinking output from models with reasoning capabilities.
    """

    thinking: str
    signature: str = ""


@dataclass(frozen=True)
class ToolUseBlock:
    """Tool use content block.

    Represents a tool invocation with its parameters. Every tool use decoded
    from an assistant message is resolved exactly once before the turn ends.
    """

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultBlock:
    """Tool result content block."""

    tool_use_id: str
    content: str | list[dict[str, Any]] | None = None
    is_error: bool | None = None


@dataclass(frozen=True)
class UnknownBlock:
    """A content block whose type this SDK version does not recognize."""

    type: str | None
    raw: dict[str, Any] = field(default_factory=dict)


ContentBlock = TextBlock | ThinkingBlock | ToolUseBlock | ToolResultBlock | UnknownBlock


# =============================================================================
# Message Types
# =============================================================================


@dataclass(frozen=True)
class UserMessage:
    """User message, possibly carrying tool results echoed by the CLI."""

    content: str | list[ContentBlock]
    uuid: str | None = None
    parent_tool_use_id: str | None = None
    tool_use_result: dict[str, Any] | None = None

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))


@dataclass(frozen=True)
class AssistantMessage:
    """Assistant message with ordered content blocks."""

    content: list[ContentBlock]
    model: str
    parent_tool_use_id: str | None = None
    error: str | None = None

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks, in order."""
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]


@dataclass(frozen=True)
class SystemMessage:
    """System message with metadata.

    ``subtype == "init"`` acknowledges the session handshake; ``data`` then
    carries the capabilities the CLI negotiated (tools, MCP servers, model).
    """

    subtype: str
    data: dict[str, Any]

    @property
    def is_init(self) -> bool:
        return self.subtype == "init"


@dataclass(frozen=True)
class CostUsage:
    """Token and dollar counters."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    total_cost_usd: float = 0.0

    @classmethod
    def from_result(cls, usage: dict[str, Any] | None, total_cost_usd: float | None) -> CostUsage:
        usage = usage or {}

        def _count(key: str) -> int:
            value = usage.get(key)
            return value if isinstance(value, int) and value > 0 else 0

        return cls(
            input_tokens=_count("input_tokens"),
            output_tokens=_count("output_tokens"),
            cache_creation_input_tokens=_count("cache_creation_input_tokens"),
            cache_read_input_tokens=_count("cache_read_input_tokens"),
            total_cost_usd=max(float(total_cost_usd or 0.0), 0.0),
        )

    def __add__(self, other: CostUsage) -> CostUsage:
        return CostUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_input_tokens=self.cache_creation_input_tokens
            + other.cache_creation_input_tokens,
            cache_read_input_tokens=self.cache_read_input_tokens + other.cache_read_input_tokens,
            total_cost_usd=self.total_cost_usd + other.total_cost_usd,
        )


@dataclass(frozen=True)
class ResultMessage:
    """Terminal summary of a turn: timing, turn count, cost and stop reason."""

    subtype: str
    duration_ms: int
    duration_api_ms: int
    is_error: bool
    num_turns: int
    session_id: str
    total_cost_usd: float | None = None
    usage: dict[str, Any] | None = None
    result: str | None = None
    stop_reason: str | None = None
    structured_output: Any = None

    @property
    def cost(self) -> CostUsage:
        return CostUsage.from_result(self.usage, self.total_cost_usd)


@dataclass(frozen=True)
class ErrorMessage:
    """Error reported by the CLI inside the protocol stream."""

    error: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StreamEvent:
    """Raw partial-message event, only emitted when partial messages are enabled."""

    uuid: str
    session_id: str
    event: dict[str, Any]
    parent_tool_use_id: str | None = None


@dataclass(frozen=True)
class UnknownMessage:
    """A message whose top-level type this SDK version does not recognize."""

    type: str | None
    raw: Any = None


Message = (
    UserMessage
    | AssistantMessage
    | SystemMessage
    | ResultMessage
    | ErrorMessage
    | StreamEvent
    | UnknownMessage
)


# =============================================================================
# Session Types
# =============================================================================


class SessionState(str, Enum):
    """Lifecycle of one session."""

    INITIALIZING = "initializing"
    STREAMING = "streaming"
    AWAITING_TOOL_RESOLUTION = "awaiting_tool_resolution"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class LaunchSpec:
    """How to start the agent process: executable, ordered args, environment."""

    executable: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None

    @property
    def command(self) -> list[str]:
        return [self.executable, *self.args]


# =============================================================================
# Permission System Types
# =============================================================================

# Permission mode forwarded to the CLI
PermissionMode = Literal["default", "acceptEdits", "plan", "bypassPermissions"]


class PermissionPolicy(str, Enum):
    """Static policy applied when no ``can_use_tool`` callback is configured."""

    ALLOW_ALL = "allow_all"
    DENY_ALL = "deny_all"
    ASK = "ask"


@dataclass
class ToolPermissionContext:
    """Context information for tool permission callbacks."""

    tool_use_id: str | None = None
    session_id: str | None = None
    signal: Any | None = None
    suggestions: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class PermissionResultAllow:
    """Allow the tool call, optionally substituting its input."""

    behavior: Literal["allow"] = "allow"
    updated_input: dict[str, Any] | None = None


@dataclass(frozen=True)
class PermissionResultDeny:
    """Deny the tool call."""

    behavior: Literal["deny"] = "deny"
    message: str = ""
    interrupt: bool = False


PermissionResult = PermissionResultAllow | PermissionResultDeny

CanUseTool = Callable[
    [str, dict[str, Any], ToolPermissionContext],
    Awaitable[PermissionResult],
]


# =============================================================================
# Hook System Types
# =============================================================================

HookEvent = Literal[
    "PreToolUse",
    "PostToolUse",
    "Notification",
    "SubagentStart",
    "PermissionRequest",
]

HOOK_EVENTS: tuple[str, ...] = (
    "PreToolUse",
    "PostToolUse",
    "Notification",
    "SubagentStart",
    "PermissionRequest",
)


class BaseHookInput(TypedDict, total=False):
    """Base hook input fields present across hook events."""

    session_id: str
    cwd: str
    permission_mode: str


class PreToolUseHookInput(BaseHookInput):
    hook_event_name: Literal["PreToolUse"]
    tool_name: str
    tool_input: dict[str, Any]


class PostToolUseHookInput(BaseHookInput):
    hook_event_name: Literal["PostToolUse"]
    tool_name: str
    tool_input: dict[str, Any]
    tool_response: Any


class PermissionRequestHookInput(BaseHookInput):
    hook_event_name: Literal["PermissionRequest"]
    tool_name: str
    tool_input: dict[str, Any]


class NotificationHookInput(BaseHookInput):
    hook_event_name: Literal["Notification"]
    message: str
    title: NotRequired[str]


class SubagentStartHookInput(BaseHookInput):
    hook_event_name: Literal["SubagentStart"]
    agent_id: str
    agent_type: NotRequired[str]


HookInput = (
    PreToolUseHookInput
    | PostToolUseHookInput
    | PermissionRequestHookInput
    | NotificationHookInput
    | SubagentStartHookInput
)


class PreToolUseHookSpecificOutput(TypedDict):
    hookEventName: Literal["PreToolUse"]
    permissionDecision: NotRequired[Literal["allow", "deny", "ask"]]
    permissionDecisionReason: NotRequired[str]
    updatedInput: NotRequired[dict[str, Any]]


class PostToolUseHookSpecificOutput(TypedDict):
    hookEventName: Literal["PostToolUse"]
    additionalContext: NotRequired[str]


class PermissionRequestHookSpecificOutput(TypedDict):
    hookEventName: Literal["PermissionRequest"]
    permissionDecision: NotRequired[Literal["allow", "deny", "ask"]]
    permissionDecisionReason: NotRequired[str]
    updatedInput: NotRequired[dict[str, Any]]


HookSpecificOutput = (
    PreToolUseHookSpecificOutput
    | PostToolUseHookSpecificOutput
    | PermissionRequestHookSpecificOutput
)


class SyncHookJSONOutput(TypedDict, total=False):
    """Hook output with control and decision fields.

    Note: continue_ is used instead of continue to avoid the Python keyword.
    """

    continue_: bool
    suppressOutput: bool
    stopReason: str
    decision: Literal["block"]
    systemMessage: str
    reason: str
    hookSpecificOutput: HookSpecificOutput


class AsyncHookJSONOutput(TypedDict):
    """Output that defers the hook. Note: async_ avoids the Python keyword."""

    async_: Literal[True]
    asyncTimeout: NotRequired[int]


HookJSONOutput = AsyncHookJSONOutput | SyncHookJSONOutput


class HookContext(TypedDict):
    """Context information for hook callbacks."""

    signal: Any | None


HookCallback = Callable[
    [HookInput, str | None, HookContext],
    Awaitable[HookJSONOutput],
]


@dataclass
class HookMatcher:
    """Groups hook callbacks under a tool-name filter.

    ``matcher`` may be None, empty or ``"*"`` (match everything), an exact
    tool name, or a regular expression that must match the whole name.
    """

    matcher: str | None = None
    hooks: list[HookCallback] = field(default_factory=list)
    timeout: float | None = None


# =============================================================================
# Options
# =============================================================================


@dataclass
class ClaudeAgentOptions:
    """Configuration for a session. Snapshotted when the session starts."""

    cli_path: str | Path | None = None
    cwd: str | Path | None = None
    env: dict[str, str] = field(default_factory=dict)
    model: str | None = None
    system_prompt: str | None = None
    permission_mode: PermissionMode | None = None
    permission_policy: PermissionPolicy | None = None
    max_turns: int | None = None
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)
    hooks: dict[HookEvent, list[HookMatcher]] | None = None
    can_use_tool: CanUseTool | None = None
    permission_prompt_tool_name: str | None = None
    mcp_servers: dict[str, McpSdkServerConfig] = field(default_factory=dict)
    include_partial_messages: bool = False
    extra_args: dict[str, str | None] = field(default_factory=dict)
    stderr: Callable[[str], None] | None = None
    max_line_bytes: int | None = None
    max_buffered_messages: int = 100
    init_timeout: float | None = None
    hook_timeout: float | None = None
    inactivity_timeout: float | None = None
    control_timeout: float | None = None
    shutdown_grace: float | None = None

    def effective_permission_policy(self) -> PermissionPolicy:
        if self.permission_policy is not None:
            return self.permission_policy
        if self.permission_mode == "bypassPermissions":
            return PermissionPolicy.ALLOW_ALL
        return PermissionPolicy.ASK


__all__ = [
    # Content blocks
    "TextBlock",
    "ThinkingBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "UnknownBlock",
    "ContentBlock",
    # Messages
    "UserMessage",
    "AssistantMessage",
    "SystemMessage",
    "ResultMessage",
    "ErrorMessage",
    "StreamEvent",
    "UnknownMessage",
    "Message",
    "CostUsage",
    # Session
    "SessionState",
    "LaunchSpec",
    # Permissions
    "PermissionMode",
    "PermissionPolicy",
    "ToolPermissionContext",
    "PermissionResultAllow",
    "PermissionResultDeny",
    "PermissionResult",
    "CanUseTool",
    # Hooks
    "HookEvent",
    "HOOK_EVENTS",
    "HookInput",
    "PreToolUseHookInput",
    "PostToolUseHookInput",
    "PermissionRequestHookInput",
    "NotificationHookInput",
    "SubagentStartHookInput",
    "HookJSONOutput",
    "SyncHookJSONOutput",
    "AsyncHookJSONOutput",
    "HookContext",
    "HookCallback",
    "HookMatcher",
    # Options
    "ClaudeAgentOptions",
]
