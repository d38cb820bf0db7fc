"""Python SDK for driving the Claude agent CLI over its streaming JSON protocol.

`query` runs a single prompt; `ClaudeSDKClient` keeps a session open across
turns. Hooks, permission callbacks and in-process MCP tools are configured
through `ClaudeAgentOptions`.
"""

from claude_agents_sdk._errors import (
    ClaudeSDKError,
    CLIBrokenPipeError,
    CLIConnectionError,
    CLIJSONDecodeError,
    CLINotFoundError,
    ConfigurationError,
    ControlRequestTimeoutError,
    DecodeFramingError,
    HookError,
    HookFaultError,
    HookTimeoutError,
    InitTimeoutError,
    PermissionDeniedError,
    ProcessError,
    ProtocolDesyncError,
    SDKTimeoutError,
    SessionInactivityTimeoutError,
    SpawnError,
)
from claude_agents_sdk._internal.registry import SessionRegistry, get_registry
from claude_agents_sdk._internal.stream import QueryStream
from claude_agents_sdk._internal.transport import Transport
from claude_agents_sdk._internal.transport.subprocess_cli import check_cli_version
from claude_agents_sdk.client import ClaudeSDKClient, query
from claude_agents_sdk.mcp import (
    McpSdkServerConfig,
    SdkMcpTool,
    ToolContent,
    ToolInputSchema,
    ToolResult,
    create_sdk_mcp_server,
    tool,
)
from claude_agents_sdk.types import (
    AssistantMessage,
    ClaudeAgentOptions,
    ContentBlock,
    CostUsage,
    ErrorMessage,
    HookCallback,
    HookContext,
    HookEvent,
    HookJSONOutput,
    HookMatcher,
    LaunchSpec,
    Message,
    PermissionMode,
    PermissionPolicy,
    PermissionResult,
    PermissionResultAllow,
    PermissionResultDeny,
    ResultMessage,
    SessionState,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolPermissionContext,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
    UnknownMessage,
    UserMessage,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Entry points
    "query",
    "ClaudeSDKClient",
    "QueryStream",
    "Transport",
    "SessionRegistry",
    "check_cli_version",
    "get_registry",
    # Options and session
    "ClaudeAgentOptions",
    "LaunchSpec",
    "SessionState",
    "PermissionMode",
    "PermissionPolicy",
    # Messages
    "Message",
    "UserMessage",
    "AssistantMessage",
    "SystemMessage",
    "ResultMessage",
    "ErrorMessage",
    "StreamEvent",
    "UnknownMessage",
    "CostUsage",
    "ContentBlock",
    "TextBlock",
    "ThinkingBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "UnknownBlock",
    # Permissions
    "PermissionResult",
    "PermissionResultAllow",
    "PermissionResultDeny",
    "ToolPermissionContext",
    # Hooks
    "HookEvent",
    "HookMatcher",
    "HookCallback",
    "HookContext",
    "HookJSONOutput",
    # MCP
    "tool",
    "create_sdk_mcp_server",
    "McpSdkServerConfig",
    "SdkMcpTool",
    "ToolContent",
    "ToolInputSchema",
    "ToolResult",
    # Errors
    "ClaudeSDKError",
    "ConfigurationError",
    "CLIConnectionError",
    "SpawnError",
    "CLINotFoundError",
    "CLIBrokenPipeError",
    "ProcessError",
    "CLIJSONDecodeError",
    "DecodeFramingError",
    "ProtocolDesyncError",
    "SDKTimeoutError",
    "InitTimeoutError",
    "SessionInactivityTimeoutError",
    "ControlRequestTimeoutError",
    "HookError",
    "HookTimeoutError",
    "HookFaultError",
    "PermissionDeniedError",
]
