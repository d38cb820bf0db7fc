"""Bridge between the CLI and in-process MCP tools.

Tool calls reach in-process tools two ways: directly, when the session sees
a tool use addressed to a registered tool, and as JSON-RPC carried by
``mcp_message`` control requests. The session path is the one that runs the
handler. A ``tools/call`` for a tool use the session already expects is
answered with that execution's result instead of calling the handler again.
Only calls with no matching tool use run the handler directly.

A handler fault becomes an error result on either path and never disturbs
sibling calls.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import anyio
from mcp import types as mcp_types

from claude_agents_sdk.mcp import (
    ImageContent,
    McpSdkServerConfig,
    SdkMcpTool,
    ToolResult,
)
from claude_agents_sdk.utils.log import get_logger

logger = get_logger(__name__)

MCP_TOOL_PREFIX = "mcp__"


def qualified_tool_name(server_name: str, tool_name: str) -> str:
    return f"{MCP_TOOL_PREFIX}{server_name}__{tool_name}"


def _to_mcp_content(result: ToolResult) -> list[mcp_types.TextContent | mcp_types.ImageContent]:
    content: list[mcp_types.TextContent | mcp_types.ImageContent] = []
    for item in result.content:
        if isinstance(item, ImageContent):
            content.append(
                mcp_types.ImageContent(type="image", data=item.data, mimeType=item.mime_type)
            )
        else:
            content.append(mcp_types.TextContent(type="text", text=item.text))
    return content


@dataclass
class _Execution:
    """A tool use the session will run, awaited by any matching ``tools/call``."""

    server_name: str
    tool_name: str
    arguments: dict[str, Any]
    done: anyio.Event = field(default_factory=anyio.Event)
    result: ToolResult | None = None
    claimed: bool = False


class McpToolBridge:
    """Executes tool calls that target in-process MCP servers."""

    def __init__(self, servers: dict[str, McpSdkServerConfig] | None = None):
        self._servers: dict[str, McpSdkServerConfig] = dict(servers or {})
        self._tools: dict[str, tuple[str, SdkMcpTool]] = {}
        self._executions: dict[str, _Execution] = {}
        for server_name, server in self._servers.items():
            for registered in server.tools:
                self._tools[qualified_tool_name(server_name, registered.name)] = (
                    server_name,
                    registered,
                )
                # Bare names resolve to the first server that registered them
                if registered.name in self._tools:
                    logger.debug(
                        "[mcp] Bare tool name already registered",
                        extra={"tool_name": registered.name, "server": server_name},
                    )
                    continue
                self._tools[registered.name] = (server_name, registered)

    @property
    def server_names(self) -> list[str]:
        return list(self._servers)

    def has_tool(self, tool_name: str) -> bool:
        return tool_name in self._tools

    def resolve(self, tool_name: str) -> SdkMcpTool | None:
        entry = self._tools.get(tool_name)
        return entry[1] if entry else None

    def expect(self, tool_use_id: str, tool_name: str, arguments: dict[str, Any]) -> None:
        """Record that the session will run ``tool_use_id`` itself."""
        entry = self._tools.get(tool_name)
        if entry is None or tool_use_id in self._executions:
            return
        server_name, registered = entry
        self._executions[tool_use_id] = _Execution(server_name, registered.name, dict(arguments))

    def settle(self, tool_use_id: str, result: ToolResult) -> None:
        """Publish the result of an expected tool use, e.g. an error for a denial."""
        execution = self._executions.get(tool_use_id)
        if execution is None or execution.done.is_set():
            return
        execution.result = result
        execution.done.set()

    def forget_settled(self) -> None:
        """Drop finished executions once their turn is over."""
        self._executions = {
            tool_use_id: execution
            for tool_use_id, execution in self._executions.items()
            if not execution.done.is_set()
        }

    def _claim(self, server_name: str, tool_name: str, arguments: dict[str, Any]) -> _Execution | None:
        candidates = [
            execution
            for execution in self._executions.values()
            if not execution.claimed
            and execution.server_name == server_name
            and execution.tool_name == tool_name
        ]
        if not candidates:
            return None
        exact = [execution for execution in candidates if execution.arguments == arguments]
        execution = (exact or candidates)[0]
        execution.claimed = True
        return execution

    async def call_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        tool_use_id: str | None = None,
    ) -> ToolResult:
        """Invoke a registered tool. Handler faults become error results.

        With ``tool_use_id``, the result also settles that expected execution.

        Raises:
            KeyError: If no in-process tool has that name.
        """
        entry = self._tools.get(tool_name)
        if entry is None:
            raise KeyError(f"Tool not registered: {tool_name}")
        server_name, registered = entry
        try:
            result = await registered.call(dict(arguments))
        except Exception as e:
            logger.warning(
                "[mcp] Tool handler failed",
                extra={"tool_name": tool_name, "server": server_name},
                exc_info=True,
            )
            result = ToolResult.error(f"Tool {registered.name} failed: {type(e).__name__}: {e}")
        else:
            logger.debug(
                "[mcp] Tool call completed",
                extra={"tool_name": tool_name, "server": server_name, "is_error": bool(result.is_error)},
            )
        if tool_use_id is not None:
            self.settle(tool_use_id, result)
        return result

    async def _run_tools_call(
        self, server_name: str, tool_name: str, arguments: dict[str, Any]
    ) -> ToolResult:
        execution = self._claim(server_name, tool_name, arguments)
        if execution is None:
            return await self.call_tool(qualified_tool_name(server_name, tool_name), arguments)
        logger.debug(
            "[mcp] Answering tools/call from session execution",
            extra={"tool_name": tool_name, "server": server_name},
        )
        await execution.done.wait()
        assert execution.result is not None
        return execution.result

    async def handle_message(self, server_name: str, message: dict[str, Any]) -> dict[str, Any] | None:
        """Handle one JSON-RPC message addressed to ``server_name``.

        Returns the JSON-RPC response, or None for notifications.
        """
        method = message.get("method")
        message_id = message.get("id")
        params = message.get("params") or {}

        server = self._servers.get(server_name)
        if server is None:
            return self._error(message_id, mcp_types.INVALID_PARAMS, f"Server '{server_name}' not found")

        if message_id is None and isinstance(method, str) and method.startswith("notifications/"):
            return None

        match method:
            case "initialize":
                result: mcp_types.Result = mcp_types.InitializeResult(
                    protocolVersion=mcp_types.LATEST_PROTOCOL_VERSION,
                    capabilities=mcp_types.ServerCapabilities(
                        tools=mcp_types.ToolsCapability(listChanged=False)
                    ),
                    serverInfo=mcp_types.Implementation(name=server.name, version=server.version),
                )
            case "tools/list":
                result = mcp_types.ListToolsResult(
                    tools=[
                        mcp_types.Tool(
                            name=registered.name,
                            description=registered.description,
                            inputSchema=registered.json_schema(),
                        )
                        for registered in server.tools
                    ]
                )
            case "tools/call":
                name = str(params.get("name", ""))
                registered = server.get_tool(name)
                if registered is None:
                    return self._error(message_id, mcp_types.INVALID_PARAMS, f"Tool '{name}' not found")
                tool_result = await self._run_tools_call(
                    server_name, name, dict(params.get("arguments") or {})
                )
                result = mcp_types.CallToolResult(
                    content=_to_mcp_content(tool_result),
                    isError=bool(tool_result.is_error),
                )
            case _:
                return self._error(
                    message_id, mcp_types.METHOD_NOT_FOUND, f"Method '{method}' not found"
                )

        response = mcp_types.JSONRPCResponse(
            jsonrpc="2.0",
            id=message_id if message_id is not None else 0,
            result=result.model_dump(by_alias=True, exclude_none=True, mode="json"),
        )
        return response.model_dump(by_alias=True, exclude_none=True, mode="json")

    @staticmethod
    def _error(message_id: Any, code: int, message: str) -> dict[str, Any]:
        error = mcp_types.JSONRPCError(
            jsonrpc="2.0",
            id=message_id if message_id is not None else 0,
            error=mcp_types.ErrorData(code=code, message=message),
        )
        return error.model_dump(by_alias=True, exclude_none=True, mode="json")


__all__ = ["MCP_TOOL_PREFIX", "McpToolBridge", "qualified_tool_name"]
