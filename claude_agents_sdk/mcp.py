"""In-process MCP tools.

Tools defined here run inside the host application. The CLI sees them as an
MCP server of type ``sdk`` and calls them back over the control protocol.

Example:
    >>> @tool("add", "Add two numbers", {"a": float, "b": float})
    ... async def add(args):
    ...     return ToolResult.text(str(args["a"] + args["b"]))
    >>> calculator = create_sdk_mcp_server("calculator", tools=[add])
    >>> options = ClaudeAgentOptions(mcp_servers={"calculator": calculator})
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ============================================================================
# Tool results
# ============================================================================


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["image"] = "image"
    data: str
    mime_type: str = Field(alias="mimeType")


ToolContentItem = TextContent | ImageContent


class ToolContent:
    """Constructors for tool result content items."""

    @staticmethod
    def text(text: str) -> TextContent:
        return TextContent(text=text)

    @staticmethod
    def image(data: str, mime_type: str) -> ImageContent:
        return ImageContent(data=data, mime_type=mime_type)

    @staticmethod
    def from_dict(item: dict[str, Any]) -> ToolContentItem:
        if item.get("type") == "image":
            return ImageContent.model_validate(item)
        return TextContent(text=str(item.get("text", "")))


class ToolResult(BaseModel):
    """Result of an in-process tool call."""

    content: list[ToolContentItem] = Field(default_factory=list)
    is_error: bool | None = None

    @classmethod
    def text(cls, text: str) -> ToolResult:
        return cls(content=[ToolContent.text(text)])

    @classmethod
    def error(cls, message: str) -> ToolResult:
        return cls(content=[ToolContent.text(message)], is_error=True)

    @classmethod
    def with_content(cls, content: list[ToolContentItem]) -> ToolResult:
        return cls(content=list(content))

    def to_dict(self) -> dict[str, Any]:
        """Serialize; ``is_error`` is omitted unless set."""
        return self.model_dump(exclude_none=True, by_alias=True)

    @classmethod
    def from_output(cls, output: Any) -> ToolResult:
        """Normalize whatever a handler returned.

        Accepts a ``ToolResult``, a dict shaped like ``{"content": [...],
        "is_error": bool}``, a plain string, or None.
        """
        if isinstance(output, ToolResult):
            return output
        if output is None:
            return cls()
        if isinstance(output, str):
            return cls.text(output)
        if isinstance(output, dict):
            content = output.get("content", [])
            if isinstance(content, str):
                content = [{"type": "text", "text": content}]
            items = [
                item if isinstance(item, (TextContent, ImageContent)) else ToolContent.from_dict(item)
                for item in content
            ]
            is_error = output.get("is_error", output.get("isError"))
            return cls(content=items, is_error=bool(is_error) if is_error is not None else None)
        return cls.text(str(output))


# ============================================================================
# Input schemas
# ============================================================================

_PYTHON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


@dataclass
class ToolInputSchema:
    """Builder for a JSON schema describing tool input.

    The schema is advisory metadata for the CLI; handlers validate their own
    input.
    """

    schema_type: str = "object"
    properties: dict[str, dict[str, Any]] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)

    @classmethod
    def object(cls) -> ToolInputSchema:
        return cls()

    def _property(self, name: str, json_type: str, description: str) -> ToolInputSchema:
        self.properties[name] = {"type": json_type, "description": description}
        return self

    def string_property(self, name: str, description: str) -> ToolInputSchema:
        return self._property(name, "string", description)

    def number_property(self, name: str, description: str) -> ToolInputSchema:
        return self._property(name, "number", description)

    def boolean_property(self, name: str, description: str) -> ToolInputSchema:
        return self._property(name, "boolean", description)

    def required_property(self, name: str) -> ToolInputSchema:
        if name not in self.required:
            self.required.append(name)
        return self

    def to_dict(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.schema_type, "properties": dict(self.properties)}
        if self.required:
            schema["required"] = list(self.required)
        return schema


def schema_to_json(input_schema: ToolInputSchema | dict[str, Any] | None) -> dict[str, Any]:
    """Turn the accepted schema spellings into a JSON schema dict.

    ``{"name": str}`` shorthand maps Python types to JSON types and marks
    every field required. A dict that already has ``type`` is passed through.
    """
    if input_schema is None:
        return {"type": "object", "properties": {}}
    if isinstance(input_schema, ToolInputSchema):
        return input_schema.to_dict()
    if "type" in input_schema and isinstance(input_schema.get("type"), str):
        return dict(input_schema)
    properties = {
        name: {"type": _PYTHON_TYPES.get(value, "string")} if isinstance(value, type) else dict(value)
        for name, value in input_schema.items()
    }
    return {"type": "object", "properties": properties, "required": list(properties)}


# ============================================================================
# Tools and servers
# ============================================================================

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any] | Any]


@dataclass
class SdkMcpTool:
    """A tool registered in-process: name, description, schema and handler."""

    name: str
    description: str
    input_schema: ToolInputSchema | dict[str, Any] | None
    handler: ToolHandler

    def __repr__(self) -> str:
        return f"SdkMcpTool(name={self.name!r}, description={self.description!r})"

    def json_schema(self) -> dict[str, Any]:
        return schema_to_json(self.input_schema)

    async def call(self, arguments: dict[str, Any]) -> ToolResult:
        """Run the handler; exceptions propagate to the caller."""
        output = self.handler(arguments)
        if inspect.isawaitable(output):
            output = await output
        return ToolResult.from_output(output)


def tool(
    name: str,
    description: str,
    input_schema: ToolInputSchema | dict[str, Any] | None = None,
) -> Callable[[ToolHandler], SdkMcpTool]:
    """Decorator turning an async function into an ``SdkMcpTool``."""

    def decorator(handler: ToolHandler) -> SdkMcpTool:
        return SdkMcpTool(
            name=name,
            description=description,
            input_schema=input_schema,
            handler=handler,
        )

    return decorator


@dataclass
class McpSdkServerConfig:
    """An in-process MCP server passed via ``ClaudeAgentOptions.mcp_servers``."""

    name: str
    version: str = "1.0.0"
    tools: list[SdkMcpTool] = field(default_factory=list)
    type: Literal["sdk"] = "sdk"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "name": self.name, "version": self.version}

    def get_tool(self, name: str) -> SdkMcpTool | None:
        for candidate in self.tools:
            if candidate.name == name:
                return candidate
        return None


def create_sdk_mcp_server(
    name: str,
    version: str = "1.0.0",
    tools: list[SdkMcpTool] | None = None,
) -> McpSdkServerConfig:
    """Create an in-process MCP server from a list of tools.

    Raises:
        ValueError: If two tools share a name.
    """
    tools = list(tools or [])
    seen: set[str] = set()
    for item in tools:
        if item.name in seen:
            raise ValueError(f"Duplicate tool name in server {name!r}: {item.name}")
        seen.add(item.name)
    return McpSdkServerConfig(name=name, version=version, tools=tools)


__all__ = [
    "ImageContent",
    "McpSdkServerConfig",
    "SdkMcpTool",
    "TextContent",
    "ToolContent",
    "ToolContentItem",
    "ToolHandler",
    "ToolInputSchema",
    "ToolResult",
    "create_sdk_mcp_server",
    "schema_to_json",
    "tool",
]
