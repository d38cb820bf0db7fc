"""Message parser for the Claude Agents SDK.

This module turns decoded JSON payloads from the CLI into typed Message
objects. Parsing is total: anything this SDK version does not recognize
becomes an ``UnknownMessage`` or ``UnknownBlock`` instead of an error, so a
newer CLI never breaks an older SDK.
"""

from typing import Any

from claude_agents_sdk.types import (
    AssistantMessage,
    ContentBlock,
    ErrorMessage,
    Message,
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
from claude_agents_sdk.utils.log import get_logger

logger = get_logger(__name__)


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_content_block(block: Any) -> ContentBlock:
    """Parse one content block, falling back to ``UnknownBlock``."""
    if not isinstance(block, dict):
        return UnknownBlock(type=None, raw={"value": block})

    block_type = block.get("type")
    match block_type:
        case "text":
            return TextBlock(text=str(block.get("text", "")))
        case "thinking":
            return ThinkingBlock(
                thinking=str(block.get("thinking", "")),
                signature=str(block.get("signature", "")),
            )
        case "tool_use":
            return ToolUseBlock(
                id=str(block.get("id", "")),
                name=str(block.get("name", "")),
                input=_as_dict(block.get("input")),
            )
        case "tool_result":
            return ToolResultBlock(
                tool_use_id=str(block.get("tool_use_id", "")),
                content=block.get("content"),
                is_error=block.get("is_error"),
            )
        case _:
            logger.debug(f"Unknown content block type: {block_type}")
            return UnknownBlock(type=block_type if isinstance(block_type, str) else None, raw=block)


def _parse_blocks(content: list[Any]) -> list[ContentBlock]:
    return [parse_content_block(block) for block in content]


def parse_message(data: Any) -> Message:
    """Parse message from CLI output into typed Message objects.

    Args:
        data: Decoded JSON value from one CLI output line

    Returns:
        Parsed Message object; ``UnknownMessage`` for unrecognized shapes
    """
    if not isinstance(data, dict):
        return UnknownMessage(type=None, raw=data)

    message_type = data.get("type")
    if not isinstance(message_type, str) or not message_type:
        return UnknownMessage(type=None, raw=data)

    match message_type:
        case "user":
            message = _as_dict(data.get("message"))
            content = message.get("content", "")
            return UserMessage(
                content=_parse_blocks(content) if isinstance(content, list) else str(content),
                uuid=data.get("uuid"),
                parent_tool_use_id=data.get("parent_tool_use_id"),
                tool_use_result=data.get("tool_use_result"),
            )

        case "assistant":
            message = _as_dict(data.get("message"))
            content = message.get("content", [])
            if isinstance(content, str):
                blocks: list[ContentBlock] = [TextBlock(text=content)]
            elif isinstance(content, list):
                blocks = _parse_blocks(content)
            else:
                blocks = []
            return AssistantMessage(
                content=blocks,
                model=str(message.get("model", "")),
                parent_tool_use_id=data.get("parent_tool_use_id"),
                error=data.get("error") or message.get("error"),
            )

        case "system":
            return SystemMessage(
                subtype=str(data.get("subtype", "")),
                data=data,
            )

        case "result":
            return ResultMessage(
                subtype=str(data.get("subtype", "success")),
                duration_ms=data.get("duration_ms", 0) or 0,
                duration_api_ms=data.get("duration_api_ms", 0) or 0,
                is_error=bool(data.get("is_error", False)),
                num_turns=data.get("num_turns", 0) or 0,
                session_id=str(data.get("session_id", "")),
                total_cost_usd=data.get("total_cost_usd"),
                usage=data.get("usage"),
                result=data.get("result"),
                stop_reason=data.get("stop_reason"),
                structured_output=data.get("structured_output"),
            )

        case "error":
            error = data.get("error")
            if isinstance(error, dict):
                text = str(error.get("message") or error.get("type") or error)
            else:
                text = str(error or data.get("message") or "unknown error")
            return ErrorMessage(error=text, data=data)

        case "stream_event":
            return StreamEvent(
                uuid=str(data.get("uuid", "")),
                session_id=str(data.get("session_id", "")),
                event=_as_dict(data.get("event")),
                parent_tool_use_id=data.get("parent_tool_use_id"),
            )

        case _:
            logger.debug(f"Unknown message type: {message_type}")
            return UnknownMessage(type=message_type, raw=data)


__all__ = ["parse_content_block", "parse_message"]
