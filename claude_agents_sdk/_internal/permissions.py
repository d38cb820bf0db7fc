"""Tool permission arbitration.

Decides, per tool call, whether the call is allowed, denied, or allowed with
substituted input. Decisions are never cached: two calls to the same tool
are arbitrated independently.
"""

from __future__ import annotations

from typing import Any

from claude_agents_sdk._errors import PermissionDeniedError
from claude_agents_sdk.types import (
    CanUseTool,
    PermissionPolicy,
    PermissionResult,
    PermissionResultAllow,
    PermissionResultDeny,
    ToolPermissionContext,
    ToolUseBlock,
)
from claude_agents_sdk.utils.log import get_logger

logger = get_logger(__name__)


def denial_error(tool_name: str, decision: PermissionResultDeny) -> PermissionDeniedError:
    """Describe a denial as an error value for logs and tool results."""
    return PermissionDeniedError(tool_name, decision.message)


class ToolPermissionArbiter:
    """Resolves permission for one tool call at a time.

    Without a callback the static policy applies; ``ASK`` has nobody to ask
    and resolves to a denial. With a callback its answer is forwarded as is.
    """

    def __init__(
        self,
        policy: PermissionPolicy = PermissionPolicy.ASK,
        can_use_tool: CanUseTool | None = None,
    ):
        self.policy = policy
        self.can_use_tool = can_use_tool

    async def decide(
        self,
        tool_use: ToolUseBlock,
        context: ToolPermissionContext | None = None,
        tool_input: dict[str, Any] | None = None,
    ) -> PermissionResult:
        """Decide whether ``tool_use`` may run.

        Args:
            tool_use: The tool call being arbitrated.
            context: Extra context passed through to the callback.
            tool_input: Input to present instead of ``tool_use.input``, e.g.
                after a hook substituted it.
        """
        effective_input = tool_input if tool_input is not None else tool_use.input
        if context is None:
            context = ToolPermissionContext(tool_use_id=tool_use.id)

        if self.can_use_tool is None:
            decision = self._apply_policy(tool_use.name)
        else:
            try:
                decision = await self.can_use_tool(tool_use.name, dict(effective_input), context)
            except Exception as e:
                logger.warning(
                    "[permissions] Permission callback failed",
                    extra={"tool_name": tool_use.name, "tool_use_id": tool_use.id},
                    exc_info=True,
                )
                decision = PermissionResultDeny(
                    message=f"Permission callback failed: {type(e).__name__}: {e}"
                )
            if not isinstance(decision, (PermissionResultAllow, PermissionResultDeny)):
                decision = PermissionResultDeny(
                    message=(
                        "Permission callback returned "
                        f"{type(decision).__name__}, expected a permission result"
                    )
                )

        logger.debug(
            "[permissions] Decision",
            extra={
                "tool_name": tool_use.name,
                "tool_use_id": tool_use.id,
                "behavior": decision.behavior,
            },
        )
        return decision

    def _apply_policy(self, tool_name: str) -> PermissionResult:
        match self.policy:
            case PermissionPolicy.ALLOW_ALL:
                return PermissionResultAllow()
            case PermissionPolicy.DENY_ALL:
                return PermissionResultDeny(
                    message=f"Permission to use {tool_name} was denied by policy"
                )
            case _:
                return PermissionResultDeny(
                    message=f"Permission to use {tool_name} requires approval, but no handler is configured"
                )


__all__ = ["ToolPermissionArbiter", "denial_error"]
