"""Hook dispatch for session lifecycle events.

Hooks gating a tool call (PreToolUse, PermissionRequest) run one after
another so each callback sees the input produced by the previous one, and
the first blocking callback stops the chain. Observational hooks
(PostToolUse, Notification, SubagentStart) run concurrently.

A hook that raises or times out resolves to a denial. Hook misbehavior
never crashes the session.

Tool events are registered with the CLI as well, so a callback can be
reached both by local dispatch and by a ``hook_callback`` request for the
same tool use. Each callback runs at most once per tool use; whichever
path arrives second shares the first one's output.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Literal

import anyio

from claude_agents_sdk._errors import HookError, HookFaultError, HookTimeoutError
from claude_agents_sdk._internal.timeouts import HOOK_TIMEOUT_SEC
from claude_agents_sdk.types import (
    HookCallback,
    HookContext,
    HookEvent,
    HookMatcher,
)
from claude_agents_sdk.utils.log import get_logger

logger = get_logger(__name__)

SEQUENTIAL_EVENTS = frozenset({"PreToolUse", "PermissionRequest"})
# Events carrying a tool_use_id; only these are registered with the CLI
CLI_EVENTS = frozenset({"PreToolUse", "PostToolUse", "PermissionRequest"})
MAX_REMEMBERED_INVOCATIONS = 1024


def matcher_matches(matcher: str | None, tool_name: str | None) -> bool:
    """Check if a hook matcher applies to ``tool_name``.

    Events without a tool name match every matcher.
    """
    if not matcher or matcher == "*":
        return True

    if tool_name is None:
        return True

    if matcher == tool_name:
        return True

    try:
        return re.fullmatch(matcher, tool_name) is not None
    except re.error:
        logger.warning("[hooks] Invalid matcher pattern", extra={"matcher": matcher})
        return False


def convert_hook_output_for_cli(hook_output: dict[str, Any]) -> dict[str, Any]:
    """Convert Python-safe field names to CLI-expected field names.

    The Python SDK uses `async_` and `continue_` to avoid keyword conflicts,
    but the CLI expects `async` and `continue`.
    """
    converted = {}
    for key, value in hook_output.items():
        if key == "async_":
            converted["async"] = value
        elif key == "continue_":
            converted["continue"] = value
        else:
            converted[key] = value
    return converted


def _specific(output: dict[str, Any]) -> dict[str, Any]:
    specific = output.get("hookSpecificOutput")
    return specific if isinstance(specific, dict) else {}


def is_blocking(output: dict[str, Any]) -> bool:
    if output.get("decision") == "block":
        return True
    if output.get("continue_", output.get("continue")) is False:
        return True
    return _specific(output).get("permissionDecision") == "deny"


def _block_reason(output: dict[str, Any]) -> str:
    specific = _specific(output)
    return str(
        specific.get("permissionDecisionReason")
        or output.get("reason")
        or output.get("stopReason")
        or "Blocked by hook"
    )


@dataclass
class HookOutcome:
    """Folded result of one dispatch.

    ``decision`` is ``"deny"`` when any callback blocked or failed,
    ``"allow"`` when a callback explicitly allowed and none denied, and
    None when hooks expressed no opinion.
    """

    event: str
    outputs: list[dict[str, Any]] = field(default_factory=list)
    decision: Literal["allow", "deny"] | None = None
    reason: str | None = None
    updated_input: dict[str, Any] | None = None
    error: HookError | None = None

    @property
    def denied(self) -> bool:
        return self.decision == "deny"

    @property
    def allowed(self) -> bool:
        return self.decision == "allow"

    @property
    def additional_context(self) -> str | None:
        contexts = [
            str(_specific(o)["additionalContext"])
            for o in self.outputs
            if _specific(o).get("additionalContext")
        ]
        return "\n".join(contexts) if contexts else None

    def _deny(self, reason: str, error: HookError | None = None) -> None:
        # First deny wins; later denials never overwrite the reason.
        if self.decision == "deny":
            return
        self.decision = "deny"
        self.reason = reason
        self.error = error


@dataclass
class _Invocation:
    """One callback run shared by every path asking for the same tool use."""

    done: anyio.Event = field(default_factory=anyio.Event)
    output: dict[str, Any] | None = None
    error: HookError | None = None


class HookDispatcher:
    """Runs the hook callbacks registered for a session."""

    def __init__(
        self,
        hooks: dict[HookEvent, list[HookMatcher]] | None = None,
        default_timeout: float | None = None,
    ):
        self._hooks: dict[str, list[HookMatcher]] = {
            event: list(matchers) for event, matchers in (hooks or {}).items()
        }
        self.default_timeout = default_timeout if default_timeout is not None else HOOK_TIMEOUT_SEC
        self._callbacks: dict[str, tuple[HookCallback, float | None]] = {}
        self._matcher_ids: dict[str, list[list[str]]] = {}
        self._cli_config: dict[str, list[dict[str, Any]]] = {}
        self._invocations: OrderedDict[tuple[str, str], _Invocation] = OrderedDict()
        self._register_callback_ids()

    def _register_callback_ids(self) -> None:
        next_id = 0
        for event, matchers in self._hooks.items():
            entries = []
            for matcher in matchers:
                ids = []
                for callback in matcher.hooks:
                    callback_id = f"hook_{next_id}"
                    next_id += 1
                    self._callbacks[callback_id] = (callback, matcher.timeout)
                    ids.append(callback_id)
                self._matcher_ids.setdefault(event, []).append(ids)
                entry: dict[str, Any] = {"matcher": matcher.matcher, "hookCallbackIds": ids}
                if matcher.timeout is not None:
                    entry["timeout"] = matcher.timeout
                entries.append(entry)
            if entries and event in CLI_EVENTS:
                self._cli_config[event] = entries

    @property
    def has_hooks(self) -> bool:
        return bool(self._callbacks)

    def cli_config(self) -> dict[str, list[dict[str, Any]]] | None:
        """Hook registration payload for the ``initialize`` request.

        Notification and SubagentStart hooks are dispatched locally from
        system messages and are not registered.
        """
        return dict(self._cli_config) if self._cli_config else None

    def has_hooks_for(self, event: str, tool_name: str | None = None) -> bool:
        return bool(self._matching(event, tool_name))

    def _matching(self, event: str, tool_name: str | None) -> list[str]:
        """Callback ids matching ``event`` and ``tool_name``, in registration order."""
        callback_ids: list[str] = []
        for matcher, ids in zip(self._hooks.get(event, []), self._matcher_ids.get(event, [])):
            if matcher_matches(matcher.matcher, tool_name):
                callback_ids.extend(ids)
        return callback_ids

    async def _invoke(
        self,
        event: str,
        callback: HookCallback,
        input_data: dict[str, Any],
        tool_use_id: str | None,
        timeout: float,
    ) -> dict[str, Any]:
        """Run one callback. Raises HookTimeoutError or HookFaultError."""
        context: HookContext = {"signal": None}
        try:
            with anyio.fail_after(timeout):
                result = await callback(input_data, tool_use_id, context)  # type: ignore[arg-type]
        except TimeoutError as e:
            raise HookTimeoutError(
                f"{event} hook timed out after {timeout:.1f}s", event=event
            ) from e
        except Exception as e:
            raise HookFaultError(
                f"{event} hook failed: {type(e).__name__}: {e}", event=event
            ) from e
        if result is None:
            return {}
        if not isinstance(result, dict):
            raise HookFaultError(
                f"{event} hook returned {type(result).__name__}, expected dict", event=event
            )
        return dict(result)

    async def _invoke_once(
        self,
        event: str,
        callback_id: str,
        input_data: dict[str, Any],
        tool_use_id: str | None,
        timeout: float,
    ) -> dict[str, Any]:
        """Run ``callback_id`` for ``tool_use_id`` unless it already ran.

        A second request for the same pair waits for the first and gets the
        same output, or the same HookError.
        """
        callback = self._callbacks[callback_id][0]
        if tool_use_id is None:
            return await self._invoke(event, callback, input_data, tool_use_id, timeout)

        key = (callback_id, tool_use_id)
        while (shared := self._invocations.get(key)) is not None:
            await shared.done.wait()
            if shared.error is not None:
                raise shared.error
            if shared.output is not None:
                logger.debug(
                    "[hooks] Reusing hook output",
                    extra={"callback_id": callback_id, "tool_use_id": tool_use_id},
                )
                return dict(shared.output)

        invocation = _Invocation()
        self._invocations[key] = invocation
        while len(self._invocations) > MAX_REMEMBERED_INVOCATIONS:
            self._invocations.popitem(last=False)
        try:
            invocation.output = await self._invoke(event, callback, input_data, tool_use_id, timeout)
        except HookError as e:
            invocation.error = e
            raise
        finally:
            if invocation.output is None and invocation.error is None:
                # Cancelled; let a waiter run the callback itself
                self._invocations.pop(key, None)
            invocation.done.set()
        return dict(invocation.output)

    async def dispatch(
        self,
        event: HookEvent,
        input_data: dict[str, Any],
        tool_name: str | None = None,
        tool_use_id: str | None = None,
        timeout: float | None = None,
    ) -> HookOutcome:
        """Run every callback matching ``event`` and ``tool_name``."""
        outcome = HookOutcome(event=event)
        callback_ids = self._matching(event, tool_name)
        if not callback_ids:
            return outcome

        logger.debug(
            "[hooks] Dispatching",
            extra={"event": event, "tool_name": tool_name, "callbacks": len(callback_ids)},
        )

        if event in SEQUENTIAL_EVENTS:
            await self._dispatch_sequential(outcome, callback_ids, input_data, tool_use_id, timeout)
        else:
            await self._dispatch_concurrent(outcome, callback_ids, input_data, tool_use_id, timeout)

        if outcome.denied:
            logger.info(
                "[hooks] Hook denied",
                extra={"event": event, "tool_name": tool_name, "reason": outcome.reason},
            )
        return outcome

    def _limit(self, callback_id: str, dispatch_timeout: float | None) -> float:
        return _pick_timeout(self._callbacks[callback_id][1], dispatch_timeout, self.default_timeout)

    async def _dispatch_sequential(
        self,
        outcome: HookOutcome,
        callback_ids: list[str],
        input_data: dict[str, Any],
        tool_use_id: str | None,
        timeout: float | None,
    ) -> None:
        current = dict(input_data)
        for callback_id in callback_ids:
            try:
                output = await self._invoke_once(
                    outcome.event, callback_id, current, tool_use_id, self._limit(callback_id, timeout)
                )
            except HookError as e:
                logger.warning(f"[hooks] {e}")
                outcome._deny(str(e), e)
                return

            outcome.outputs.append(output)
            if is_blocking(output):
                outcome._deny(_block_reason(output))
                return

            specific = _specific(output)
            updated = specific.get("updatedInput")
            if isinstance(updated, dict):
                outcome.updated_input = dict(updated)
                current = {**current, "tool_input": outcome.updated_input}
            if specific.get("permissionDecision") == "allow":
                outcome.decision = "allow"
                outcome.reason = specific.get("permissionDecisionReason")

    async def _dispatch_concurrent(
        self,
        outcome: HookOutcome,
        callback_ids: list[str],
        input_data: dict[str, Any],
        tool_use_id: str | None,
        timeout: float | None,
    ) -> None:
        results: list[dict[str, Any] | HookError | None] = [None] * len(callback_ids)

        async def run(index: int, callback_id: str) -> None:
            try:
                results[index] = await self._invoke_once(
                    outcome.event,
                    callback_id,
                    dict(input_data),
                    tool_use_id,
                    self._limit(callback_id, timeout),
                )
            except HookError as e:
                logger.warning(f"[hooks] {e}")
                results[index] = e

        async with anyio.create_task_group() as tg:
            for index, callback_id in enumerate(callback_ids):
                tg.start_soon(run, index, callback_id)

        # Fold in registration order so "first deny" is deterministic
        for result in results:
            if isinstance(result, HookError):
                outcome._deny(str(result), result)
            elif result is not None:
                outcome.outputs.append(result)
                if is_blocking(result):
                    outcome._deny(_block_reason(result))

    async def invoke_callback(
        self,
        callback_id: str,
        input_data: dict[str, Any],
        tool_use_id: str | None,
    ) -> dict[str, Any]:
        """Serve a ``hook_callback`` control request from the CLI.

        Returns the callback output converted to CLI field names. A failing
        callback answers with a blocking decision instead of an error.
        """
        if callback_id not in self._callbacks:
            raise KeyError(f"Hook callback not found: {callback_id}")
        event = str(input_data.get("hook_event_name", "hook"))
        try:
            output = await self._invoke_once(
                event, callback_id, input_data, tool_use_id, self._limit(callback_id, None)
            )
        except HookError as e:
            logger.warning(f"[hooks] {e}")
            output = {"decision": "block", "reason": str(e)}
        return convert_hook_output_for_cli(output)


def _pick_timeout(matcher_timeout: float | None, dispatch_timeout: float | None, default: float) -> float:
    if matcher_timeout is not None:
        return matcher_timeout
    if dispatch_timeout is not None:
        return dispatch_timeout
    return default


__all__ = [
    "CLI_EVENTS",
    "HookDispatcher",
    "HookOutcome",
    "SEQUENTIAL_EVENTS",
    "convert_hook_output_for_cli",
    "is_blocking",
    "matcher_matches",
]
