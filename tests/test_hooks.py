"""Tests for hook matching and dispatch."""

from __future__ import annotations

import anyio
import pytest

from claude_agents_sdk._errors import HookFaultError, HookTimeoutError
from claude_agents_sdk._internal.hooks import (
    HookDispatcher,
    convert_hook_output_for_cli,
    is_blocking,
    matcher_matches,
)
from claude_agents_sdk.types import HookMatcher


def pre_input(tool_name: str = "Bash", **tool_input) -> dict:
    return {
        "hook_event_name": "PreToolUse",
        "session_id": "s1",
        "tool_name": tool_name,
        "tool_input": tool_input or {"command": "ls"},
    }


# ─────────────────────────────────────────────────────────────────────────────
# Matching
# ─────────────────────────────────────────────────────────────────────────────


class TestMatcher:
    @pytest.mark.parametrize("matcher", [None, "", "*"])
    def test_wildcards(self, matcher):
        assert matcher_matches(matcher, "Bash")

    def test_exact_name(self):
        assert matcher_matches("Bash", "Bash")
        assert not matcher_matches("Bash", "BashOutput")

    def test_regex_must_match_whole_name(self):
        assert matcher_matches("Write|Edit", "Edit")
        assert matcher_matches("mcp__.*", "mcp__calc__add")
        assert not matcher_matches("Read", "ReadFile")

    def test_invalid_regex_never_matches(self):
        assert not matcher_matches("[unclosed", "Bash")

    def test_events_without_tool_match(self):
        assert matcher_matches("Bash", None)


class TestOutputHelpers:
    def test_keyword_fields_converted(self):
        assert convert_hook_output_for_cli({"continue_": False, "async_": True, "reason": "x"}) == {
            "continue": False,
            "async": True,
            "reason": "x",
        }

    @pytest.mark.parametrize(
        "output",
        [
            {"decision": "block"},
            {"continue_": False},
            {"continue": False},
            {"hookSpecificOutput": {"hookEventName": "PreToolUse", "permissionDecision": "deny"}},
        ],
    )
    def test_blocking_outputs(self, output):
        assert is_blocking(output)

    def test_non_blocking_output(self):
        assert not is_blocking({"systemMessage": "fyi"})


# ─────────────────────────────────────────────────────────────────────────────
# Dispatch
# ─────────────────────────────────────────────────────────────────────────────


class TestDispatch:
    """Tests for HookDispatcher.dispatch."""

    @pytest.mark.asyncio
    async def test_no_hooks_no_opinion(self):
        outcome = await HookDispatcher().dispatch("PreToolUse", pre_input(), tool_name="Bash")
        assert outcome.decision is None
        assert outcome.outputs == []

    @pytest.mark.asyncio
    async def test_only_matching_hooks_run(self):
        calls = []

        async def bash_hook(input_data, tool_use_id, context):
            calls.append(("bash", tool_use_id))
            return {}

        async def read_hook(input_data, tool_use_id, context):
            calls.append(("read", tool_use_id))
            return {}

        dispatcher = HookDispatcher(
            {
                "PreToolUse": [
                    HookMatcher(matcher="Bash", hooks=[bash_hook]),
                    HookMatcher(matcher="Read", hooks=[read_hook]),
                ]
            }
        )
        await dispatcher.dispatch("PreToolUse", pre_input(), tool_name="Bash", tool_use_id="tu_1")
        assert calls == [("bash", "tu_1")]
        assert dispatcher.has_hooks_for("PreToolUse", "Read")
        assert not dispatcher.has_hooks_for("PostToolUse", "Read")

    @pytest.mark.asyncio
    async def test_sequential_chain_threads_updated_input(self):
        seen = []

        async def first(input_data, tool_use_id, context):
            seen.append(input_data["tool_input"])
            return {"hookSpecificOutput": {"hookEventName": "PreToolUse", "updatedInput": {"command": "ls -a"}}}

        async def second(input_data, tool_use_id, context):
            seen.append(input_data["tool_input"])
            return {
                "hookSpecificOutput": {
                    "hookEventName": "PreToolUse",
                    "permissionDecision": "allow",
                    "permissionDecisionReason": "read-only",
                }
            }

        dispatcher = HookDispatcher({"PreToolUse": [HookMatcher(hooks=[first, second])]})
        outcome = await dispatcher.dispatch("PreToolUse", pre_input(), tool_name="Bash")

        assert seen == [{"command": "ls"}, {"command": "ls -a"}]
        assert outcome.allowed
        assert outcome.reason == "read-only"
        assert outcome.updated_input == {"command": "ls -a"}

    @pytest.mark.asyncio
    async def test_first_deny_stops_chain(self):
        later = []

        async def deny(input_data, tool_use_id, context):
            return {"decision": "block", "reason": "first reason"}

        async def never(input_data, tool_use_id, context):
            later.append(True)
            return {"decision": "block", "reason": "second reason"}

        dispatcher = HookDispatcher({"PreToolUse": [HookMatcher(hooks=[deny, never])]})
        outcome = await dispatcher.dispatch("PreToolUse", pre_input(), tool_name="Bash")

        assert outcome.denied
        assert outcome.reason == "first reason"
        assert later == []

    @pytest.mark.asyncio
    async def test_deny_after_allow_wins(self):
        async def allow(input_data, tool_use_id, context):
            return {"hookSpecificOutput": {"hookEventName": "PreToolUse", "permissionDecision": "allow"}}

        async def deny(input_data, tool_use_id, context):
            return {
                "hookSpecificOutput": {
                    "hookEventName": "PreToolUse",
                    "permissionDecision": "deny",
                    "permissionDecisionReason": "not today",
                }
            }

        dispatcher = HookDispatcher({"PreToolUse": [HookMatcher(hooks=[allow, deny])]})
        outcome = await dispatcher.dispatch("PreToolUse", pre_input(), tool_name="Bash")
        assert outcome.denied
        assert outcome.reason == "not today"

    @pytest.mark.asyncio
    async def test_raising_hook_denies(self):
        async def broken(input_data, tool_use_id, context):
            raise ValueError("hook bug")

        dispatcher = HookDispatcher({"PreToolUse": [HookMatcher(hooks=[broken])]})
        outcome = await dispatcher.dispatch("PreToolUse", pre_input(), tool_name="Bash")

        assert outcome.denied
        assert isinstance(outcome.error, HookFaultError)
        assert "hook bug" in outcome.reason

    @pytest.mark.asyncio
    async def test_wrong_return_type_denies(self):
        async def sloppy(input_data, tool_use_id, context):
            return "yes"

        dispatcher = HookDispatcher({"PreToolUse": [HookMatcher(hooks=[sloppy])]})
        outcome = await dispatcher.dispatch("PreToolUse", pre_input(), tool_name="Bash")
        assert outcome.denied
        assert isinstance(outcome.error, HookFaultError)

    @pytest.mark.asyncio
    async def test_slow_hook_times_out(self):
        async def slow(input_data, tool_use_id, context):
            await anyio.sleep(10)
            return {}

        dispatcher = HookDispatcher({"PreToolUse": [HookMatcher(hooks=[slow], timeout=0.05)]})
        with anyio.fail_after(5):
            outcome = await dispatcher.dispatch("PreToolUse", pre_input(), tool_name="Bash")

        assert outcome.denied
        assert isinstance(outcome.error, HookTimeoutError)
        assert outcome.error.event == "PreToolUse"

    @pytest.mark.asyncio
    async def test_default_timeout_applies(self):
        async def slow(input_data, tool_use_id, context):
            await anyio.sleep(10)

        dispatcher = HookDispatcher({"PreToolUse": [HookMatcher(hooks=[slow])]}, default_timeout=0.05)
        with anyio.fail_after(5):
            outcome = await dispatcher.dispatch("PreToolUse", pre_input(), tool_name="Bash")
        assert isinstance(outcome.error, HookTimeoutError)

    @pytest.mark.asyncio
    async def test_observational_hooks_run_concurrently(self):
        """Both PostToolUse hooks start before either finishes."""
        started = []
        both_started = anyio.Event()

        def make(name):
            async def hook(input_data, tool_use_id, context):
                started.append(name)
                if len(started) == 2:
                    both_started.set()
                await both_started.wait()
                return {"systemMessage": name}

            return hook

        dispatcher = HookDispatcher({"PostToolUse": [HookMatcher(hooks=[make("a"), make("b")])]})
        with anyio.fail_after(5):
            outcome = await dispatcher.dispatch(
                "PostToolUse",
                {"hook_event_name": "PostToolUse", "tool_name": "Bash", "tool_response": "ok"},
                tool_name="Bash",
            )

        assert sorted(started) == ["a", "b"]
        assert [output["systemMessage"] for output in outcome.outputs] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_concurrent_failure_isolated(self):
        ran = []

        async def broken(input_data, tool_use_id, context):
            raise RuntimeError("oops")

        async def fine(input_data, tool_use_id, context):
            await anyio.sleep(0.01)
            ran.append(True)
            return {"hookSpecificOutput": {"hookEventName": "PostToolUse", "additionalContext": "noted"}}

        dispatcher = HookDispatcher({"PostToolUse": [HookMatcher(hooks=[broken, fine])]})
        outcome = await dispatcher.dispatch("PostToolUse", {"hook_event_name": "PostToolUse"})

        assert ran == [True]
        assert outcome.denied
        assert outcome.additional_context == "noted"


class TestCliRegistration:
    """Tests for callback ids sent during initialize and hook_callback requests."""

    def test_callback_ids_are_stable(self):
        async def a(input_data, tool_use_id, context):
            return {}

        async def b(input_data, tool_use_id, context):
            return {}

        dispatcher = HookDispatcher(
            {
                "PreToolUse": [HookMatcher(matcher="Bash", hooks=[a, b], timeout=5)],
                "PostToolUse": [HookMatcher(hooks=[a])],
            }
        )
        assert dispatcher.cli_config() == {
            "PreToolUse": [{"matcher": "Bash", "hookCallbackIds": ["hook_0", "hook_1"], "timeout": 5}],
            "PostToolUse": [{"matcher": None, "hookCallbackIds": ["hook_2"]}],
        }
        assert dispatcher.has_hooks

    def test_only_tool_events_are_registered(self):
        async def a(input_data, tool_use_id, context):
            return {}

        dispatcher = HookDispatcher(
            {
                "Notification": [HookMatcher(hooks=[a])],
                "PermissionRequest": [HookMatcher(hooks=[a])],
                "SubagentStart": [HookMatcher(hooks=[a])],
            }
        )
        assert dispatcher.cli_config() == {
            "PermissionRequest": [{"matcher": None, "hookCallbackIds": ["hook_1"]}],
        }
        assert dispatcher.has_hooks_for("Notification")

    def test_no_hooks_no_config(self):
        assert HookDispatcher().cli_config() is None

    @pytest.mark.asyncio
    async def test_invoke_callback(self):
        async def hook(input_data, tool_use_id, context):
            return {"async_": False, "continue_": True}

        dispatcher = HookDispatcher({"Notification": [HookMatcher(hooks=[hook])]})
        output = await dispatcher.invoke_callback("hook_0", {"hook_event_name": "Notification"}, None)
        assert output == {"async": False, "continue": True}

    @pytest.mark.asyncio
    async def test_invoke_failing_callback_blocks(self):
        async def hook(input_data, tool_use_id, context):
            raise RuntimeError("nope")

        dispatcher = HookDispatcher({"PreToolUse": [HookMatcher(hooks=[hook])]})
        output = await dispatcher.invoke_callback("hook_0", {"hook_event_name": "PreToolUse"}, "tu_1")
        assert output["decision"] == "block"
        assert "nope" in output["reason"]

    @pytest.mark.asyncio
    async def test_unknown_callback_id(self):
        with pytest.raises(KeyError):
            await HookDispatcher().invoke_callback("hook_99", {}, None)


# ─────────────────────────────────────────────────────────────────────────────
# One invocation per tool use
# ─────────────────────────────────────────────────────────────────────────────


class TestSingleInvocation:
    """A callback reached by local dispatch and by the CLI runs once per tool use."""

    @pytest.mark.asyncio
    async def test_dispatch_then_callback_request(self):
        calls = []

        async def hook(input_data, tool_use_id, context):
            calls.append(tool_use_id)
            return {"continue_": True, "hookSpecificOutput": {"permissionDecision": "allow"}}

        dispatcher = HookDispatcher({"PreToolUse": [HookMatcher(hooks=[hook])]})
        outcome = await dispatcher.dispatch("PreToolUse", pre_input(), tool_name="Bash", tool_use_id="tu_1")
        output = await dispatcher.invoke_callback("hook_0", pre_input(), "tu_1")

        assert calls == ["tu_1"]
        assert outcome.allowed
        assert output == {"continue": True, "hookSpecificOutput": {"permissionDecision": "allow"}}

    @pytest.mark.asyncio
    async def test_concurrent_paths_share_one_run(self):
        calls = []
        release = anyio.Event()

        async def hook(input_data, tool_use_id, context):
            calls.append(tool_use_id)
            await release.wait()
            return {"decision": "block", "reason": "not today"}

        dispatcher = HookDispatcher({"PreToolUse": [HookMatcher(hooks=[hook])]})
        results = {}

        async def local():
            results["outcome"] = await dispatcher.dispatch(
                "PreToolUse", pre_input(), tool_name="Bash", tool_use_id="tu_1"
            )

        async def remote():
            results["output"] = await dispatcher.invoke_callback("hook_0", pre_input(), "tu_1")

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                tg.start_soon(local)
                tg.start_soon(remote)
                await anyio.sleep(0.05)
                release.set()

        assert calls == ["tu_1"]
        assert results["outcome"].denied
        assert results["outcome"].reason == "not today"
        assert results["output"]["decision"] == "block"

    @pytest.mark.asyncio
    async def test_shared_failure_denies_both_paths(self):
        calls = []

        async def hook(input_data, tool_use_id, context):
            calls.append(tool_use_id)
            raise RuntimeError("broken")

        dispatcher = HookDispatcher({"PreToolUse": [HookMatcher(hooks=[hook])]})
        outcome = await dispatcher.dispatch("PreToolUse", pre_input(), tool_name="Bash", tool_use_id="tu_1")
        output = await dispatcher.invoke_callback("hook_0", pre_input(), "tu_1")

        assert calls == ["tu_1"]
        assert outcome.denied
        assert isinstance(outcome.error, HookFaultError)
        assert output["decision"] == "block"

    @pytest.mark.asyncio
    async def test_different_tool_uses_run_separately(self):
        calls = []

        async def hook(input_data, tool_use_id, context):
            calls.append(tool_use_id)
            return {}

        dispatcher = HookDispatcher({"PostToolUse": [HookMatcher(hooks=[hook])]})
        await dispatcher.dispatch("PostToolUse", {"hook_event_name": "PostToolUse"}, tool_use_id="tu_1")
        await dispatcher.dispatch("PostToolUse", {"hook_event_name": "PostToolUse"}, tool_use_id="tu_2")
        await dispatcher.dispatch("PostToolUse", {"hook_event_name": "PostToolUse"}, tool_use_id="tu_1")

        assert calls == ["tu_1", "tu_2"]

    @pytest.mark.asyncio
    async def test_events_without_tool_use_always_run(self):
        calls = []

        async def hook(input_data, tool_use_id, context):
            calls.append(input_data["message"])
            return {}

        dispatcher = HookDispatcher({"Notification": [HookMatcher(hooks=[hook])]})
        await dispatcher.dispatch("Notification", {"hook_event_name": "Notification", "message": "a"})
        await dispatcher.dispatch("Notification", {"hook_event_name": "Notification", "message": "b"})

        assert calls == ["a", "b"]
