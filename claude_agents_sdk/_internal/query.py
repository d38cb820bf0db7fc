"""Session engine for the bidirectional CLI protocol.

This module implements the Query class that manages:
- The initialization handshake
- Message routing in arrival order into a bounded stream
- Per-turn tool resolution (hooks, permission arbitration, in-process tools)
- Control request/response routing in both directions
- Inactivity watchdog, cancellation and one-time teardown

It builds on anyio:
- Memory object streams for backpressure between reader and consumer
- Events for the handshake, control responses and the per-turn barrier
- One task group per session for the reader and every background task
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from pydantic import BaseModel

from claude_agents_sdk._errors import (
    ClaudeSDKError,
    CLIConnectionError,
    ControlRequestTimeoutError,
    InitTimeoutError,
    ProcessError,
    SessionInactivityTimeoutError,
)
from claude_agents_sdk._internal import timeouts
from claude_agents_sdk._internal.codec import (
    ControlCancelEnvelope,
    ControlRequestEnvelope,
    ControlResponseEnvelope,
    LineDecoder,
    encode,
)
from claude_agents_sdk._internal.hooks import HookDispatcher, HookOutcome
from claude_agents_sdk._internal.mcp_bridge import McpToolBridge
from claude_agents_sdk._internal.permissions import ToolPermissionArbiter, denial_error
from claude_agents_sdk._internal.registry import SessionRegistry, get_registry
from claude_agents_sdk._internal.transport import Transport
from claude_agents_sdk.control_protocol import (
    ControlRequest,
    ControlResponse,
    ControlResponseError,
    ControlResponseSuccess,
    InitializeRequest,
    InterruptRequest,
    McpStatusRequest,
    PermissionResponse,
    RewindFilesRequest,
    SetModelRequest,
    SetPermissionModeRequest,
    ToolResultResponse,
    UserInput,
    UserInputData,
    text_content,
)
from claude_agents_sdk.mcp import ToolResult
from claude_agents_sdk.types import (
    AssistantMessage,
    ClaudeAgentOptions,
    CostUsage,
    Message,
    PermissionResult,
    PermissionResultAllow,
    PermissionResultDeny,
    ResultMessage,
    SessionState,
    SystemMessage,
    ToolPermissionContext,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)
from claude_agents_sdk.utils.log import get_logger

logger = get_logger(__name__)


@dataclass
class Session:
    """State of one conversation bound to one CLI process."""

    options: ClaudeAgentOptions
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    cli_session_id: str | None = None
    state: SessionState = SessionState.INITIALIZING
    outstanding: dict[str, ToolUseBlock] = field(default_factory=dict)
    turns: int = 0
    cost: CostUsage = field(default_factory=CostUsage)
    capabilities: dict[str, Any] | None = None

    @classmethod
    def snapshot(cls, options: ClaudeAgentOptions) -> Session:
        """Start a session from a private copy of ``options``."""
        frozen = copy.copy(options)
        frozen.env = dict(options.env)
        frozen.allowed_tools = list(options.allowed_tools)
        frozen.disallowed_tools = list(options.disallowed_tools)
        frozen.extra_args = dict(options.extra_args)
        frozen.mcp_servers = dict(options.mcp_servers)
        if options.hooks is not None:
            frozen.hooks = {event: list(matchers) for event, matchers in options.hooks.items()}
        return cls(options=frozen)


class Query:
    """Drives one session on top of a Transport.

    Lifecycle: ``start()`` then ``initialize()``; send user turns with
    ``send_user_message()``; read with ``next_message()`` or
    ``receive_messages()``; finish with ``stop()``. ``cancel()`` may be
    called from any task.
    """

    def __init__(
        self,
        transport: Transport,
        options: ClaudeAgentOptions | None = None,
        *,
        end_on_result: bool = False,
        registry: SessionRegistry | None = None,
    ):
        """Initialize Query with transport and options.

        Args:
            transport: Low-level transport for I/O
            options: Session configuration, snapshotted here
            end_on_result: Single-shot mode; the stream ends after the first result
            registry: Registry to track this session in (process default if None)
        """
        self.transport = transport
        self.session = Session.snapshot(options or ClaudeAgentOptions())
        opts = self.session.options
        self.end_on_result = end_on_result
        self._registry = registry if registry is not None else get_registry()

        self._init_timeout = timeouts.resolve(opts.init_timeout, timeouts.INIT_TIMEOUT_SEC)
        self._control_timeout = timeouts.resolve(opts.control_timeout, timeouts.CONTROL_TIMEOUT_SEC)

        self.hooks = HookDispatcher(opts.hooks, default_timeout=opts.hook_timeout)
        self.arbiter = ToolPermissionArbiter(opts.effective_permission_policy(), opts.can_use_tool)
        self.bridge = McpToolBridge(opts.mcp_servers)
        self._decoder = LineDecoder()
        self._watchdog = timeouts.InactivityWatchdog(
            timeouts.resolve(opts.inactivity_timeout, timeouts.INACTIVITY_TIMEOUT_SEC),
            on_timeout=self._on_inactivity,
        )

        # Message stream (bounded: the reader waits while the consumer lags)
        self._message_send: MemoryObjectSendStream[Message]
        self._message_receive: MemoryObjectReceiveStream[Message]
        self._message_send, self._message_receive = anyio.create_memory_object_stream[Message](
            max_buffer_size=opts.max_buffered_messages
        )

        # Control protocol state
        self._request_counter = 0
        self._pending_control: dict[str, anyio.Event] = {}
        self._control_results: dict[str, ControlResponseEnvelope | BaseException] = {}
        self._init_request_id: str | None = None
        self._initialized = anyio.Event()
        self._init_error: BaseException | None = None
        self.server_info: dict[str, Any] | None = None
        self._queued_inputs: list[UserInput] = []

        # Tool resolution state
        self._lock = anyio.Lock()
        self._settled = anyio.Event()
        self._settled.set()
        self._decisions: dict[str, PermissionResult] = {}
        self._awaiting_echo: dict[str, tuple[str, dict[str, Any]]] = {}
        self._resolved_ids: set[str] = set()

        # Lifecycle
        self._tg: TaskGroup | None = None
        self._tg_owner: int | None = None
        self._scopes: dict[object, anyio.CancelScope] = {}
        self._background_cancelled = False
        self._reading_done = False
        self._turn_active = False
        self._pending_turns = 0
        self._inputs_open = True
        self._finished = False
        self._stopped = False
        self._terminal_error: BaseException | None = None
        self._error_raised = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def is_finished(self) -> bool:
        return self._finished

    @property
    def terminal_error(self) -> BaseException | None:
        return self._terminal_error

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect the transport and start the background tasks."""
        if self._tg is not None:
            return
        try:
            await self.transport.connect()
        except ClaudeSDKError:
            self.session.state = SessionState.ERRORED
            self._finished = True
            raise
        self._registry.register(self)
        self._tg = anyio.create_task_group()
        await self._tg.__aenter__()
        self._tg_owner = anyio.get_current_task().id
        self._spawn(self._read_messages, key="reader")
        self._spawn(self.transport.drain_stderr, key="stderr")
        self._spawn(self._watchdog.run, key="watchdog")
        logger.debug("[query] Session started", extra={"session_id": self.session.session_id})

    async def initialize(self) -> dict[str, Any] | None:
        """Send the ``initialize`` request and wait for the handshake.

        The handshake completes on a ``system/init`` message or on the
        response to the initialize request, whichever comes first.

        Raises:
            InitTimeoutError: If neither arrives within the init timeout.
        """
        if self._init_request_id is None:
            self._init_request_id = self._next_request_id()
            request = ControlRequest(
                request_id=self._init_request_id,
                request=InitializeRequest(
                    hooks=self.hooks.cli_config(),
                    sdk_mcp_servers=self.bridge.server_names,
                ),
            )
            await self._write(request)

        with anyio.move_on_after(self._init_timeout) as scope:
            await self._initialized.wait()

        if scope.cancelled_caught:
            error = InitTimeoutError(
                f"CLI did not complete initialization within {self._init_timeout:.1f}s",
                timeout=self._init_timeout,
            )
            await self._fail(error)
            self._error_raised = True
            raise error

        if self._init_error is not None:
            error = self._init_error
            self._error_raised = True
            if not self._finished:
                await self._shutdown(SessionState.ERRORED, error)
            raise error
        return self.server_info

    def _spawn(self, func: Callable[..., Awaitable[Any]], *args: Any, key: object = None) -> None:
        """Start ``func`` in its own cancel scope so ``cancel()`` can reach it."""
        if self._tg is None:
            raise CLIConnectionError("Session not started")
        scope_key = key if key is not None else object()

        async def runner() -> None:
            with anyio.CancelScope() as scope:
                if self._background_cancelled:
                    scope.cancel()
                self._scopes[scope_key] = scope
                try:
                    await func(*args)
                finally:
                    self._scopes.pop(scope_key, None)

        self._tg.start_soon(runner)

    def _cancel_background(self) -> None:
        self._background_cancelled = True
        for scope in list(self._scopes.values()):
            scope.cancel()

    async def cancel(self) -> None:
        """Stop the session now. Buffered messages remain readable."""
        if self._finished:
            return
        logger.info("[query] Session cancelled", extra={"session_id": self.session.session_id})
        await self._shutdown(SessionState.CANCELLED, None)

    async def stop(self) -> None:
        """Tear down the session and release every resource. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        if not self._finished:
            await self._shutdown(self._final_state_on_stop(), None)
        if self._tg is not None:
            self._cancel_background()
            if anyio.get_current_task().id == self._tg_owner:
                await self._tg.__aexit__(None, None, None)
            else:
                # Only the entering task can exit the group; every child
                # runs in its own cancel scope, cancelled above.
                logger.debug(
                    "[query] Stopped from another task, leaving task group to unwind",
                    extra={"session_id": self.session.session_id},
                )
            self._tg = None
        with anyio.CancelScope(shield=True):
            await self.transport.close()
        self._message_receive.close()
        self._registry.unregister(self)

    def _final_state_on_stop(self) -> SessionState:
        if self._turn_active or self.session.outstanding:
            return SessionState.CANCELLED
        return SessionState.COMPLETED

    async def _shutdown(self, state: SessionState, error: BaseException | None) -> None:
        """Enter a terminal state exactly once and tear down the transport."""
        if self._finished:
            return
        self._finished = True
        self.session.state = state
        if error is not None:
            self._terminal_error = error
        self._watchdog.stop()
        self._cancel_background()
        self._message_send.close()

        # Wake everyone waiting on the session
        wake_error = error or CLIConnectionError("Session closed")
        if not self._initialized.is_set():
            self._init_error = wake_error
            self._initialized.set()
        for request_id, event in list(self._pending_control.items()):
            self._control_results.setdefault(request_id, wake_error)
            event.set()
        self._settled.set()

        await self.transport.close()
        logger.debug(
            "[query] Session finished",
            extra={"session_id": self.session.session_id, "state": self.session.state.value},
        )

    async def _fail(self, error: BaseException) -> None:
        """Fail the session; surface ``error`` unless the turn already completed."""
        if self._finished:
            logger.debug(f"[query] Ignoring error after shutdown: {error}")
            return
        if self._turn_active or not self._initialized.is_set():
            logger.error(
                f"[query] Session error: {type(error).__name__}: {error}",
                extra={"session_id": self.session.session_id},
            )
            await self._shutdown(SessionState.ERRORED, error)
        else:
            # A result was already delivered for the last turn
            logger.warning(
                f"[query] Error while idle, not raised: {type(error).__name__}: {error}",
                extra={"session_id": self.session.session_id},
            )
            await self._shutdown(SessionState.ERRORED, None)

    async def _on_inactivity(self, idle: float) -> None:
        await self._fail(
            SessionInactivityTimeoutError(
                f"No output from CLI for {idle:.1f}s during an active turn",
                timeout=self._watchdog.timeout_sec,
            )
        )

    # ------------------------------------------------------------------
    # Reading and routing
    # ------------------------------------------------------------------

    async def _read_messages(self) -> None:
        """Background task that reads lines from the transport and routes them."""
        try:
            async for line in self.transport.read_lines():
                self._watchdog.ping()
                decoded = self._decoder.feed(line)
                if decoded is None:
                    continue
                await self._route(decoded)
                if self._finished or self._reading_done:
                    return
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            # The consumer side went away during cancel or stop
            return
        except ClaudeSDKError as e:
            await self._fail(e)
            return
        except Exception as e:
            logger.exception("[query] Unexpected error in reader")
            await self._fail(ClaudeSDKError(f"Unexpected error reading from CLI: {e}"))
            return
        await self._on_eof()

    async def _on_eof(self) -> None:
        if self._finished:
            return
        if self._turn_active or self.session.outstanding or not self._initialized.is_set():
            await self._fail(
                ProcessError(
                    "CLI process ended output unexpectedly",
                    exit_code=self.transport.exit_code,
                    stderr=self.transport.stderr_output or None,
                )
            )
            return
        logger.debug("[query] CLI closed output while idle")
        await self._shutdown(SessionState.COMPLETED, None)

    async def _route(self, decoded: Any) -> None:
        if isinstance(decoded, ControlResponseEnvelope):
            self._handle_control_response(decoded)
            return
        if isinstance(decoded, ControlRequestEnvelope):
            self._spawn(self._handle_control_request, decoded, key=("control", decoded.request_id))
            return
        if isinstance(decoded, ControlCancelEnvelope):
            scope = self._scopes.get(("control", decoded.request_id))
            if scope is not None:
                scope.cancel()
            return

        message: Message = decoded
        if isinstance(message, (AssistantMessage, ResultMessage)):
            await self._wait_for_tools()
            if self._finished:
                return

        if isinstance(message, SystemMessage):
            self._on_system_message(message)
        elif isinstance(message, UserMessage):
            self._on_user_echo(message)
        elif isinstance(message, AssistantMessage):
            await self._begin_tool_uses(message.tool_uses)

        if isinstance(message, ResultMessage):
            self._on_result(message)

        await self._message_send.send(message)

        if isinstance(message, ResultMessage):
            self._maybe_end_stream()

    def _maybe_end_stream(self) -> None:
        """In single-shot mode, end the stream once every sent turn has a result."""
        if not self.end_on_result or self._reading_done or self._finished:
            return
        if self._inputs_open or self._pending_turns:
            return
        self._reading_done = True
        self._watchdog.stop()
        self._message_send.close()
        self._spawn(self.transport.end_input)

    def _on_system_message(self, message: SystemMessage) -> None:
        if message.is_init:
            self.session.capabilities = message.data
            session_id = message.data.get("session_id")
            if isinstance(session_id, str):
                self.session.cli_session_id = session_id
            self._complete_handshake()
        elif message.subtype == "notification":
            self._spawn(
                self.hooks.dispatch,
                "Notification",
                self._hook_input(
                    "Notification",
                    message=str(message.data.get("message", "")),
                    title=str(message.data.get("title", "")),
                ),
            )
        elif message.subtype == "subagent_start":
            self._spawn(
                self.hooks.dispatch,
                "SubagentStart",
                self._hook_input(
                    "SubagentStart",
                    agent_id=str(message.data.get("agent_id", "")),
                    agent_type=str(message.data.get("agent_type", "")),
                ),
            )

    def _on_user_echo(self, message: UserMessage) -> None:
        if isinstance(message.content, str):
            return
        for block in message.content:
            if isinstance(block, ToolResultBlock) and block.tool_use_id in self._awaiting_echo:
                tool_name, tool_input = self._awaiting_echo.pop(block.tool_use_id)
                self._spawn(
                    self._run_post_tool_use,
                    tool_name,
                    tool_input,
                    block.content,
                    block.tool_use_id,
                )

    def _on_result(self, message: ResultMessage) -> None:
        self.session.state = SessionState.COMPLETED
        self.session.cost = self.session.cost + message.cost
        if message.session_id:
            self.session.cli_session_id = message.session_id
        self._pending_turns = max(self._pending_turns - 1, 0)
        self._turn_active = self._pending_turns > 0
        if not self._turn_active:
            self._watchdog.disarm()
        self._decisions.clear()
        self.bridge.forget_settled()
        logger.debug(
            "[query] Turn completed",
            extra={
                "session_id": self.session.session_id,
                "turns": self.session.turns,
                "num_turns": message.num_turns,
                "is_error": message.is_error,
            },
        )

    def _complete_handshake(self) -> None:
        if self._initialized.is_set():
            return
        if self.session.state == SessionState.INITIALIZING:
            self.session.state = SessionState.STREAMING
        self._initialized.set()
        logger.debug("[query] Handshake complete", extra={"session_id": self.session.session_id})
        if self._queued_inputs:
            queued, self._queued_inputs = self._queued_inputs, []
            self._spawn(self._flush_inputs, queued)

    async def _flush_inputs(self, inputs: list[UserInput]) -> None:
        self._watchdog.arm()
        for item in inputs:
            await self._write_or_fail(item)

    # ------------------------------------------------------------------
    # Tool resolution
    # ------------------------------------------------------------------

    async def _begin_tool_uses(self, blocks: list[ToolUseBlock]) -> None:
        fresh = [block for block in blocks if block.id not in self._resolved_ids]
        if not fresh:
            return
        async with self._lock:
            for block in fresh:
                self._resolved_ids.add(block.id)
                self.session.outstanding[block.id] = block
                self.bridge.expect(block.id, block.name, block.input)
            if self._settled.is_set():
                self._settled = anyio.Event()
            self.session.state = SessionState.AWAITING_TOOL_RESOLUTION
        self._watchdog.disarm()
        for block in fresh:
            self._spawn(self._resolve_tool_use, block)

    async def _wait_for_tools(self) -> None:
        """Per-turn barrier: block until every outstanding tool use is resolved."""
        while self.session.outstanding and not self._finished:
            await self._settled.wait()

    async def _resolve_tool_use(self, block: ToolUseBlock) -> None:
        try:
            decision, tool_input = await self._decide(block, block.input)
            if isinstance(decision, PermissionResultDeny):
                reason = str(denial_error(block.name, decision))
                self.bridge.settle(block.id, ToolResult.error(reason))
                await self._write_resolution(
                    block,
                    ToolResultResponse(
                        tool_use_id=block.id,
                        content=text_content(reason),
                        is_error=True,
                    ),
                )
                return

            if decision.updated_input is not None:
                tool_input = decision.updated_input

            if self.bridge.has_tool(block.name):
                result = await self.bridge.call_tool(block.name, tool_input, tool_use_id=block.id)
                payload = result.to_dict()
                content = list(payload.get("content", []))
                post = await self._run_post_tool_use(block.name, tool_input, payload, block.id)
                if post.additional_context:
                    content.append({"type": "text", "text": post.additional_context})
                await self._write_resolution(
                    block,
                    ToolResultResponse(
                        tool_use_id=block.id,
                        content=content,
                        is_error=bool(result.is_error),
                    ),
                )
            else:
                self._awaiting_echo[block.id] = (block.name, tool_input)
                await self._write_resolution(
                    block,
                    PermissionResponse(
                        tool_use_id=block.id,
                        decision="allow",
                        updated_input=tool_input if tool_input != block.input else None,
                    ),
                )
        except ClaudeSDKError as e:
            await self._fail(e)
        except Exception as e:
            logger.exception("[query] Unexpected error resolving tool use")
            await self._fail(ClaudeSDKError(f"Failed to resolve tool use {block.id}: {e}"))

    async def _decide(
        self,
        block: ToolUseBlock,
        tool_input: dict[str, Any],
        suggestions: list[dict[str, Any]] | None = None,
    ) -> tuple[PermissionResult, dict[str, Any]]:
        """Run gating hooks and the arbiter. Returns the decision and input to use."""
        cached = self._decisions.get(block.id)
        if cached is not None:
            return cached, tool_input

        decision: PermissionResult | None = None
        pre = await self.hooks.dispatch(
            "PreToolUse",
            self._hook_input("PreToolUse", tool_name=block.name, tool_input=tool_input),
            tool_name=block.name,
            tool_use_id=block.id,
        )
        if pre.denied:
            decision = PermissionResultDeny(message=pre.reason or "Blocked by PreToolUse hook")
        else:
            if pre.updated_input is not None:
                tool_input = pre.updated_input
            if pre.allowed:
                decision = PermissionResultAllow()

        if decision is None:
            request = await self.hooks.dispatch(
                "PermissionRequest",
                self._hook_input("PermissionRequest", tool_name=block.name, tool_input=tool_input),
                tool_name=block.name,
                tool_use_id=block.id,
            )
            if request.updated_input is not None and not request.denied:
                tool_input = request.updated_input
            if request.denied:
                decision = PermissionResultDeny(
                    message=request.reason or "Blocked by PermissionRequest hook"
                )
            elif request.allowed:
                decision = PermissionResultAllow()
            else:
                context = ToolPermissionContext(
                    tool_use_id=block.id,
                    session_id=self.session.session_id,
                    signal=None,
                    suggestions=list(suggestions or []),
                )
                decision = await self.arbiter.decide(block, context, tool_input)

        self._decisions[block.id] = decision
        return decision, tool_input

    async def _write_resolution(self, block: ToolUseBlock, message: BaseModel) -> None:
        async with self._lock:
            if self._finished:
                return
            await self._write(message)
            self.session.outstanding.pop(block.id, None)
            if not self.session.outstanding:
                self._settled.set()
                if self.session.state == SessionState.AWAITING_TOOL_RESOLUTION:
                    self.session.state = SessionState.STREAMING
                if self._turn_active:
                    self._watchdog.arm()
        logger.debug(
            "[query] Tool use resolved",
            extra={
                "tool_use_id": block.id,
                "tool_name": block.name,
                "resolution": getattr(message, "type", ""),
            },
        )

    async def _run_post_tool_use(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_response: Any,
        tool_use_id: str,
    ) -> HookOutcome:
        return await self.hooks.dispatch(
            "PostToolUse",
            self._hook_input(
                "PostToolUse",
                tool_name=tool_name,
                tool_input=tool_input,
                tool_response=tool_response,
            ),
            tool_name=tool_name,
            tool_use_id=tool_use_id,
        )

    def _hook_input(self, event: str, **fields: Any) -> dict[str, Any]:
        opts = self.session.options
        data: dict[str, Any] = {
            "hook_event_name": event,
            "session_id": self.session.cli_session_id or self.session.session_id,
        }
        if opts.cwd:
            data["cwd"] = str(opts.cwd)
        if opts.permission_mode:
            data["permission_mode"] = opts.permission_mode
        data.update(fields)
        return data

    # ------------------------------------------------------------------
    # Control protocol (CLI -> SDK)
    # ------------------------------------------------------------------

    async def _handle_control_request(self, envelope: ControlRequestEnvelope) -> None:
        """Serve one control request from the CLI."""
        request = envelope.request
        try:
            match envelope.subtype:
                case "can_use_tool":
                    response = await self._handle_can_use_tool(request)
                case "hook_callback":
                    response = await self.hooks.invoke_callback(
                        str(request.get("callback_id", "")),
                        request.get("input") or {},
                        request.get("tool_use_id"),
                    )
                case "mcp_message":
                    mcp_response = await self.bridge.handle_message(
                        str(request.get("server_name", "")),
                        request.get("message") or {},
                    )
                    response = {
                        "mcp_response": mcp_response
                        if mcp_response is not None
                        else {"jsonrpc": "2.0", "result": {}}
                    }
                case _:
                    raise ValueError(f"Unknown request subtype: {envelope.subtype}")
        except Exception as e:
            logger.warning(
                "[query] Control request failed",
                extra={"request_id": envelope.request_id, "subtype": envelope.subtype, "error": str(e)},
            )
            await self._write_or_fail(
                ControlResponse(
                    response=ControlResponseError(request_id=envelope.request_id, error=str(e))
                )
            )
            return

        await self._write_or_fail(
            ControlResponse(
                response=ControlResponseSuccess(request_id=envelope.request_id, response=response)
            )
        )

    async def _handle_can_use_tool(self, request: dict[str, Any]) -> dict[str, Any]:
        tool_input = request.get("input") or {}
        block = ToolUseBlock(
            id=str(request.get("tool_use_id") or f"prompt_{uuid.uuid4().hex}"),
            name=str(request.get("tool_name", "")),
            input=tool_input,
        )
        suggestions = request.get("permission_suggestions") or []
        decision, effective_input = await self._decide(block, tool_input, suggestions)
        if isinstance(decision, PermissionResultAllow):
            updated = decision.updated_input if decision.updated_input is not None else effective_input
            return {"behavior": "allow", "updatedInput": updated}
        return {"behavior": "deny", "message": decision.message, "interrupt": decision.interrupt}

    # ------------------------------------------------------------------
    # Control protocol (SDK -> CLI)
    # ------------------------------------------------------------------

    def _next_request_id(self) -> str:
        self._request_counter += 1
        return f"req_{self._request_counter}"

    def _handle_control_response(self, envelope: ControlResponseEnvelope) -> None:
        if envelope.request_id == self._init_request_id:
            if envelope.is_error:
                self._init_error = CLIConnectionError(
                    f"CLI rejected initialization: {envelope.error or 'unknown error'}"
                )
                self._initialized.set()
                return
            self.server_info = envelope.response
            self._complete_handshake()
            return

        event = self._pending_control.get(envelope.request_id)
        if event is None:
            logger.debug(
                "[query] Response for unknown control request",
                extra={"request_id": envelope.request_id},
            )
            return
        self._control_results[envelope.request_id] = envelope
        event.set()

    async def _send_control_request(self, request: BaseModel) -> dict[str, Any]:
        """Send a control request and wait for the matching response.

        Raises:
            ControlRequestTimeoutError: If no response arrives in time.
            ClaudeSDKError: If the CLI answers with an error.
        """
        if self._finished:
            raise CLIConnectionError("Session is not running")
        request_id = self._next_request_id()
        event = anyio.Event()
        self._pending_control[request_id] = event
        try:
            await self._write(ControlRequest(request_id=request_id, request=request))
            with anyio.move_on_after(self._control_timeout) as scope:
                await event.wait()
            if scope.cancelled_caught:
                raise ControlRequestTimeoutError(
                    f"Control request {request.subtype} timed out after {self._control_timeout:.1f}s",
                    timeout=self._control_timeout,
                )
            result = self._control_results.pop(request_id)
            if isinstance(result, BaseException):
                raise result
            if result.is_error:
                raise ClaudeSDKError(f"Control request {request.subtype} failed: {result.error}")
            return result.response
        finally:
            self._pending_control.pop(request_id, None)
            self._control_results.pop(request_id, None)

    async def interrupt(self) -> None:
        """Interrupt the current turn."""
        await self._send_control_request(InterruptRequest())

    async def set_permission_mode(self, mode: str) -> None:
        """Change permission mode during conversation."""
        await self._send_control_request(SetPermissionModeRequest(mode=mode))

    async def set_model(self, model: str | None = None) -> None:
        """Change the AI model during conversation."""
        await self._send_control_request(SetModelRequest(model=model))

    async def rewind_files(self, user_message_id: str) -> None:
        """Rewind tracked files to their state at a specific user message."""
        await self._send_control_request(RewindFilesRequest(user_message_id=user_message_id))

    async def get_mcp_status(self) -> dict[str, Any]:
        """Current connection status of the MCP servers the CLI knows about."""
        return await self._send_control_request(McpStatusRequest()) or {}

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def _write(self, message: BaseModel) -> None:
        await self.transport.write(encode(message))
        self._watchdog.ping()

    async def _write_or_fail(self, message: BaseModel) -> None:
        if self._finished:
            return
        try:
            await self._write(message)
        except ClaudeSDKError as e:
            await self._fail(e)

    async def send_user_message(
        self,
        prompt: str | list[dict[str, Any]],
        session_id: str = "default",
        parent_tool_use_id: str | None = None,
    ) -> None:
        """Start a new turn with a user message.

        Messages sent before the handshake completes are queued and flushed
        in order once it does.
        """
        message = UserInput(
            message=UserInputData(content=prompt),
            parent_tool_use_id=parent_tool_use_id,
            session_id=session_id,
        )
        await self._send_input(message)

    async def send_input_stream(self, messages: AsyncIterable[dict[str, Any]]) -> None:
        """Send pre-built user message dicts from an async iterable."""
        async for raw in messages:
            await self._send_input(UserInput.model_validate(raw))

    def start_input_stream(self, messages: AsyncIterable[dict[str, Any]]) -> None:
        """Feed ``messages`` in the background, then mark input complete."""

        async def feed() -> None:
            try:
                await self.send_input_stream(messages)
            except ClaudeSDKError as e:
                await self._fail(e)
                return
            self.mark_input_complete()

        self._spawn(feed, key="input")

    def mark_input_complete(self) -> None:
        """No more user messages will be sent (single-shot sessions)."""
        self._inputs_open = False
        self._maybe_end_stream()

    async def _send_input(self, message: UserInput) -> None:
        if self._finished:
            raise CLIConnectionError("Session is not running")
        self.session.turns += 1
        self._pending_turns += 1
        self._turn_active = True
        if self.session.state == SessionState.COMPLETED:
            self.session.state = SessionState.STREAMING
        if not self._initialized.is_set():
            self._queued_inputs.append(message)
            return
        self._watchdog.arm()
        await self._write(message)

    async def end_input(self) -> None:
        await self.transport.end_input()

    # ------------------------------------------------------------------
    # Consuming
    # ------------------------------------------------------------------

    def _take_terminal_error(self) -> BaseException | None:
        if self._terminal_error is None or self._error_raised:
            return None
        self._error_raised = True
        return self._terminal_error

    async def next_message(self) -> Message:
        """Return the next message in arrival order.

        Raises:
            StopAsyncIteration: When the stream ends normally.
            ClaudeSDKError: Once, if the session ended with an error.
        """
        try:
            return await self._message_receive.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError):
            error = self._take_terminal_error()
            if error is not None:
                raise error from None
            raise StopAsyncIteration from None

    async def receive_messages(self) -> AsyncIterator[Message]:
        """Yield messages until the stream ends."""
        while True:
            try:
                message = await self.next_message()
            except StopAsyncIteration:
                return
            yield message


__all__ = ["Query", "Session"]
