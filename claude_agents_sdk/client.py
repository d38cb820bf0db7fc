"""Public entry points: ``query()`` for single prompts and ``ClaudeSDKClient``
for persistent, multi-turn sessions.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from claude_agents_sdk._errors import CLIConnectionError, ConfigurationError
from claude_agents_sdk._internal.query import Query
from claude_agents_sdk._internal.registry import SessionRegistry
from claude_agents_sdk._internal.stream import QueryStream
from claude_agents_sdk._internal.transport import Transport
from claude_agents_sdk._internal.transport.subprocess_cli import (
    SubprocessCLITransport,
    build_launch_spec,
)
from claude_agents_sdk.types import (
    ClaudeAgentOptions,
    Message,
    PermissionMode,
    ResultMessage,
    SessionState,
)
from claude_agents_sdk.utils.log import get_logger

logger = get_logger(__name__)


def validate_options(options: ClaudeAgentOptions) -> None:
    """Reject option combinations the session cannot honor.

    Raises:
        ConfigurationError: If the options are contradictory.
    """
    if options.can_use_tool is not None and options.permission_prompt_tool_name:
        raise ConfigurationError(
            "Cannot specify both 'can_use_tool' and 'permission_prompt_tool_name'"
        )
    if options.max_buffered_messages < 1:
        raise ConfigurationError("max_buffered_messages must be at least 1")
    if options.max_line_bytes is not None and options.max_line_bytes < 1:
        raise ConfigurationError("max_line_bytes must be positive")


def query(
    *,
    prompt: str | AsyncIterable[dict[str, Any]],
    options: ClaudeAgentOptions | None = None,
    transport: Transport | None = None,
) -> QueryStream:
    """Run one prompt in a fresh session and stream the messages.

    The session is not started until the returned stream is first iterated.
    The stream ends after the result message and the CLI process is torn
    down.

    Example:
        async for message in query(prompt="What is 2 + 2?"):
            print(message)
    """
    options = options or ClaudeAgentOptions()
    validate_options(options)
    return QueryStream(prompt, options, transport=transport)


class ClaudeSDKClient:
    """Persistent session with the agent CLI.

    One CLI process serves every turn; the session id stays the same
    across turns.

    Example:
        async with ClaudeSDKClient(options) as client:
            await client.query("Hello")
            async for message in client.receive_response():
                print(message)
    """

    def __init__(
        self,
        options: ClaudeAgentOptions | None = None,
        transport: Transport | None = None,
        registry: SessionRegistry | None = None,
    ) -> None:
        self.options = options or ClaudeAgentOptions()
        self._custom_transport = transport
        self._registry = registry
        self._query: Query | None = None

    @property
    def is_connected(self) -> bool:
        return self._query is not None and not self._query.is_finished

    @property
    def state(self) -> SessionState | None:
        return self._query.state if self._query else None

    @property
    def session_id(self) -> str | None:
        return self._query.session.session_id if self._query else None

    async def __aenter__(self) -> ClaudeSDKClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.disconnect()

    def _build_transport(self) -> Transport:
        if self._custom_transport is not None:
            return self._custom_transport
        return SubprocessCLITransport(
            build_launch_spec(self.options),
            max_line_bytes=self.options.max_line_bytes,
            shutdown_grace=self.options.shutdown_grace,
            stderr=self.options.stderr,
        )

    async def connect(self, prompt: str | AsyncIterable[dict[str, Any]] | None = None) -> None:
        """Start the CLI, complete the handshake and optionally send a first prompt."""
        if self._query is None:
            validate_options(self.options)
            query = Query(self._build_transport(), self.options, registry=self._registry)
            self._query = query
            try:
                await query.start()
                await query.initialize()
            except BaseException:
                self._query = None
                await query.stop()
                raise
            logger.info(
                "[client] Connected to CLI",
                extra={"session_id": query.session.session_id},
            )

        if prompt is not None:
            await self.query(prompt)

    def _require_query(self) -> Query:
        if self._query is None:
            raise CLIConnectionError("Not connected. Call connect() first.")
        return self._query

    async def query(
        self,
        prompt: str | AsyncIterable[dict[str, Any]],
        session_id: str = "default",
    ) -> None:
        """Send a new user turn."""
        query = self._require_query()
        if isinstance(prompt, str):
            await query.send_user_message(prompt, session_id=session_id)
            return
        await query.send_input_stream(prompt)

    async def receive_messages(self) -> AsyncIterator[Message]:
        """Yield every message until the session ends."""
        query = self._require_query()
        async for message in query.receive_messages():
            yield message

    async def receive_response(self) -> AsyncIterator[Message]:
        """Yield messages up to and including the next result message."""
        query = self._require_query()
        while True:
            try:
                message = await query.next_message()
            except StopAsyncIteration:
                return
            yield message
            if isinstance(message, ResultMessage):
                return

    async def interrupt(self) -> None:
        await self._require_query().interrupt()

    async def set_permission_mode(self, mode: PermissionMode) -> None:
        await self._require_query().set_permission_mode(mode)

    async def set_model(self, model: str | None = None) -> None:
        await self._require_query().set_model(model)

    async def rewind_files(self, user_message_id: str) -> None:
        """Restore files changed since the given user message."""
        await self._require_query().rewind_files(user_message_id)

    async def get_mcp_status(self) -> dict[str, Any]:
        return await self._require_query().get_mcp_status()

    def get_server_info(self) -> dict[str, Any] | None:
        """The CLI's response to the initialize request, if any."""
        if self._query is None:
            return None
        return self._query.server_info

    async def cancel(self) -> None:
        """Abort the session now. Buffered messages remain readable."""
        if self._query is not None:
            await self._query.cancel()

    async def disconnect(self) -> None:
        """Tear down the session. Safe to call more than once."""
        if self._query is None:
            return
        query, self._query = self._query, None
        await query.stop()
        logger.info("[client] Disconnected from CLI", extra={"session_id": query.session.session_id})


__all__ = ["ClaudeSDKClient", "query", "validate_options"]
