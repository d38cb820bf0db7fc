"""Lazy, cancellable message stream for single-shot queries."""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from claude_agents_sdk._internal.query import Query
from claude_agents_sdk._internal.registry import SessionRegistry
from claude_agents_sdk._internal.transport import Transport
from claude_agents_sdk._internal.transport.subprocess_cli import (
    SubprocessCLITransport,
    build_launch_spec,
)
from claude_agents_sdk.types import ClaudeAgentOptions, Message, SessionState
from claude_agents_sdk.utils.log import get_logger

logger = get_logger(__name__)


class QueryStream:
    """Async iterator over the messages of one single-shot session.

    Nothing is spawned until the first ``__anext__``. The stream ends after
    the result for the last prompt, after which the session is torn down.
    Leaving an ``async for`` loop early tears the session down as well.
    ``cancel()`` stops production at once; messages already buffered can
    still be read before the stream ends.
    """

    def __init__(
        self,
        prompt: str | AsyncIterable[dict[str, Any]],
        options: ClaudeAgentOptions | None = None,
        *,
        transport: Transport | None = None,
        registry: SessionRegistry | None = None,
    ):
        self._prompt = prompt
        self._options = options or ClaudeAgentOptions()
        self._transport = transport
        self._registry = registry
        self._query: Query | None = None
        self._started = False
        self._closed = False

    def _build_query(self) -> Query:
        transport = self._transport
        if transport is None:
            opts = self._options
            transport = SubprocessCLITransport(
                build_launch_spec(opts),
                max_line_bytes=opts.max_line_bytes,
                shutdown_grace=opts.shutdown_grace,
                stderr=opts.stderr,
            )
        return Query(transport, self._options, end_on_result=True, registry=self._registry)

    @property
    def query(self) -> Query:
        """The underlying session engine, created on first access."""
        if self._query is None:
            self._query = self._build_query()
        return self._query

    @property
    def state(self) -> SessionState:
        if self._query is None:
            return SessionState.INITIALIZING
        return self._query.state

    @property
    def session_id(self) -> str:
        return self.query.session.session_id

    async def _start(self) -> None:
        self._started = True
        query = self.query
        await query.start()
        await query.initialize()
        if isinstance(self._prompt, str):
            await query.send_user_message(self._prompt)
            query.mark_input_complete()
        else:
            query.start_input_stream(self._prompt)
        logger.debug("[stream] Query started", extra={"session_id": query.session.session_id})

    def __aiter__(self) -> AsyncIterator[Message]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Message]:
        # Closed by the async generator hooks when the caller stops early
        try:
            while True:
                try:
                    message = await self.__anext__()
                except StopAsyncIteration:
                    return
                yield message
        finally:
            await self.aclose()

    async def __anext__(self) -> Message:
        if self._closed and self._query is None:
            raise StopAsyncIteration
        try:
            if not self._started:
                await self._start()
            return await self.query.next_message()
        except BaseException:
            await self.aclose()
            raise

    async def cancel(self) -> None:
        """Stop the session. Already-buffered messages remain readable."""
        if self._query is None:
            self._closed = True
            return
        await self._query.cancel()

    async def aclose(self) -> None:
        """Release every resource held by the stream. Idempotent."""
        self._closed = True
        if self._query is not None:
            await self._query.stop()

    async def __aenter__(self) -> QueryStream:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()


__all__ = ["QueryStream"]
