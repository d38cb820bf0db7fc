"""Transport implementations for the Claude Agents SDK.

The Transport interface is low-level and handles raw, newline-framed text.
Higher-level components like Query build on top of this to implement the
control protocol and message routing.
"""

import abc
from collections.abc import AsyncIterator


class Transport(abc.ABC):
    """Abstract transport for talking to the agent CLI.

    Note: This is an internal API. The Query class builds on top of Transport
    to implement the control protocol and message routing.
    """

    @abc.abstractmethod
    async def connect(self) -> None:
        """Connect the transport and prepare for communication.

        For subprocess transports, this starts the process.
        """

    @abc.abstractmethod
    async def write(self, data: str) -> None:
        """Write one framed line to the transport.

        Args:
            data: Raw string data to write (JSON + newline)
        """

    @abc.abstractmethod
    def read_lines(self) -> AsyncIterator[str]:
        """Yield inbound lines without their terminators.

        The iterator ends without error when the peer closes its output.
        """

    @abc.abstractmethod
    async def end_input(self) -> None:
        """End the input stream (close stdin for process transports)."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Close the transport and clean up resources. Safe to call twice."""

    @abc.abstractmethod
    def is_ready(self) -> bool:
        """Check if transport is ready for communication."""

    async def drain_stderr(self) -> None:
        """Background work the owner runs alongside ``read_lines``.

        Transports without a diagnostics channel return immediately.
        """

    @property
    def stderr_output(self) -> str:
        """Recently captured diagnostics, attached to errors."""
        return ""

    @property
    def exit_code(self) -> int | None:
        return None


__all__ = ["Transport"]
