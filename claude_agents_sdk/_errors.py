"""Error types for the Claude Agents SDK.

Faults local to one tool call or one hook never abort a session; they are
recorded on the resolution instead. Transport and codec faults that indicate
protocol desynchronization abort the session and surface exactly once as the
stream's terminal error.
"""

from __future__ import annotations

from typing import Any


class ClaudeSDKError(Exception):
    """Base exception for all SDK errors."""

    def __str__(self) -> str:
        return self.args[0] if self.args else "An error occurred in the Claude Agents SDK"


class ConfigurationError(ClaudeSDKError):
    """Raised when options are contradictory or incomplete."""


# =============================================================================
# Transport
# =============================================================================


class CLIConnectionError(ClaudeSDKError):
    """Raised when unable to talk to the CLI process."""

    def __init__(self, message: str, stderr: str | None = None):
        super().__init__(message)
        self.stderr = stderr


class SpawnError(CLIConnectionError):
    """Raised when the CLI process cannot be started."""


class CLINotFoundError(SpawnError):
    """Raised when the CLI executable cannot be located."""


class CLIBrokenPipeError(CLIConnectionError, BrokenPipeError):
    """Raised when writing to a CLI process that has already exited."""


class ProcessError(ClaudeSDKError):
    """Raised when the CLI process exits unexpectedly."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        stderr: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
        self.extra = kwargs

    def __str__(self) -> str:
        text = super().__str__()
        if self.stderr:
            text = f"{text}\nstderr: {self.stderr}"
        return text


# =============================================================================
# Codec
# =============================================================================


class CLIJSONDecodeError(ClaudeSDKError):
    """Raised when a single line from the CLI is not valid JSON.

    Recoverable: the session skips the line unless it recurs on consecutive lines.
    """

    def __init__(self, line: str, original_error: Exception | None = None):
        super().__init__(f"Failed to decode JSON: {line[:100]}...")
        self.line = line
        self.original_error = original_error


class DecodeFramingError(ClaudeSDKError):
    """Raised when a line from the CLI exceeds the configured maximum size."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Line exceeded maximum size ({size} > {limit} bytes)")
        self.size = size
        self.limit = limit


class ProtocolDesyncError(ClaudeSDKError):
    """Raised after too many consecutive undecodable lines."""

    def __init__(self, message: str, lines: list[str] | None = None):
        super().__init__(message)
        self.lines = lines or []


# =============================================================================
# Timeouts
# =============================================================================


class SDKTimeoutError(ClaudeSDKError, TimeoutError):
    """Base class for the SDK's distinct timeout kinds."""

    def __init__(self, message: str, timeout: float | None = None):
        super().__init__(message)
        self.timeout = timeout


class InitTimeoutError(SDKTimeoutError):
    """Raised when the CLI never acknowledges the initialization handshake."""


class SessionInactivityTimeoutError(SDKTimeoutError):
    """Raised when an active turn receives no output for too long."""


class ControlRequestTimeoutError(SDKTimeoutError):
    """Raised when a control request gets no matching response in time."""


# =============================================================================
# Hook and permission outcomes (recorded, not raised to the caller)
# =============================================================================


class HookError(ClaudeSDKError):
    """Base class for hook failures. Resolved as a denial of the tool call."""

    def __init__(self, message: str, event: str | None = None):
        super().__init__(message)
        self.event = event


class HookTimeoutError(HookError):
    """A hook callback did not finish within its timeout."""


class HookFaultError(HookError):
    """A hook callback raised an unexpected exception."""


class PermissionDeniedError(ClaudeSDKError):
    """A tool call was denied. A valid outcome, reported to the CLI as a denial."""

    def __init__(self, tool_name: str, reason: str = ""):
        super().__init__(reason or f"Permission to use {tool_name} was denied")
        self.tool_name = tool_name
        self.reason = reason


# For API compatibility with other agent SDKs
SDKError = ClaudeSDKError
JSONDecodeError = CLIJSONDecodeError


__all__ = [
    "ClaudeSDKError",
    "ConfigurationError",
    "CLIConnectionError",
    "SpawnError",
    "CLINotFoundError",
    "CLIBrokenPipeError",
    "ProcessError",
    "CLIJSONDecodeError",
    "DecodeFramingError",
    "ProtocolDesyncError",
    "SDKTimeoutError",
    "InitTimeoutError",
    "SessionInactivityTimeoutError",
    "ControlRequestTimeoutError",
    "HookError",
    "HookTimeoutError",
    "HookFaultError",
    "PermissionDeniedError",
    # Compatibility aliases
    "SDKError",
    "JSONDecodeError",
]
