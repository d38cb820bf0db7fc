"""Subprocess transport implementation using anyio for clean async I/O.

This module implements stdio transport for communicating with the agent CLI
subprocess: newline-framed JSON on stdin/stdout, diagnostics on stderr.
"""

from __future__ import annotations

import json
import os
import re
import shutil
import subprocess
from collections import deque
from collections.abc import AsyncIterator, Callable
from contextlib import suppress
from pathlib import Path as PathLib
from typing import TYPE_CHECKING

import anyio
from anyio.abc import Process
from anyio.streams.buffered import BufferedByteReceiveStream
from anyio.streams.text import TextReceiveStream
from packaging.version import InvalidVersion, Version

from claude_agents_sdk._errors import (
    ClaudeSDKError,
    CLIBrokenPipeError,
    CLIConnectionError,
    CLINotFoundError,
    DecodeFramingError,
    SpawnError,
)
from claude_agents_sdk._internal.timeouts import (
    DEFAULT_MAX_LINE_BYTES,
    SHUTDOWN_GRACE_SEC,
)
from claude_agents_sdk._internal.transport import Transport
from claude_agents_sdk.types import LaunchSpec
from claude_agents_sdk.utils.log import get_logger

if TYPE_CHECKING:
    from claude_agents_sdk.types import ClaudeAgentOptions

logger = get_logger(__name__)

CLI_NAME = "claude"
SDK_ENTRYPOINT = "sdk-py"
STDERR_TAIL_LINES = 100
MIN_CLI_VERSION = "2.0.0"
VERSION_CHECK_TIMEOUT_SEC = 2.0
SKIP_VERSION_CHECK_ENV = "CLAUDE_AGENTS_SDK_SKIP_VERSION_CHECK"

_VERSION_PATTERN = re.compile(r"\d+\.\d+\.\d+\S*")


def cli_locations() -> list[PathLib]:
    """Common installation locations checked when the CLI is not on PATH."""
    return [
        PathLib.home() / ".npm-global" / "bin" / CLI_NAME,
        PathLib("/usr/local") / "bin" / CLI_NAME,
        PathLib.home() / ".local" / "bin" / CLI_NAME,
        PathLib.home() / "node_modules" / ".bin" / CLI_NAME,
        PathLib.home() / ".yarn" / "bin" / CLI_NAME,
        PathLib.home() / ".claude" / "local" / CLI_NAME,
    ]


def find_cli() -> str:
    """Find the agent CLI binary.

    Raises:
        CLINotFoundError: If CLI cannot be found.
    """
    # Check system PATH first
    if cli := shutil.which(CLI_NAME):
        return cli

    for path in cli_locations():
        if path.exists() and path.is_file():
            return str(path)

    raise CLINotFoundError(
        "Claude CLI not found. Install with:\n"
        "  npm install -g @anthropic-ai/claude-code\n"
        "\nOr provide the path via ClaudeAgentOptions:\n"
        "  ClaudeAgentOptions(cli_path='/path/to/claude')"
    )


def parse_cli_version(output: str) -> str | None:
    """Extract the version number from ``claude --version`` output."""
    lines = output.strip().splitlines()
    if not lines:
        return None
    match = _VERSION_PATTERN.search(lines[0])
    return match.group(0) if match else None


async def check_cli_version(cli_path: str | PathLib | None = None) -> str:
    """Return the installed CLI version, warning when it is below MIN_CLI_VERSION.

    Raises:
        CLINotFoundError: If the executable does not exist.
        CLIConnectionError: If the version command cannot run or hangs.
    """
    path = str(cli_path) if cli_path is not None else find_cli()
    try:
        with anyio.fail_after(VERSION_CHECK_TIMEOUT_SEC):
            result = await anyio.run_process(
                [path, "--version"], input=b"", stderr=subprocess.DEVNULL, check=False
            )
    except TimeoutError as e:
        raise CLIConnectionError(
            f"CLI version check timed out after {VERSION_CHECK_TIMEOUT_SEC:.0f}s"
        ) from e
    except FileNotFoundError as e:
        raise CLINotFoundError(f"Claude CLI not found at: {path}") from e
    except OSError as e:
        raise CLIConnectionError(f"Failed to run CLI version check: {e}") from e

    version = parse_cli_version(result.stdout.decode("utf-8", errors="replace"))
    if version is None:
        return "unknown"
    try:
        outdated = Version(version) < Version(MIN_CLI_VERSION)
    except InvalidVersion:
        return version
    if outdated:
        logger.warning(
            f"[transport] CLI version {version} is below minimum required version {MIN_CLI_VERSION}",
            extra={"cli_path": path},
        )
    return version


def build_launch_spec(options: ClaudeAgentOptions) -> LaunchSpec:
    """Build the launch boundary for a streaming session.

    Only the flags the session engine depends on are emitted here; anything
    else can be passed through ``options.extra_args``.
    """
    cli_path = str(options.cli_path) if options.cli_path is not None else find_cli()

    args: list[str] = [
        "--output-format",
        "stream-json",
        "--input-format",
        "stream-json",
        "--verbose",
    ]

    if options.model:
        args.extend(["--model", options.model])
    if options.system_prompt:
        args.extend(["--system-prompt", options.system_prompt])
    if options.permission_mode:
        args.extend(["--permission-mode", options.permission_mode])
    if options.max_turns:
        args.extend(["--max-turns", str(options.max_turns)])
    if options.allowed_tools:
        args.extend(["--allowedTools", ",".join(options.allowed_tools)])
    if options.disallowed_tools:
        args.extend(["--disallowedTools", ",".join(options.disallowed_tools)])

    # Permission prompts travel over the control protocol when a callback is set
    if options.can_use_tool is not None:
        args.extend(["--permission-prompt-tool", "stdio"])
    elif options.permission_prompt_tool_name:
        args.extend(["--permission-prompt-tool", options.permission_prompt_tool_name])

    if options.mcp_servers:
        servers = {
            name: {"type": "sdk", "name": name} for name in options.mcp_servers
        }
        args.extend(["--mcp-config", json.dumps({"mcpServers": servers})])

    if options.include_partial_messages:
        args.append("--include-partial-messages")

    for flag, value in options.extra_args.items():
        args.append(f"--{flag}")
        if value is not None:
            args.append(str(value))

    env = {**options.env, "CLAUDE_CODE_ENTRYPOINT": SDK_ENTRYPOINT}
    cwd = str(options.cwd) if options.cwd else None
    return LaunchSpec(executable=cli_path, args=tuple(args), env=env, cwd=cwd)


class SubprocessCLITransport(Transport):
    """Stdio subprocess transport using anyio.

    Key features:
    - Byte-level line framing with a hard per-line size limit
    - Stderr drained into a bounded ring buffer, never mixed into stdout
    - Write lock so concurrent writers never interleave a line
    - Idempotent teardown: close stdin, terminate, wait, kill
    """

    def __init__(
        self,
        launch_spec: LaunchSpec,
        *,
        max_line_bytes: int | None = None,
        shutdown_grace: float | None = None,
        stderr: Callable[[str], None] | None = None,
    ):
        self._spec = launch_spec
        self._max_line_bytes = (
            max_line_bytes if max_line_bytes is not None else DEFAULT_MAX_LINE_BYTES
        )
        self._shutdown_grace = (
            shutdown_grace if shutdown_grace is not None else SHUTDOWN_GRACE_SEC
        )
        self._stderr_callback = stderr

        # Process and streams
        self._process: Process | None = None
        self._stdout: BufferedByteReceiveStream | None = None
        self._stderr_lines: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        # State tracking
        self._ready = False
        self._closed = False
        self._write_lock = anyio.Lock()

    @property
    def launch_spec(self) -> LaunchSpec:
        return self._spec

    @property
    def stderr_output(self) -> str:
        return "\n".join(self._stderr_lines)

    @property
    def exit_code(self) -> int | None:
        return self._process.returncode if self._process else None

    async def connect(self) -> None:
        """Start the subprocess.

        Raises:
            CLINotFoundError: If the executable does not exist.
            SpawnError: If the process fails to start for any other reason.
        """
        if self._closed:
            raise CLIConnectionError("Transport is closed")
        if self._process:
            return  # Already connected

        if not os.environ.get(SKIP_VERSION_CHECK_ENV):
            await self._check_version()

        cmd = self._spec.command
        cwd = self._spec.cwd
        process_env = {**os.environ, **self._spec.env}

        try:
            self._process = await anyio.open_process(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=process_env,
            )
        except FileNotFoundError as e:
            # Check if error is from CLI or working directory
            if cwd and not PathLib(cwd).exists():
                raise SpawnError(f"Working directory does not exist: {cwd}") from e
            raise CLINotFoundError(f"Claude CLI not found at: {self._spec.executable}") from e
        except OSError as e:
            raise SpawnError(f"Failed to start Claude CLI: {e}") from e

        if self._process.stdout:
            self._stdout = BufferedByteReceiveStream(self._process.stdout)

        self._ready = True
        logger.info(
            "[transport] Started CLI process",
            extra={"pid": self._process.pid, "command": cmd[0], "argc": len(cmd) - 1},
        )

    async def _check_version(self) -> None:
        try:
            version = await check_cli_version(self._spec.executable)
        except ClaudeSDKError as e:
            # Spawning reports a missing or broken executable properly
            logger.debug(f"[transport] CLI version check failed: {e}")
            return
        logger.debug("[transport] CLI version", extra={"version": version})

    async def drain_stderr(self) -> None:
        """Collect stderr lines into the ring buffer until the pipe closes.

        Run by the owner in its task group so teardown never depends on the
        task that connected.
        """
        if not self._process or not self._process.stderr:
            return
        pending = ""
        try:
            async for chunk in TextReceiveStream(self._process.stderr, errors="replace"):
                pending += chunk
                *lines, pending = pending.split("\n")
                for line in lines:
                    self._record_stderr(line)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            pass  # Stream closed
        if pending:
            self._record_stderr(pending)

    def _record_stderr(self, line: str) -> None:
        line = line.rstrip()
        if not line:
            return
        self._stderr_lines.append(line)
        if self._stderr_callback:
            try:
                self._stderr_callback(line)
            except Exception:
                logger.exception("[transport] stderr callback failed")
        logger.debug(f"[CLI stderr] {line}")

    async def write(self, data: str) -> None:
        """Write one line to the subprocess stdin.

        Raises:
            CLIBrokenPipeError: If the process has exited or the pipe broke.
            CLIConnectionError: If the transport was never connected.
        """
        async with self._write_lock:
            # All checks inside lock to prevent TOCTOU races
            if self._process is None or self._process.stdin is None:
                raise CLIConnectionError("Transport not ready for writing")

            if self._process.returncode is not None:
                raise CLIBrokenPipeError(
                    f"Cannot write to terminated process (exit code: {self._process.returncode})",
                    stderr=self.stderr_output,
                )

            if not self._ready:
                raise CLIBrokenPipeError("Cannot write after input was closed")

            try:
                await self._process.stdin.send(data.encode("utf-8"))
            except (
                anyio.BrokenResourceError,
                anyio.ClosedResourceError,
                BrokenPipeError,
                ConnectionResetError,
            ) as e:
                self._ready = False
                raise CLIBrokenPipeError(
                    f"Failed to write to process: {e}", stderr=self.stderr_output
                ) from e

    async def end_input(self) -> None:
        """End the input stream by closing stdin."""
        async with self._write_lock:
            self._ready = False
            if self._process and self._process.stdin:
                with suppress(anyio.BrokenResourceError, anyio.ClosedResourceError, OSError):
                    await self._process.stdin.aclose()

    def read_lines(self) -> AsyncIterator[str]:
        """Read newline-framed lines from stdout.

        Raises:
            DecodeFramingError: If a line exceeds ``max_line_bytes``.
        """
        return self._read_lines_impl()

    async def _read_lines_impl(self) -> AsyncIterator[str]:
        if not self._process or not self._stdout:
            raise CLIConnectionError("Not connected")

        stdout = self._stdout
        while True:
            try:
                raw = await stdout.receive_until(b"\n", self._max_line_bytes)
            except anyio.DelimiterNotFound as e:
                raise DecodeFramingError(len(stdout.buffer), self._max_line_bytes) from e
            except anyio.IncompleteRead:
                # EOF; the peer may have omitted the final newline
                raw = bytes(stdout.buffer)
                if raw.strip():
                    yield raw.decode("utf-8", errors="replace").strip()
                return
            except (anyio.EndOfStream, anyio.ClosedResourceError, anyio.BrokenResourceError):
                return

            # receive_until only bounds the search; a line already buffered
            # in one chunk comes back whole regardless of its size
            if len(raw) > self._max_line_bytes:
                raise DecodeFramingError(len(raw), self._max_line_bytes)

            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                yield line

    async def close(self) -> None:
        """Terminate the subprocess and release all resources."""
        if self._closed:
            return
        self._closed = True

        if not self._process:
            self._ready = False
            return

        process = self._process
        with anyio.CancelScope(shield=True):
            await self.end_input()

            if process.returncode is None:
                with suppress(ProcessLookupError):
                    process.terminate()
                with anyio.move_on_after(self._shutdown_grace):
                    await process.wait()

            if process.returncode is None:
                logger.warning(
                    "[transport] CLI did not exit within grace period, killing",
                    extra={"pid": process.pid, "grace": self._shutdown_grace},
                )
                with suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

            with suppress(Exception):
                await process.aclose()

        logger.debug(
            "[transport] CLI process closed",
            extra={"pid": process.pid, "returncode": process.returncode},
        )

    def is_ready(self) -> bool:
        return (
            self._ready
            and self._process is not None
            and self._process.returncode is None
        )


__all__ = [
    "MIN_CLI_VERSION",
    "SubprocessCLITransport",
    "build_launch_spec",
    "check_cli_version",
    "cli_locations",
    "find_cli",
    "parse_cli_version",
]
