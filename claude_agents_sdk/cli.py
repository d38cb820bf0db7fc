"""Debugging command line: run one prompt and render the streamed messages.

    python -m claude_agents_sdk "What files are in this directory?"
"""

from __future__ import annotations

import json
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Optional

import anyio
import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from claude_agents_sdk import __version__
from claude_agents_sdk._errors import ClaudeSDKError
from claude_agents_sdk.client import query
from claude_agents_sdk.types import (
    AssistantMessage,
    ClaudeAgentOptions,
    ErrorMessage,
    Message,
    PermissionPolicy,
    ResultMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)
from claude_agents_sdk.utils.log import configure_logging, get_logger

console = Console()
logger = get_logger(__name__)

PERMISSION_MODES = ["default", "acceptEdits", "plan", "bypassPermissions"]


def _preview(value: Any, limit: int = 200) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= limit else text[:limit] + "..."


def render_message(message: Message, target: Console = console) -> None:
    """Print one message in a human-friendly form."""
    if isinstance(message, AssistantMessage):
        for block in message.content:
            if isinstance(block, TextBlock):
                target.print(escape(block.text))
            elif isinstance(block, ThinkingBlock):
                target.print(f"[dim italic]{escape(_preview(block.thinking))}[/dim italic]")
            elif isinstance(block, ToolUseBlock):
                target.print(
                    Panel(
                        escape(_preview(block.input)),
                        title=f"[cyan]{escape(block.name)}[/cyan]",
                        subtitle=block.id,
                        expand=False,
                    )
                )
    elif isinstance(message, UserMessage):
        if isinstance(message.content, str):
            return
        for block in message.content:
            if isinstance(block, ToolResultBlock):
                style = "red" if block.is_error else "green"
                target.print(f"[{style}]<- {escape(_preview(block.content))}[/{style}]")
    elif isinstance(message, SystemMessage):
        if message.is_init:
            target.print(
                f"[dim]session {message.data.get('session_id', '?')} "
                f"model {message.data.get('model', '?')}[/dim]"
            )
        else:
            target.print(f"[dim]system/{escape(message.subtype)}[/dim]")
    elif isinstance(message, ResultMessage):
        target.print(_result_table(message))
    elif isinstance(message, ErrorMessage):
        target.print(f"[red]error: {escape(message.error)}[/red]")
    else:
        target.print(f"[dim]{escape(type(message).__name__)}[/dim]")


def _result_table(message: ResultMessage) -> Table:
    table = Table(title="Result", show_header=False, expand=False)
    table.add_column("field", style="bold")
    table.add_column("value")
    table.add_row("status", "[red]error[/red]" if message.is_error else "[green]success[/green]")
    table.add_row("turns", str(message.num_turns))
    table.add_row("duration", f"{message.duration_ms} ms")
    if message.stop_reason:
        table.add_row("stop reason", message.stop_reason)
    cost = message.cost
    table.add_row("tokens", f"{cost.input_tokens} in / {cost.output_tokens} out")
    if message.total_cost_usd is not None:
        table.add_row("cost", f"${message.total_cost_usd:.4f}")
    return table


def _as_json(message: Message) -> str:
    payload = asdict(message) if is_dataclass(message) else {"value": str(message)}
    payload["message_type"] = type(message).__name__
    return json.dumps(payload, default=str)


async def run_prompt(prompt: str, options: ClaudeAgentOptions, raw: bool) -> int:
    """Stream one prompt to the console. Returns a process exit code."""
    exit_code = 0
    async with query(prompt=prompt, options=options) as stream:
        async for message in stream:
            if raw:
                click.echo(_as_json(message))
            else:
                render_message(message)
            if isinstance(message, ResultMessage) and message.is_error:
                exit_code = 1
    return exit_code


@click.command()
@click.version_option(version=__version__)
@click.argument("prompt")
@click.option("--cli-path", type=click.Path(dir_okay=False), help="Path to the agent CLI binary")
@click.option("--cwd", type=click.Path(exists=True, file_okay=False), help="Working directory")
@click.option("--model", type=str, help="Model to use")
@click.option(
    "--permission-mode",
    type=click.Choice(PERMISSION_MODES),
    help="Permission mode forwarded to the CLI",
)
@click.option(
    "--policy",
    type=click.Choice([policy.value for policy in PermissionPolicy]),
    help="Static tool permission policy",
)
@click.option("--max-turns", type=int, help="Maximum agent turns")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write debug logs here")
@click.option("--raw", is_flag=True, help="Print each message as one JSON line")
def cli(
    prompt: str,
    cli_path: Optional[str],
    cwd: Optional[str],
    model: Optional[str],
    permission_mode: Optional[str],
    policy: Optional[str],
    max_turns: Optional[int],
    log_level: str,
    log_file: Optional[str],
    raw: bool,
) -> None:
    """Run PROMPT through the agent CLI and show the streamed messages."""
    configure_logging(log_level, Path(log_file) if log_file else None)
    options = ClaudeAgentOptions(
        cli_path=cli_path,
        cwd=cwd,
        model=model,
        permission_mode=permission_mode,  # type: ignore[arg-type]
        permission_policy=PermissionPolicy(policy) if policy else None,
        max_turns=max_turns,
    )
    logger.debug(
        "[cli] Running prompt",
        extra={"model": model, "permission_mode": permission_mode, "policy": policy},
    )
    try:
        exit_code = anyio.run(run_prompt, prompt, options, raw)
    except ClaudeSDKError as e:
        console.print(f"[red]{type(e).__name__}: {escape(str(e))}[/red]")
        sys.exit(1)
    sys.exit(exit_code)


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


__all__ = ["cli", "main", "render_message", "run_prompt"]
