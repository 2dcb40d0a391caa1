"""Lenor command line entry point.

Inspect and manage the locally cached conversations of a user.
"""

from __future__ import annotations

import asyncio
import logging
import logging.config
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable

import click
from rich.console import Console
from rich.table import Table

from .config import LenorConfig
from .factory import LenorRuntime, create_runtime

logger = logging.getLogger(__name__)

# Rich console for output
console = Console()


def _load_config(config_path: str | None) -> LenorConfig:
    if config_path:
        return LenorConfig.load(yaml_path=Path(config_path))
    return LenorConfig.load()


def _run(ctx: click.Context, action: Callable[[LenorRuntime], Awaitable[None]]) -> None:
    """Build a runtime, run one action against it, and shut it down."""
    config: LenorConfig = ctx.obj["config"]

    async def run_action() -> None:
        runtime = await create_runtime(config, start_polling=False)
        try:
            await action(runtime)
        finally:
            await runtime.close()

    try:
        asyncio.run(run_action())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        logger.exception("Command failed")
        sys.exit(1)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Path to YAML config file",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable verbose/debug logging",
)
@click.pass_context
def main(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """
    Lenor: conversation memory for a chat assistant.

    Lists, shows, creates and deletes the conversations kept in the
    local cache.
    """
    try:
        lenor_config = _load_config(config)
    except Exception as e:
        console.print(f"[red]Failed to load configuration: {e}[/red]")
        sys.exit(1)

    logging.config.dictConfig(lenor_config.get_log_config())
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")

    logger.info(f"Loaded configuration for {lenor_config.name}")
    ctx.ensure_object(dict)
    ctx.obj["config"] = lenor_config


@main.command()
@click.argument("user_id")
@click.pass_context
def conversations(ctx: click.Context, user_id: str) -> None:
    """List a user's conversations, most recent first."""

    async def action(runtime: LenorRuntime) -> None:
        summaries = await runtime.directory.list(user_id)
        if not summaries:
            console.print("[yellow]No conversations yet[/yellow]")
            return

        current = await runtime.cache.get_current_conversation(user_id)

        table = Table(title=f"Conversations of {user_id}")
        table.add_column("ID", style="cyan")
        table.add_column("Last Activity")
        table.add_column("Messages", justify="right")
        table.add_column("Last Message")

        for summary in summaries:
            marker = " *" if summary.id == current else ""
            table.add_row(
                summary.id + marker,
                datetime.fromtimestamp(summary.timestamp).strftime("%Y-%m-%d %H:%M"),
                str(summary.message_count),
                summary.last_message[:60],
            )

        console.print(table)

    _run(ctx, action)


@main.command()
@click.argument("user_id")
@click.option("--conversation", "conversation_id", help="Conversation to show (default: current)")
@click.option("--page", default=0, type=click.IntRange(min=0), help="Older pages to include")
@click.pass_context
def history(ctx: click.Context, user_id: str, conversation_id: str | None, page: int) -> None:
    """Show the messages of a conversation."""

    async def action(runtime: LenorRuntime) -> None:
        store = runtime.store
        await store.set_current_user(user_id)
        if conversation_id:
            await store.set_current_conversation(conversation_id)

        for _ in range(page):
            if not await store.load_next_page():
                break

        if store.last_error is not None:
            console.print(f"[red]Failed to load history: {store.last_error}[/red]")
            return

        messages = list(reversed(store.get_messages()))
        if not messages:
            console.print("[yellow]No messages[/yellow]")
            return

        for message in messages:
            who = "[bold green]You[/bold green]" if message.is_user else f"[bold cyan]{runtime.config.name}[/bold cyan]"
            console.print(f"[dim]{message.timestamp}[/dim] {who}: {message.text}")

        info = store.get_pagination_info()
        if info.has_more:
            console.print(f"[dim]Older messages available (--page {info.current_page + 1})[/dim]")

    _run(ctx, action)


@main.command()
@click.argument("user_id")
@click.pass_context
def new(ctx: click.Context, user_id: str) -> None:
    """Start a new conversation and make it current."""

    async def action(runtime: LenorRuntime) -> None:
        conversation_id = await runtime.directory.create(user_id)
        console.print(f"[green]✓[/green] Started conversation {conversation_id}")

    _run(ctx, action)


@main.command()
@click.argument("user_id")
@click.argument("conversation_id")
@click.pass_context
def delete(ctx: click.Context, user_id: str, conversation_id: str) -> None:
    """Delete a conversation from the local cache."""

    async def action(runtime: LenorRuntime) -> None:
        replacement = await runtime.directory.delete(user_id, conversation_id)
        console.print(f"[green]✓[/green] Deleted conversation {conversation_id}")
        if replacement:
            console.print(f"[dim]Current conversation is now {replacement}[/dim]")

    _run(ctx, action)


@main.command()
@click.argument("user_id")
@click.pass_context
def debug(ctx: click.Context, user_id: str) -> None:
    """Show the store state after loading a user's current conversation."""

    async def action(runtime: LenorRuntime) -> None:
        await runtime.store.set_current_user(user_id)
        info: dict[str, Any] = runtime.store.get_debug_info()

        table = Table(title="Store State")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")

        for key, value in info.items():
            table.add_row(key, str(value))

        console.print(table)

    _run(ctx, action)


if __name__ == "__main__":
    main()
