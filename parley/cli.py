"""Parley CLI: Typer + Rich terminal interface.

Commands: (none) starts the chat REPL; conversations, prompts, config.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

# Ensure stdout/stderr use UTF-8 on Windows so Rich can render the
# prompt and table glyphs through a legacy codepage console.
if sys.platform == "win32":
    for _stream_name in ("stdout", "stderr"):
        _stream = getattr(sys, _stream_name, None)
        if _stream and hasattr(_stream, "reconfigure"):
            try:
                _stream.reconfigure(encoding="utf-8")
            except (OSError, ValueError):
                pass

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from parley import __version__
from parley.cli_display import (
    config_table,
    conversations_table,
    prompts_table,
    render_history,
)
from parley.config import ENV_KEYS, load_config, save_config, update_config
from parley.config import config_path as user_config_path
from parley.errors import NotFoundError, StoreError
from parley.schemas.config import ClientConfig

console = Console()

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="parley",
    help="Streaming chat client for OpenAI-compatible endpoints.",
    no_args_is_help=False,
    rich_markup_mode="rich",
)

conversations_app = typer.Typer(
    name="conversations",
    help="Browse and manage saved conversations.",
    no_args_is_help=True,
)
app.add_typer(conversations_app, name="conversations")

prompts_app = typer.Typer(
    name="prompts",
    help="List system prompts.",
    no_args_is_help=True,
)
app.add_typer(prompts_app, name="prompts")

config_app = typer.Typer(
    name="config",
    help="Show and change client configuration.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"parley {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose)],
        force=True,
    )
    # litellm is chatty at DEBUG; keep it at INFO even in verbose mode
    logging.getLogger("LiteLLM").setLevel(logging.INFO if verbose else logging.WARNING)


# ── App Callback ────────────────────────────────────────────────


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log debug output to stderr.",
    ),
) -> None:
    """Parley: chat with an OpenAI-compatible model from the terminal."""
    _configure_logging(verbose)
    if ctx.invoked_subcommand is None:
        from parley.repl import ParleyREPL

        ParleyREPL(_load_config(), console=console).run()


# ── Helpers ──────────────────────────────────────────────────────


def _load_config() -> ClientConfig:
    """Load client config, exit on error."""
    try:
        return load_config()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None


def _with_store(config: ClientConfig, action):
    """Open the database, run ``action(store)`` and close it again.

    Exits 1 if the database cannot be opened.
    """
    from parley.persistence.database import close_db, init_db
    from parley.persistence.store import ConversationStore

    async def _run():
        db = await init_db(config.db_path)
        try:
            return await action(ConversationStore(db))
        finally:
            await close_db(db)

    try:
        return asyncio.run(_run())
    except NotFoundError as e:
        console.print(f"[red]Not found:[/red] {e}")
        raise typer.Exit(1) from None
    except StoreError as e:
        console.print(f"[red]Database error:[/red] {e}")
        raise typer.Exit(1) from None


async def _resolve(store, prefix: str) -> str:
    conversation_id = await store.resolve_conversation_id(prefix)
    if conversation_id is None:
        raise NotFoundError(f"Conversation not found: {prefix}")
    return conversation_id


# ── parley conversations ─────────────────────────────────────────


@conversations_app.command("list")
def conversations_list(
    limit: int = typer.Option(20, "--limit", "-n", help="Max conversations to show"),
) -> None:
    """Show recent conversations, newest first."""
    config = _load_config()

    async def _list(store):
        return await store.list_conversations(limit=limit)

    summaries = _with_store(config, _list)

    if not summaries:
        console.print("[dim]No conversations found.[/dim]")
        return

    console.print(conversations_table(summaries))


@conversations_app.command("show")
def conversations_show(
    conversation_id: str = typer.Argument(..., help="Conversation ID or prefix (min 4 chars)"),
) -> None:
    """Show a conversation's metadata and turns."""
    config = _load_config()

    async def _get(store):
        full_id = await _resolve(store, conversation_id)
        return await store.get_conversation(full_id), await store.get_turns(full_id)

    conversation, turns = _with_store(config, _get)

    meta = Table(title=f"Conversation: {conversation.id}", show_header=False, show_lines=True)
    meta.add_column("Field", style="bold")
    meta.add_column("Value")
    meta.add_row("Title", conversation.title)
    meta.add_row("Model", conversation.model)
    meta.add_row("Created", conversation.created_at.isoformat())
    meta.add_row("Turns", str(len(turns)))
    console.print(meta)
    console.print()

    render_history(console, turns, conversation.system_prompt)


@conversations_app.command("export")
def conversations_export(
    conversation_id: str = typer.Argument(..., help="Conversation ID or prefix (min 4 chars)"),
    fmt: str = typer.Option(
        "markdown", "--format", "-f",
        help="Export format: json or markdown",
    ),
    output: Path = typer.Option(
        None, "--output", "-o",
        help="Write to this file instead of stdout",
    ),
) -> None:
    """Export a conversation as JSON or Markdown."""
    from parley.persistence.export import export_json, export_markdown
    from parley.schemas.conversation import ConversationRecord

    if fmt not in ("json", "markdown"):
        console.print(f"[red]Invalid format:[/red] '{fmt}'. Choose json or markdown.")
        raise typer.Exit(1) from None

    config = _load_config()

    async def _get(store):
        full_id = await _resolve(store, conversation_id)
        return ConversationRecord(
            conversation=await store.get_conversation(full_id),
            turns=await store.get_turns(full_id),
        )

    record = _with_store(config, _get)

    if fmt == "json":
        content = export_json(record)
    else:
        content = export_markdown(record.turns, record.conversation.system_prompt)

    if output is None:
        # Plain print: export text must not be re-wrapped or highlighted
        typer.echo(content, nl=False)
        return

    try:
        output.write_text(content, encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Export failed:[/red] {e}")
        raise typer.Exit(1) from None
    console.print(f"[green]Exported to[/green] {output}")


@conversations_app.command("delete")
def conversations_delete(
    conversation_id: str = typer.Argument(..., help="Conversation ID or prefix (min 4 chars)"),
    yes: bool = typer.Option(
        False, "--yes", "-y",
        help="Skip confirmation prompt",
    ),
) -> None:
    """Delete a conversation and all of its turns."""
    if not yes:
        confirm = typer.confirm(
            f"Delete conversation {conversation_id}? This cannot be undone."
        )
        if not confirm:
            console.print("[dim]Cancelled.[/dim]")
            return

    config = _load_config()

    async def _delete(store):
        full_id = await _resolve(store, conversation_id)
        await store.delete_conversation(full_id)
        return full_id

    deleted = _with_store(config, _delete)
    console.print(f"[green]Conversation deleted:[/green] {deleted}")


# ── parley prompts ───────────────────────────────────────────────


@prompts_app.command("list")
def prompts_list() -> None:
    """Show the available system prompts."""
    config = _load_config()

    async def _list(store):
        return await store.list_system_prompts()

    prompts = _with_store(config, _list)
    console.print(prompts_table(prompts, config.system_prompt))


# ── parley config ────────────────────────────────────────────────


@config_app.command("show")
def config_show() -> None:
    """Show the effective client configuration (API key masked)."""
    console.print(config_table(_load_config()))


@config_app.command("path")
def config_path() -> None:
    """Show configuration file locations."""
    files = [
        ("Defaults", Path(__file__).parent / "config" / "defaults.toml"),
        ("User Settings", user_config_path()),
    ]

    table = Table(title="Configuration Paths", show_header=False)
    table.add_column("Config", style="bold")
    table.add_column("Path")
    table.add_column("Status")

    for name, path in files:
        exists = path.exists()
        status = "[green]found[/green]" if exists else "[red]missing[/red]"
        table.add_row(name, str(path), status)

    console.print(table)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help=f"Setting name: {', '.join(ENV_KEYS)}"),
    value: str = typer.Argument(..., help="New value"),
) -> None:
    """Change a setting and save it to the user settings file."""
    config = _load_config()
    key = key.lower()

    try:
        updated = update_config(config, key, value)
    except KeyError:
        console.print(
            f"[red]Unknown setting:[/red] '{key}'. Choose from {', '.join(ENV_KEYS)}."
        )
        raise typer.Exit(1) from None
    except ValueError as e:
        console.print(f"[red]Invalid value for {key}:[/red] {e}")
        raise typer.Exit(1) from None

    try:
        path = save_config(updated)
    except StoreError as e:
        console.print(f"[red]Save failed:[/red] {e}")
        raise typer.Exit(1) from None
    shown = updated.masked_api_key() if key == "api_key" else value
    console.print(f"[green]{ENV_KEYS[key]}[/green] set to {shown} ({path})")
