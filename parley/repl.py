"""Interactive REPL for Parley.

Reads user input, dispatches slash commands and submits everything else
to the StreamCoordinator. Launch with `parley` (no subcommand).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Callable
from pathlib import Path

import aiosqlite
from rich.console import Console
from rich.text import Text

from parley.cli_display import (
    BRAND,
    RichSink,
    config_table,
    conversations_table,
    print_error,
    print_system,
    prompts_table,
    render_header,
    render_history,
)
from parley.config import ENV_KEYS, load_config, save_config, update_config
from parley.coordinator import StreamCoordinator
from parley.errors import NotFoundError, ParleyError, StoreError, ValidationError
from parley.persistence.database import close_db, init_db
from parley.persistence.export import write_export
from parley.persistence.store import ConversationStore
from parley.providers.base import TransportClient
from parley.providers.litellm_provider import LiteLLMTransport
from parley.schemas.config import ClientConfig

logger = logging.getLogger(__name__)

console = Console()

# Slash commands recognised by the REPL
_COMMANDS = {
    "/read", "/clear", "/config", "/save", "/export", "/help",
    "/new", "/history", "/load", "/delete", "/prompts", "/prompt", "/set",
    "/exit", "/quit",
}

# Settings that /set may change at runtime
_SETTABLE = ("base_url", "model", "api_key", "provider", "timeout")

_HISTORY_LIMIT = 20

TransportFactory = Callable[[ClientConfig], TransportClient]


class ParleyREPL:
    """Interactive chat loop.

    Owns the single asyncio event loop: the database connection, the
    coordinator's owner loop and the stream worker all run on it.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        console: Console | None = None,
        transport_factory: TransportFactory = LiteLLMTransport,
        config_file: Path | None = None,
    ) -> None:
        self.config = config or load_config()
        self._console = console or globals()["console"]
        self._transport_factory = transport_factory
        self._config_file = config_file
        self._sink = RichSink(self._console)
        self._db: aiosqlite.Connection | None = None
        self._store: ConversationStore | None = None
        self._coordinator: StreamCoordinator | None = None

    @property
    def coordinator(self) -> StreamCoordinator:
        if self._coordinator is None:
            raise RuntimeError("REPL is not open")
        return self._coordinator

    @property
    def store(self) -> ConversationStore:
        if self._store is None:
            raise RuntimeError("REPL is not open")
        return self._store

    # ── Lifecycle ─────────────────────────────────────────────

    def run(self) -> None:
        """Main REPL loop.

        Uses a dedicated event loop rather than asyncio.run() so Ctrl+C at
        the prompt raises KeyboardInterrupt immediately instead of being
        converted into task cancellation.
        """
        loop = asyncio.new_event_loop()
        main = loop.create_task(self._main())
        try:
            loop.run_until_complete(main)
        except KeyboardInterrupt:
            # Interrupted mid-command: unwind _main so its cleanup runs
            if not main.done():
                main.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    loop.run_until_complete(main)
            loop.run_until_complete(self.close())
        finally:
            loop.close()

    async def open(self) -> None:
        """Open the database and build the coordinator.

        Raises:
            StoreError: If the database cannot be opened.
        """
        self._db = await init_db(self.config.db_path)
        self._store = ConversationStore(self._db)
        self._coordinator = StreamCoordinator(
            self._store,
            self._transport_factory(self.config),
            self._sink,
            model=self.config.model,
            system_prompt=self.config.system_prompt,
        )

    async def close(self) -> None:
        if self._db is not None:
            await close_db(self._db)
            self._db = None

    async def _main(self) -> None:
        try:
            await self.open()
        except StoreError as e:
            print_error(self._console, e)
            raise SystemExit(1) from None

        render_header(self._console, self.config)
        try:
            while True:
                try:
                    prompt_text = Text()
                    prompt_text.append("\nyou", style=BRAND["user"])
                    prompt_text.append(" ▸ ", style=BRAND["accent"])
                    user_input = self._console.input(prompt_text).strip()
                except (KeyboardInterrupt, EOFError):
                    break

                if not user_input:
                    continue

                try:
                    await self._dispatch(user_input)
                except EOFError:
                    break
        finally:
            self._console.print(f"\n[{BRAND['dim']}]Goodbye.[/{BRAND['dim']}]")
            await self.close()

    # ── Dispatch ──────────────────────────────────────────────

    async def _dispatch(self, user_input: str) -> None:
        """Dispatch a user input line to the appropriate handler."""
        if user_input.startswith("/"):
            await self._handle_command(user_input)
            return
        await self._submit(user_input)

    async def _handle_command(self, user_input: str) -> None:
        parts = user_input.split(None, 1)
        command = parts[0].lower()
        args = parts[1].strip() if len(parts) > 1 else ""

        if command in ("/exit", "/quit"):
            raise EOFError

        if command not in _COMMANDS:
            print_system(
                self._console, f"Unknown command: {command}. Type /help for list.",
            )
            return

        try:
            if command == "/help":
                self._show_help()
            elif command == "/read":
                await self._read_file(args)
            elif command == "/clear":
                self._clear()
            elif command == "/config":
                self._console.print(config_table(self.config, self.coordinator.system_prompt))
            elif command in ("/save", "/export"):
                self._export(args)
            elif command == "/new":
                self.coordinator.new_conversation()
                print_system(self._console, "Started a new conversation.")
            elif command == "/history":
                await self._show_history()
            elif command == "/load":
                await self._load(args)
            elif command == "/delete":
                await self._delete(args)
            elif command == "/prompts":
                await self._show_prompts()
            elif command == "/prompt":
                await self._choose_prompt(args)
            elif command == "/set":
                self._set(args)
        except ValidationError as e:
            print_system(self._console, str(e))
        except ParleyError as e:
            print_error(self._console, e)

    async def _submit(self, text: str) -> None:
        """Submit a message; Ctrl+C cancels the reply while it streams."""
        loop = asyncio.get_running_loop()
        interrupt_bound = _bind_interrupt(loop, self.coordinator.cancel)
        try:
            await self.coordinator.submit(text)
        except ParleyError as e:
            print_error(self._console, e)
        finally:
            if interrupt_bound:
                loop.remove_signal_handler(signal.SIGINT)

    # ── Command handlers ──────────────────────────────────────

    def _show_help(self) -> None:
        """Show available REPL commands."""
        g = BRAND["accent"]
        help_text = Text()
        help_text.append("\n  Chat\n", style="bold")
        help_text.append("    <message>            ", style=g)
        help_text.append("  Send a message (Ctrl+C cancels the reply)\n")
        help_text.append("    /read <path>         ", style=g)
        help_text.append("  Import a file as a message without sending\n")
        help_text.append("    /clear               ", style=g)
        help_text.append("  Clear the screen and start a new conversation\n")
        help_text.append("    /new                 ", style=g)
        help_text.append("  Start a new conversation\n")
        help_text.append("    /save [path]         ", style=g)
        help_text.append("  Save the conversation as Markdown (alias /export)\n")

        help_text.append("\n  History\n", style="bold")
        help_text.append("    /history             ", style=g)
        help_text.append("  List saved conversations\n")
        help_text.append("    /load <id>           ", style=g)
        help_text.append("  Continue a saved conversation\n")
        help_text.append("    /delete <id>         ", style=g)
        help_text.append("  Delete a saved conversation\n")

        help_text.append("\n  Settings\n", style="bold")
        help_text.append("    /prompts             ", style=g)
        help_text.append("  List system prompts\n")
        help_text.append("    /prompt <name>       ", style=g)
        help_text.append("  Use a system prompt\n")
        help_text.append("    /config              ", style=g)
        help_text.append("  Show current config\n")
        help_text.append("    /set <key> <value>   ", style=g)
        help_text.append(f"  Change a setting ({', '.join(_SETTABLE)})\n")
        help_text.append("    /help                ", style=g)
        help_text.append("  Show this help\n")
        help_text.append("    /exit                ", style=g)
        help_text.append("  Exit Parley\n")

        self._console.print(help_text)

    async def _read_file(self, path: str) -> None:
        turn = await self.coordinator.import_file(path)
        if turn is not None:
            print_system(
                self._console,
                f"Imported {path}. It will be sent with your next message.",
            )

    def _clear(self) -> None:
        self.coordinator.clear()
        self._console.clear()
        print_system(
            self._console,
            "Chat display cleared. Your next message starts a new conversation.",
        )

    def _export(self, path: str) -> None:
        written = write_export(
            self.coordinator.turns,
            path or None,
            system_prompt=self.coordinator.system_prompt,
        )
        print_system(self._console, f"History saved to {written}")

    async def _show_history(self) -> None:
        summaries = await self.store.list_conversations(limit=_HISTORY_LIMIT)
        if not summaries:
            print_system(self._console, "No conversations yet.")
            return
        self._console.print(conversations_table(summaries))

    async def _resolve(self, prefix: str, usage: str) -> str:
        if not prefix:
            raise ValidationError(usage)
        conversation_id = await self.store.resolve_conversation_id(prefix)
        if conversation_id is None:
            raise NotFoundError(f"Conversation not found: {prefix}")
        return conversation_id

    async def _load(self, prefix: str) -> None:
        conversation_id = await self._resolve(prefix, "Usage: /load <id>")
        conversation = await self.coordinator.load_conversation(conversation_id)
        self._console.clear()
        render_history(
            self._console, self.coordinator.turns, conversation.system_prompt,
        )
        print_system(self._console, f"Loaded conversation: {conversation.title}")

    async def _delete(self, prefix: str) -> None:
        conversation_id = await self._resolve(prefix, "Usage: /delete <id>")
        if conversation_id == self.coordinator.conversation_id:
            self.coordinator.new_conversation()
        await self.store.delete_conversation(conversation_id)
        print_system(self._console, f"Conversation deleted: {conversation_id}")

    async def _show_prompts(self) -> None:
        prompts = await self.store.list_system_prompts()
        self._console.print(prompts_table(prompts, self.coordinator.system_prompt))

    async def _choose_prompt(self, name: str) -> None:
        if not name:
            raise ValidationError("Usage: /prompt <name>")
        prompt = await self.store.get_system_prompt(name)
        self.coordinator.set_system_prompt(prompt.content)
        print_system(self._console, f"System prompt set to: {prompt.name}")

    def _set(self, args: str) -> None:
        """Change one setting, persist it and rebuild the transport."""
        key, _, value = args.partition(" ")
        key = key.strip().lower()
        value = value.strip()
        if key not in _SETTABLE or not value:
            raise ValidationError(f"Usage: /set <{'|'.join(_SETTABLE)}> <value>")

        try:
            updated = update_config(self.config, key, value)
        except (KeyError, ValueError) as e:
            raise ValidationError(f"Invalid value for {key}: {value}") from e

        # Only a saved change is applied to the running session
        save_config(updated, self._config_file)
        self.coordinator.replace_transport(
            self._transport_factory(updated), model=updated.model,
        )
        self.config = updated
        shown = updated.masked_api_key() if key == "api_key" else value
        print_system(self._console, f"{ENV_KEYS[key]} set to {shown}")


def _bind_interrupt(loop: asyncio.AbstractEventLoop, callback: Callable[[], object]) -> bool:
    """Route SIGINT to ``callback`` while a reply streams.

    Returns False where the loop cannot install signal handlers (Windows,
    non-main threads); Ctrl+C then keeps its default behaviour.
    """
    try:
        loop.add_signal_handler(signal.SIGINT, callback)
    except (NotImplementedError, RuntimeError, ValueError):
        logger.debug("SIGINT cancellation unavailable on this platform")
        return False
    return True
