"""Terminal display components for Parley.

Provides the branded header, Rich renderers for turns, conversation and
prompt listings, and RichSink: the PresentationSink that renders a
streaming reply live as Markdown.
"""

from __future__ import annotations

from collections.abc import Iterable

from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from parley import __version__
from parley.errors import ParleyError, TransportError
from parley.schemas.config import ClientConfig
from parley.schemas.conversation import ConversationSummary, Role, SystemPrompt, Turn

# ── Brand Colors ──────────────────────────────────────────────────

BRAND = {
    "user": "#b48ead",
    "assistant": "#00ff88",
    "system": "#ff4444",
    "accent": "#88c0d0",
    "dim": "#6a8a6a",
    "amber": "#ffaa00",
    "red": "#ff4444",
}

_ROLE_STYLE: dict[Role, str] = {
    Role.USER: BRAND["user"],
    Role.ASSISTANT: BRAND["assistant"],
    Role.SYSTEM: BRAND["dim"],
}

HEADER_TEMPLATE = "parley v{version}  ·  {model}"


def render_header(console: Console, config: ClientConfig) -> None:
    """Print the compact welcome banner with the active model."""
    title = Text(
        HEADER_TEMPLATE.format(version=__version__, model=config.model),
        style=f"bold {BRAND['accent']}",
    )
    hint = Text(
        "Type a message to chat · /help for commands · Ctrl+C cancels a reply",
        style=BRAND["dim"],
    )
    body = Text()
    body.append_text(title)
    body.append("\n")
    body.append_text(hint)
    console.print(Panel(body, border_style="dim", expand=True, padding=(0, 1)))


def render_role(console: Console, role: Role | str) -> None:
    """Print the bold, color-coded role header for a turn."""
    role = Role(role)
    console.print(Text(role.value.upper(), style=f"bold {_ROLE_STYLE[role]}"))


def render_turn(console: Console, turn: Turn) -> None:
    """Print a committed turn: role header then Markdown body."""
    render_role(console, turn.role)
    console.print(Markdown(turn.content))
    console.print()


def render_history(
    console: Console, turns: Iterable[Turn], system_prompt: str = "",
) -> None:
    """Re-render a whole conversation (used after /load)."""
    if system_prompt:
        console.print(Text(f"System Prompt: {system_prompt}", style=f"italic {BRAND['dim']}"))
        console.print()
    for turn in turns:
        render_turn(console, turn)


def print_system(console: Console, message: str) -> None:
    """Print a client-side notice (never part of the conversation)."""
    console.print(Text("SYSTEM", style=f"bold {BRAND['system']}"))
    console.print(message, markup=False, highlight=False)
    console.print()


def print_error(console: Console, error: BaseException) -> None:
    """Print a one-line, human-readable failure message."""
    label = "API Error" if isinstance(error, TransportError) else "Error"
    console.print(Text.assemble((f"{label}: ", BRAND["red"]), str(error)))


def conversations_table(summaries: list[ConversationSummary]) -> Table:
    """Build the conversation listing table (newest first)."""
    table = Table(title=f"Conversations ({len(summaries)} shown)")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", max_width=40)
    table.add_column("Model", style="dim")
    table.add_column("Turns", justify="right")
    table.add_column("Created", style="dim")
    for summary in summaries:
        table.add_row(
            summary.id[:8],
            summary.title,
            summary.model,
            str(summary.turn_count),
            summary.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    return table


def prompts_table(prompts: list[SystemPrompt], active: str = "") -> Table:
    """Build the system prompt listing table, marking the active one."""
    table = Table(title="System Prompts")
    table.add_column("", width=1)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("Prompt", max_width=60)
    for prompt in prompts:
        marker = "●" if prompt.content == active else ""
        table.add_row(marker, prompt.id, prompt.name, prompt.content or "[dim](none)[/dim]")
    return table


def config_table(config: ClientConfig, system_prompt: str | None = None) -> Table:
    """Build the configuration table; the API key is always masked."""
    table = Table(title="Configuration", show_header=False, show_lines=True)
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("Base URL", config.base_url)
    table.add_row("Model", config.model)
    table.add_row("Provider", config.provider)
    table.add_row("API Key", config.masked_api_key())
    table.add_row("Timeout", f"{config.timeout}s")
    table.add_row("Database", config.db_path)
    prompt = config.system_prompt if system_prompt is None else system_prompt
    table.add_row("System Prompt", prompt or "(none)")
    return table


class RichSink:
    """PresentationSink that renders into a Rich console.

    Fragments are accumulated here, not by the coordinator: the reply
    is re-rendered as Markdown inside a Live region on every fragment
    and left on screen when the stream terminates.
    """

    def __init__(self, console: Console) -> None:
        self._console = console
        self._live: Live | None = None
        self._fragments: list[str] = []

    @property
    def streaming(self) -> bool:
        return self._live is not None

    def on_user_turn_appended(self, turn: Turn) -> None:
        render_turn(self._console, turn)

    def on_fragment(self, text: str) -> None:
        if self._live is None:
            render_role(self._console, Role.ASSISTANT)
            self._fragments = []
            self._live = Live(
                Markdown(""),
                console=self._console,
                refresh_per_second=8,
                transient=False,
            )
            self._live.start()
        self._fragments.append(text)
        self._live.update(Markdown("".join(self._fragments)))

    def on_complete(self, turn: Turn) -> None:
        if self._live is None:
            # Nothing was streamed; still show the (empty) committed turn
            render_role(self._console, Role.ASSISTANT)
            self._console.print(Text("(empty reply)", style=BRAND["dim"]))
        self._stop_live(turn.content)
        self._console.print()

    def on_error(self, error: ParleyError) -> None:
        self._stop_live()
        print_error(self._console, error)
        self._console.print()

    def on_cancelled(self, turn: Turn | None) -> None:
        self._stop_live()
        if turn is None:
            message = "Reply cancelled. Nothing was saved."
        else:
            message = f"Reply cancelled. Partial reply saved ({len(turn.content):,} chars)."
        self._console.print(Text(message, style=BRAND["amber"]))
        self._console.print()

    def _stop_live(self, final: str | None = None) -> None:
        if self._live is None:
            return
        if final is not None:
            self._live.update(Markdown(final))
        self._live.stop()
        self._live = None
        self._fragments = []
