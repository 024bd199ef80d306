"""Tests for the terminal display components.

Covers brand constants, the header, listing tables and RichSink's
handling of streamed, cancelled and failed replies.
"""

from __future__ import annotations

import io
from datetime import UTC, datetime

from rich.console import Console

from parley import __version__
from parley.cli_display import (
    BRAND,
    RichSink,
    config_table,
    conversations_table,
    print_error,
    prompts_table,
    render_header,
)
from parley.errors import StoreError, TransportError
from parley.persistence.store import DEFAULT_SYSTEM_PROMPTS
from parley.schemas.config import ClientConfig
from parley.schemas.conversation import ConversationSummary, Role, Turn
from parley.sink import PresentationSink


def _make_console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, width=200, color_system=None), buffer


def _make_turn(content: str, role: Role = Role.ASSISTANT) -> Turn:
    return Turn(conversation_id="c1", seq=2, role=role, content=content)


# ── Brand Constants ──────────────────────────────────────────────


class TestBrandConstants:
    def test_brand_values_are_hex(self):
        """All BRAND values are valid hex color strings."""
        for key, value in BRAND.items():
            assert value.startswith("#"), f"BRAND[{key}] = {value} is not a hex color"
            assert len(value) == 7, f"BRAND[{key}] = {value} is not 7 chars"

    def test_role_colors_present(self):
        assert {"user", "assistant", "system"} <= BRAND.keys()


# ── Header and Tables ────────────────────────────────────────────


class TestRenderers:
    def test_header_shows_version_and_model(self):
        console, buffer = _make_console()
        render_header(console, ClientConfig(model="llama3"))
        out = buffer.getvalue()
        assert f"parley v{__version__}" in out
        assert "llama3" in out

    def test_conversations_table_short_ids(self):
        summary = ConversationSummary(
            id="0123456789abcdef",
            title="2+2?",
            model="gpt-3.5-turbo",
            created_at=datetime(2026, 1, 5, 9, 30, tzinfo=UTC),
            turn_count=2,
        )
        console, buffer = _make_console()
        console.print(conversations_table([summary]))
        out = buffer.getvalue()
        assert "01234567" in out
        assert "0123456789" not in out
        assert "2026-01-05 09:30" in out

    def test_prompts_table_marks_active(self):
        console, buffer = _make_console()
        console.print(prompts_table(list(DEFAULT_SYSTEM_PROMPTS), DEFAULT_SYSTEM_PROMPTS[2].content))
        line = next(ln for ln in buffer.getvalue().splitlines() if "Code Expert" in ln)
        assert "●" in line

    def test_config_table_never_shows_key(self):
        console, buffer = _make_console()
        console.print(config_table(ClientConfig(api_key="sk-live-secret-9999")))
        out = buffer.getvalue()
        assert "secret" not in out
        assert "********9999" in out

    def test_print_error_labels_transport_errors(self):
        console, buffer = _make_console()
        print_error(console, TransportError("Request failed (timeout)", reason="timeout"))
        print_error(console, StoreError("disk full"))
        out = buffer.getvalue()
        assert "API Error: Request failed (timeout)" in out
        assert "Error: disk full" in out


# ── RichSink ─────────────────────────────────────────────────────


class TestRichSink:
    def test_satisfies_sink_protocol(self):
        console, _ = _make_console()
        assert isinstance(RichSink(console), PresentationSink)

    def test_streamed_reply_left_on_screen(self):
        console, buffer = _make_console()
        sink = RichSink(console)
        sink.on_fragment("Hello, ")
        assert sink.streaming
        sink.on_fragment("world")
        sink.on_complete(_make_turn("Hello, world"))

        assert not sink.streaming
        out = buffer.getvalue()
        assert "ASSISTANT" in out
        assert "Hello, world" in out

    def test_empty_reply(self):
        console, buffer = _make_console()
        RichSink(console).on_complete(_make_turn(""))
        assert "(empty reply)" in buffer.getvalue()

    def test_cancel_with_partial(self):
        console, buffer = _make_console()
        sink = RichSink(console)
        sink.on_fragment("Hello, ")
        sink.on_cancelled(_make_turn("Hello, "))
        assert not sink.streaming
        assert "Partial reply saved (7 chars)" in buffer.getvalue()

    def test_cancel_without_output(self):
        console, buffer = _make_console()
        RichSink(console).on_cancelled(None)
        assert "Nothing was saved." in buffer.getvalue()

    def test_error_stops_live_region(self):
        console, buffer = _make_console()
        sink = RichSink(console)
        sink.on_fragment("par")
        sink.on_error(TransportError("Stream interrupted (timeout)", reason="timeout"))
        assert not sink.streaming
        assert "API Error: Stream interrupted (timeout)" in buffer.getvalue()

    def test_user_turn_rendered(self):
        console, buffer = _make_console()
        RichSink(console).on_user_turn_appended(_make_turn("2+2?", Role.USER))
        out = buffer.getvalue()
        assert "USER" in out
        assert "2+2?" in out
