"""Conversation export formatters.

Provides Markdown and JSON export functions for conversations.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from pathlib import Path

from parley.errors import StoreError
from parley.schemas.conversation import ConversationRecord, Turn

logger = logging.getLogger(__name__)


def export_json(record: ConversationRecord) -> str:
    """Export a conversation record as a formatted JSON string."""
    return record.model_dump_json(indent=2)


def export_markdown(turns: Iterable[Turn], system_prompt: str = "") -> str:
    """Export turns as a Markdown document.

    Each turn becomes a level-2 heading with the upper-cased role name,
    followed by its content and a horizontal rule.
    """
    lines: list[str] = []

    if system_prompt:
        lines.append(f"> System Prompt: {system_prompt}")
        lines.append("")

    for turn in turns:
        lines.append(f"## {turn.role.value.upper()}")
        lines.append("")
        lines.append(turn.content)
        lines.append("")
        lines.append("---")
        lines.append("")

    return "\n".join(lines) + ("\n" if lines else "")


def default_export_filename(now: float | None = None) -> str:
    """Timestamp-derived export filename, e.g. ``chat_export_1718000000.md``."""
    ts = int(now if now is not None else time.time())
    return f"chat_export_{ts}.md"


def write_export(
    turns: Iterable[Turn],
    path: str | Path | None = None,
    system_prompt: str = "",
) -> Path:
    """Write the Markdown export to ``path`` (or a timestamped file).

    Returns:
        The path written.

    Raises:
        StoreError: If the file cannot be written.
    """
    target = Path(path).expanduser() if path else Path(default_export_filename())
    try:
        target.write_text(export_markdown(turns, system_prompt), encoding="utf-8")
    except OSError as e:
        raise StoreError(f"Save failed: {e}") from e

    logger.info("Exported conversation to %s", target)
    return target
