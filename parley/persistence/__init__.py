"""Parley conversation persistence layer.

Provides SQLite-backed storage for conversations, their turns and
system-prompt templates, plus Markdown/JSON export.
"""

from parley.persistence.database import close_db, init_db
from parley.persistence.export import (
    default_export_filename,
    export_json,
    export_markdown,
    write_export,
)
from parley.persistence.store import ConversationStore

__all__ = [
    "ConversationStore",
    "close_db",
    "default_export_filename",
    "export_json",
    "export_markdown",
    "init_db",
    "write_export",
]
