"""SQLite database layer for conversation persistence.

Manages the SQLite database connection and schema creation. Uses
aiosqlite for async access with WAL mode for concurrent read performance.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from parley.errors import StoreError

logger = logging.getLogger(__name__)

# SQL schema for the conversations database
_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id            TEXT PRIMARY KEY,
    title         TEXT NOT NULL DEFAULT '',
    model         TEXT NOT NULL DEFAULT '',
    system_prompt TEXT NOT NULL DEFAULT '',
    created_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS turns (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id TEXT NOT NULL REFERENCES conversations(id),
    seq             INTEGER NOT NULL,
    role            TEXT NOT NULL,
    content         TEXT NOT NULL DEFAULT '',
    created_at      TEXT NOT NULL,
    UNIQUE (conversation_id, seq)
);

CREATE TABLE IF NOT EXISTS system_prompts (
    id      TEXT PRIMARY KEY,
    name    TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_turns_conversation ON turns(conversation_id, seq);
CREATE INDEX IF NOT EXISTS idx_conversations_created ON conversations(created_at);
"""


async def init_db(db_path: str) -> aiosqlite.Connection:
    """Initialize the database connection and create tables if needed.

    Creates parent directories if they don't exist, enables WAL mode
    and foreign keys, then runs the schema DDL.

    Args:
        db_path: Path to the SQLite database file. Supports ~ expansion
                 and ``:memory:``.

    Returns:
        An open aiosqlite connection ready for use.

    Raises:
        StoreError: If the database cannot be opened or initialized.
    """
    if db_path == ":memory:":
        target = db_path
    else:
        resolved = Path(db_path).expanduser()
        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create database directory: {e}") from e
        target = str(resolved)

    try:
        db = await aiosqlite.connect(target)
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("PRAGMA foreign_keys=ON")
        await db.executescript(_SCHEMA)
        await db.commit()
    except aiosqlite.Error as e:
        raise StoreError(f"Cannot open database at {target}: {e}") from e

    db.row_factory = aiosqlite.Row
    logger.info("Conversation database initialized at %s", target)
    return db


async def close_db(db: aiosqlite.Connection) -> None:
    """Close the database connection."""
    await db.close()
