"""Conversation store: create, list, fetch, append, delete.

Provides the ConversationStore class that wraps low-level database
operations with Pydantic schema serialization/deserialization. Turns are
append-only; writes for a given conversation are serialized by a
per-conversation lock so sequence numbers stay gapless.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from datetime import UTC, datetime

import aiosqlite

from parley.errors import NotFoundError, StoreError
from parley.schemas.conversation import (
    Conversation,
    ConversationSummary,
    Role,
    SystemPrompt,
    Turn,
)

logger = logging.getLogger(__name__)

# Seeded into an empty system_prompts table, in this order
DEFAULT_SYSTEM_PROMPTS: tuple[SystemPrompt, ...] = (
    SystemPrompt(id="default", name="Default Chat", content=""),
    SystemPrompt(
        id="translator",
        name="Translator (ZH-EN)",
        content=(
            "You are a professional translator. "
            "Translate between Chinese and English."
        ),
    ),
    SystemPrompt(
        id="coder",
        name="Code Expert",
        content=(
            "You are an expert software engineer. "
            "Provide concise and accurate code solutions."
        ),
    ),
)

# Minimum prefix length accepted when resolving conversation IDs
_MIN_PREFIX = 4


class ConversationStore:
    """Persistent conversation store backed by SQLite.

    All methods are async and operate on an aiosqlite connection
    initialized by database.init_db().
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db
        self._db.row_factory = aiosqlite.Row
        # An entry lives only while some write holds or awaits its lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ── Conversations ─────────────────────────────────────────

    async def create_conversation(
        self,
        title: str,
        model: str,
        system_prompt: str = "",
    ) -> str:
        """Insert a new conversation with zero turns and return its ID."""
        conversation_id = str(uuid.uuid4())
        created_at = datetime.now(UTC).isoformat()
        try:
            await self._db.execute(
                """
                INSERT INTO conversations (id, title, model, system_prompt, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (conversation_id, title, model, system_prompt, created_at),
            )
            await self._db.commit()
        except aiosqlite.Error as e:
            await self._rollback()
            raise StoreError(f"Could not create conversation: {e}") from e

        logger.info("Created conversation %s (%s)", conversation_id, title)
        return conversation_id

    async def get_conversation(self, conversation_id: str) -> Conversation:
        """Fetch a conversation header by exact ID.

        Raises:
            NotFoundError: If no conversation has this ID.
        """
        try:
            async with self._db.execute(
                "SELECT * FROM conversations WHERE id = ?",
                (conversation_id,),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(f"Could not read conversation: {e}") from e

        if not row:
            raise NotFoundError(f"Conversation not found: {conversation_id}")

        return Conversation(
            id=row["id"],
            title=row["title"],
            model=row["model"],
            system_prompt=row["system_prompt"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    async def list_conversations(
        self, limit: int | None = None,
    ) -> list[ConversationSummary]:
        """List conversations, most recently created first."""
        sql = """
            SELECT c.id, c.title, c.model, c.created_at,
                   (SELECT COUNT(*) FROM turns t WHERE t.conversation_id = c.id)
                       AS turn_count
            FROM conversations c
            ORDER BY c.created_at DESC, c.rowid DESC
        """
        params: list[object] = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        summaries: list[ConversationSummary] = []
        try:
            async with self._db.execute(sql, params) as cursor:
                async for row in cursor:
                    summaries.append(ConversationSummary(
                        id=row["id"],
                        title=row["title"],
                        model=row["model"],
                        created_at=datetime.fromisoformat(row["created_at"]),
                        turn_count=row["turn_count"],
                    ))
        except aiosqlite.Error as e:
            raise StoreError(f"Could not list conversations: {e}") from e

        return summaries

    async def resolve_conversation_id(self, prefix: str) -> str | None:
        """Resolve a conversation ID prefix to a full conversation ID.

        Returns the full ID if exactly one match is found, None otherwise.
        Accepts full IDs as well (exact match always wins).
        """
        prefix = prefix.strip()
        if not prefix:
            return None
        try:
            async with self._db.execute(
                "SELECT id FROM conversations WHERE id = ?",
                (prefix,),
            ) as cursor:
                row = await cursor.fetchone()
            if row:
                return row["id"]
            if len(prefix) >= _MIN_PREFIX:
                async with self._db.execute(
                    "SELECT id FROM conversations WHERE id LIKE ? LIMIT 2",
                    (prefix + "%",),
                ) as cursor:
                    rows = await cursor.fetchall()
                if len(rows) == 1:
                    return rows[0]["id"]
        except aiosqlite.Error as e:
            raise StoreError(f"Could not resolve conversation ID: {e}") from e
        return None

    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation and all of its turns atomically.

        Both deletes run in one transaction; if either fails the
        transaction is rolled back and nothing is removed.

        Raises:
            NotFoundError: If no conversation has this ID.
            StoreError: If the transaction fails.
        """
        async with self._lock_for(conversation_id):
            try:
                await self._db.execute(
                    "DELETE FROM turns WHERE conversation_id = ?",
                    (conversation_id,),
                )
                cursor = await self._db.execute(
                    "DELETE FROM conversations WHERE id = ?",
                    (conversation_id,),
                )
                if cursor.rowcount == 0:
                    await self._rollback()
                    raise NotFoundError(f"Conversation not found: {conversation_id}")
                await self._db.commit()
            except aiosqlite.Error as e:
                await self._rollback()
                logger.warning("Delete of %s rolled back: %s", conversation_id, e)
                raise StoreError(f"Could not delete conversation: {e}") from e

        logger.info("Deleted conversation %s", conversation_id)

    # ── Turns ─────────────────────────────────────────────────

    async def append_turn(
        self,
        conversation_id: str,
        role: Role | str,
        content: str,
    ) -> Turn:
        """Append one immutable turn at the next sequence position.

        Raises:
            NotFoundError: If no conversation has this ID.
            StoreError: If the insert fails.
        """
        role = Role(role)
        async with self._lock_for(conversation_id):
            try:
                async with self._db.execute(
                    "SELECT 1 FROM conversations WHERE id = ?",
                    (conversation_id,),
                ) as cursor:
                    exists = await cursor.fetchone()
                if not exists:
                    raise NotFoundError(f"Conversation not found: {conversation_id}")

                async with self._db.execute(
                    "SELECT COALESCE(MAX(seq), 0) FROM turns WHERE conversation_id = ?",
                    (conversation_id,),
                ) as cursor:
                    seq_row = await cursor.fetchone()
                turn = Turn(
                    conversation_id=conversation_id,
                    seq=seq_row[0] + 1,
                    role=role,
                    content=content,
                )
                await self._db.execute(
                    """
                    INSERT INTO turns (conversation_id, seq, role, content, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        turn.conversation_id,
                        turn.seq,
                        turn.role.value,
                        turn.content,
                        turn.created_at.isoformat(),
                    ),
                )
                await self._db.commit()
            except aiosqlite.Error as e:
                await self._rollback()
                raise StoreError(f"Could not save {role.value} turn: {e}") from e

        logger.debug(
            "Appended %s turn #%d to %s", role.value, turn.seq, conversation_id,
        )
        return turn

    async def get_turns(self, conversation_id: str) -> list[Turn]:
        """Return all turns of a conversation in insertion order.

        Raises:
            NotFoundError: If no conversation has this ID.
        """
        await self.get_conversation(conversation_id)

        turns: list[Turn] = []
        try:
            async with self._db.execute(
                "SELECT * FROM turns WHERE conversation_id = ? ORDER BY seq",
                (conversation_id,),
            ) as cursor:
                async for row in cursor:
                    turns.append(Turn(
                        conversation_id=row["conversation_id"],
                        seq=row["seq"],
                        role=row["role"],
                        content=row["content"],
                        created_at=datetime.fromisoformat(row["created_at"]),
                    ))
        except aiosqlite.Error as e:
            raise StoreError(f"Could not read turns: {e}") from e

        return turns

    # ── System prompts ────────────────────────────────────────

    async def list_system_prompts(self) -> list[SystemPrompt]:
        """Return the named system prompts.

        Seeds the built-in defaults the first time the table is found
        empty; afterwards the persisted rows are returned as-is.
        """
        prompts = await self._fetch_system_prompts()
        if prompts:
            return prompts

        try:
            await self._db.executemany(
                "INSERT OR IGNORE INTO system_prompts (id, name, content) VALUES (?, ?, ?)",
                [(p.id, p.name, p.content) for p in DEFAULT_SYSTEM_PROMPTS],
            )
            await self._db.commit()
        except aiosqlite.Error as e:
            await self._rollback()
            raise StoreError(f"Could not seed system prompts: {e}") from e

        logger.info("Seeded %d default system prompts", len(DEFAULT_SYSTEM_PROMPTS))
        return list(DEFAULT_SYSTEM_PROMPTS)

    async def get_system_prompt(self, key: str) -> SystemPrompt:
        """Find a system prompt by ID or name (case-insensitive).

        Raises:
            NotFoundError: If no prompt matches.
        """
        wanted = key.strip().lower()
        for prompt in await self.list_system_prompts():
            if wanted in (prompt.id.lower(), prompt.name.lower()):
                return prompt
        raise NotFoundError(f"System prompt not found: {key}")

    async def _fetch_system_prompts(self) -> list[SystemPrompt]:
        try:
            async with self._db.execute(
                "SELECT id, name, content FROM system_prompts ORDER BY rowid",
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreError(f"Could not read system prompts: {e}") from e
        return [
            SystemPrompt(id=row["id"], name=row["name"], content=row["content"])
            for row in rows
        ]

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    async def _rollback(self) -> None:
        try:
            await self._db.rollback()
        except aiosqlite.Error:
            logger.exception("Rollback failed")
