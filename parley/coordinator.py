"""Stream coordinator: the turn lifecycle of a single conversation.

Submits user turns, drives the transport on a worker task, accumulates
fragments into the in-progress assistant turn and commits finished turns
to the ConversationStore. Rendering is delegated to a PresentationSink.

State machine::

    idle → submitting → streaming → committing → idle
                                  → cancelling → idle
                                  → failed     → idle

The worker task only reads from the transport and posts StreamEvents to a
bounded queue. Every state change, buffer append, sink call and store
write happens in the owner loop inside submit(), so there is exactly one
writer for the turn list and the buffer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from parley.errors import (
    ParleyError,
    SessionBusyError,
    StoreError,
    TransportError,
    ValidationError,
)
from parley.persistence.store import ConversationStore
from parley.providers.base import TransportClient
from parley.schemas.conversation import Conversation, Role, Turn, derive_title
from parley.schemas.streaming import StreamEvent, StreamEventKind
from parley.sink import PresentationSink

logger = logging.getLogger(__name__)

# Fragments buffered between worker and owner before the worker waits
DEFAULT_QUEUE_SIZE = 64


class CoordinatorState(StrEnum):
    """Lifecycle state of the coordinator's current session."""

    IDLE = "idle"
    SUBMITTING = "submitting"
    STREAMING = "streaming"
    COMMITTING = "committing"
    CANCELLING = "cancelling"
    FAILED = "failed"


class SubmitOutcome(StrEnum):
    """How a submit() call ended."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass
class StreamSession:
    """Ephemeral state for one outstanding generation request."""

    conversation_id: str
    queue: asyncio.Queue[StreamEvent]
    buffer: list[str] = field(default_factory=list)
    cancelled: bool = False
    started: bool = False
    terminated: bool = False
    worker: asyncio.Task | None = None

    @property
    def text(self) -> str:
        return "".join(self.buffer)


class StreamCoordinator:
    """Owns the turn list and the single in-flight StreamSession.

    At most one session is live at a time; submit() while not idle is
    rejected with SessionBusyError before anything is opened.
    """

    def __init__(
        self,
        store: ConversationStore,
        transport: TransportClient,
        sink: PresentationSink,
        *,
        model: str = "",
        system_prompt: str = "",
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._store = store
        self._transport = transport
        self._sink = sink
        self._model = model or transport.model_id
        self._system_prompt = system_prompt
        self._queue_size = queue_size

        self._state = CoordinatorState.IDLE
        self._conversation_id: str | None = None
        self._turns: list[Turn] = []
        self._session: StreamSession | None = None

    # ── Introspection ─────────────────────────────────────────

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state is CoordinatorState.IDLE

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def turns(self) -> list[Turn]:
        """Committed turns of the current conversation (a copy)."""
        return list(self._turns)

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @property
    def model(self) -> str:
        return self._model

    @property
    def transport(self) -> TransportClient:
        return self._transport

    def build_context(self) -> list[dict[str, str]]:
        """Full model-visible history: system prompt first, then every turn."""
        messages: list[dict[str, str]] = []
        if self._system_prompt:
            messages.append({"role": Role.SYSTEM.value, "content": self._system_prompt})
        messages.extend(turn.as_message() for turn in self._turns)
        return messages

    # ── Conversation management (idle only) ───────────────────

    def new_conversation(self) -> None:
        """Forget the in-memory conversation; persisted history is untouched."""
        self._require_idle("start a new conversation")
        self._conversation_id = None
        self._turns = []

    def clear(self) -> None:
        """Clear the visible turns by starting a fresh conversation.

        Keeping the old identifier would let the next submit append to a
        conversation whose stored history no longer matches the context
        sent to the model, so the identifier is dropped with the turns.
        """
        self.new_conversation()

    async def load_conversation(self, conversation_id: str) -> Conversation:
        """Replace the in-memory conversation with a persisted one.

        Raises:
            SessionBusyError: If a stream is active.
            NotFoundError: If the conversation does not exist.
        """
        self._require_idle("load a conversation")
        conversation = await self._store.get_conversation(conversation_id)
        turns = await self._store.get_turns(conversation_id)
        self._conversation_id = conversation.id
        self._system_prompt = conversation.system_prompt
        self._turns = turns
        logger.info("Loaded conversation %s (%d turns)", conversation.id, len(turns))
        return conversation

    def set_system_prompt(self, content: str) -> None:
        """Use a new system prompt from the next turn on.

        The prompt is stored with the conversation when it is created, so
        changing it mid-conversation starts a new one.
        """
        self._require_idle("change the system prompt")
        if content != self._system_prompt and self._conversation_id is not None:
            self.new_conversation()
        self._system_prompt = content

    def replace_transport(
        self, transport: TransportClient, *, model: str | None = None,
    ) -> None:
        """Swap the transport after a configuration change.

        Raises:
            SessionBusyError: If a stream is active; the change is rejected
                              rather than applied mid-stream.
        """
        self._require_idle("change the configuration")
        self._transport = transport
        self._model = model or transport.model_id or self._model
        logger.info("Transport replaced (model: %s)", self._model)

    async def import_file(self, path: str) -> Turn | None:
        """Add a file's contents as a user turn without contacting the model.

        The turn is committed like typed input and sent as context with
        the next submit(). Returns None if the store write failed (the
        sink has been notified).

        Raises:
            SessionBusyError: If a stream is active.
            ValidationError: If the path is missing or unreadable.
        """
        self._require_idle("import a file")
        path = (path or "").strip()
        if not path:
            raise ValidationError("Usage: /read <path>")
        try:
            content = Path(path).expanduser().read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ValidationError(f"Error reading file: {e}") from e

        try:
            return await self._append_user_turn(f"Content of file {path}:\n\n{content}")
        except StoreError as e:
            logger.warning("File import not saved: %s", e)
            self._sink.on_error(e)
            return None

    # ── Streaming lifecycle ───────────────────────────────────

    async def submit(self, text: str) -> SubmitOutcome:
        """Send a user turn and stream the assistant reply to the sink.

        The user turn is committed before the transport is touched. The
        call returns once the session has terminated and the coordinator
        is idle again.

        Raises:
            SessionBusyError: If a session is already active.
            ValidationError: If the text is blank.
        """
        self._require_idle("submit a message")
        if not text or not text.strip():
            raise ValidationError("Message is empty")

        self._state = CoordinatorState.SUBMITTING
        try:
            await self._append_user_turn(text)
        except StoreError as e:
            logger.warning("User turn not saved, request aborted: %s", e)
            self._state = CoordinatorState.IDLE
            self._sink.on_error(e)
            return SubmitOutcome.ABORTED

        session = StreamSession(
            conversation_id=self._conversation_id,
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        self._session = session
        session.worker = asyncio.create_task(
            self._pump(session, self.build_context()),
            name=f"parley-stream-{session.conversation_id[:8]}",
        )
        try:
            return await self._drive(session)
        finally:
            await self._finish(session)

    def cancel(self) -> bool:
        """Request cooperative cancellation of the active stream.

        Returns False when there is nothing to cancel. The partial reply
        is committed by the owner loop once the worker has stopped.
        """
        session = self._session
        if session is None or session.cancelled:
            return False
        if self._state not in (CoordinatorState.SUBMITTING, CoordinatorState.STREAMING):
            return False

        session.cancelled = True
        self._state = CoordinatorState.CANCELLING
        # A worker that has not started yet sees the flag when it does
        if session.worker is not None and session.started:
            session.worker.cancel()
        logger.info("Cancellation requested for %s", session.conversation_id)
        return True

    async def _pump(self, session: StreamSession, context: list[dict[str, str]]) -> None:
        """Worker: read the transport stream and post events to the queue."""
        session.started = True
        if session.cancelled:
            terminal = StreamEvent(StreamEventKind.CANCELLED)
        else:
            try:
                terminal = await self._receive(session, context)
            except asyncio.CancelledError:
                terminal = StreamEvent(StreamEventKind.CANCELLED)
        # A late cancel must not swallow the terminal event
        await asyncio.shield(session.queue.put(terminal))

    async def _receive(
        self, session: StreamSession, context: list[dict[str, str]],
    ) -> StreamEvent:
        stream: AsyncIterator[str] | None = None
        try:
            stream = await self._transport.open_stream(context)
            await session.queue.put(StreamEvent(StreamEventKind.OPENED))
            async for fragment in stream:
                if fragment:
                    await session.queue.put(
                        StreamEvent(StreamEventKind.FRAGMENT, text=fragment),
                    )
        except TransportError as e:
            return StreamEvent(StreamEventKind.ERROR, error=e)
        except Exception as e:
            logger.exception("Unexpected transport failure")
            error = TransportError(f"Unexpected transport failure: {e}", reason="unexpected")
            error.__cause__ = e
            return StreamEvent(StreamEventKind.ERROR, error=error)
        finally:
            if stream is not None:
                await _close_stream(stream)
        return StreamEvent(StreamEventKind.END)

    async def _drive(self, session: StreamSession) -> SubmitOutcome:
        """Owner loop: apply worker events in arrival order."""
        while True:
            event = await session.queue.get()
            session.terminated = event.is_terminal

            if event.kind is StreamEventKind.OPENED:
                if self._state is CoordinatorState.SUBMITTING:
                    self._state = CoordinatorState.STREAMING

            elif event.kind is StreamEventKind.FRAGMENT:
                session.buffer.append(event.text)
                self._sink.on_fragment(event.text)

            elif event.kind is StreamEventKind.END:
                return await self._commit(session)

            elif event.kind is StreamEventKind.ERROR:
                return self._fail(event.error)

            elif event.kind is StreamEventKind.CANCELLED:
                return await self._commit_partial(session)

    async def _commit(self, session: StreamSession) -> SubmitOutcome:
        self._state = CoordinatorState.COMMITTING
        try:
            turn = await self._store.append_turn(
                session.conversation_id, Role.ASSISTANT, session.text,
            )
        except StoreError as e:
            return self._fail(e)

        self._turns.append(turn)
        logger.info(
            "Committed assistant turn #%d (%d fragments) to %s",
            turn.seq, len(session.buffer), session.conversation_id,
        )
        self._sink.on_complete(turn)
        return SubmitOutcome.COMPLETED

    async def _commit_partial(self, session: StreamSession) -> SubmitOutcome:
        self._state = CoordinatorState.CANCELLING
        if not session.buffer:
            logger.info("Stream cancelled before any output; nothing saved")
            self._sink.on_cancelled(None)
            return SubmitOutcome.CANCELLED

        try:
            turn = await self._store.append_turn(
                session.conversation_id, Role.ASSISTANT, session.text,
            )
        except StoreError as e:
            return self._fail(e)

        self._turns.append(turn)
        logger.info(
            "Stream cancelled; saved partial assistant turn #%d (%d chars)",
            turn.seq, len(turn.content),
        )
        self._sink.on_cancelled(turn)
        return SubmitOutcome.CANCELLED

    def _fail(self, error: ParleyError | None) -> SubmitOutcome:
        self._state = CoordinatorState.FAILED
        if error is None:
            error = TransportError("Stream failed", reason="unknown")
        logger.warning("Request failed: %s", error)
        self._sink.on_error(error)
        return SubmitOutcome.FAILED

    async def _finish(self, session: StreamSession) -> None:
        """Wait for the worker to exit, then return to idle.

        If the owner loop was abandoned before a terminal event (the
        submit task itself was cancelled), the worker is stopped and the
        queue drained so its final put cannot block forever.
        """
        worker = session.worker
        if worker is not None:
            if not session.terminated:
                worker.cancel()
                while not worker.done():
                    while not session.queue.empty():
                        session.queue.get_nowait()
                    await asyncio.wait({worker}, timeout=0.05)
            await asyncio.gather(worker, return_exceptions=True)
        self._session = None
        self._state = CoordinatorState.IDLE

    # ── Helpers ───────────────────────────────────────────────

    async def _append_user_turn(self, text: str) -> Turn:
        """Create the conversation if needed and commit a user turn."""
        created = self._conversation_id is None
        if created:
            self._conversation_id = await self._store.create_conversation(
                derive_title(text), self._model, self._system_prompt,
            )
        try:
            turn = await self._store.append_turn(self._conversation_id, Role.USER, text)
        except StoreError:
            # The next message creates and titles a fresh conversation
            if created:
                self._conversation_id = None
            raise
        self._turns.append(turn)
        self._sink.on_user_turn_appended(turn)
        return turn

    def _require_idle(self, action: str) -> None:
        if self._state is not CoordinatorState.IDLE:
            raise SessionBusyError(
                f"Cannot {action} while a reply is {self._state.value}",
            )


async def _close_stream(stream: AsyncIterator[str]) -> None:
    """Release the transport stream's connection."""
    closer = getattr(stream, "aclose", None)
    if closer is None:
        return
    try:
        await closer()
    except Exception:
        logger.debug("Error while closing transport stream", exc_info=True)
