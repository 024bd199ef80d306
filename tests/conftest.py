"""Shared test doubles: a scripted transport, a recording sink and an
in-memory store fixture."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable

import pytest
import pytest_asyncio

from parley.persistence.database import close_db, init_db
from parley.persistence.store import ConversationStore
from parley.providers.base import TransportClient
from parley.schemas.conversation import Turn


class ScriptedTransport(TransportClient):
    """Transport that replays a fixed list of fragments.

    If ``gate_after`` is set, the stream pauses before yielding fragment
    number ``gate_after`` until ``release()`` is called. ``error`` is
    raised after the last fragment; ``open_error`` from open_stream().
    """

    def __init__(
        self,
        fragments: list[str] | tuple[str, ...] = (),
        *,
        error: BaseException | None = None,
        open_error: BaseException | None = None,
        gate_after: int | None = None,
        on_open: Callable[[], Awaitable[None]] | None = None,
        model: str = "fake-model",
    ) -> None:
        self.fragments = list(fragments)
        self.error = error
        self.open_error = open_error
        self.gate_after = gate_after
        self.on_open = on_open
        self._model = model
        self.calls: list[list[dict[str, str]]] = []
        self.opened = asyncio.Event()
        self.gate = asyncio.Event()
        self.closed = False

    @property
    def model_id(self) -> str:
        return self._model

    def release(self) -> None:
        self.gate.set()

    async def open_stream(self, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        self.calls.append(messages)
        if self.on_open is not None:
            await self.on_open()
        self.opened.set()
        if self.open_error is not None:
            raise self.open_error
        return self._stream()

    async def _stream(self) -> AsyncIterator[str]:
        try:
            for index, fragment in enumerate(self.fragments):
                if index == self.gate_after:
                    await self.gate.wait()
                yield fragment
            if self.gate_after is not None and self.gate_after >= len(self.fragments):
                await self.gate.wait()
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class RecordingSink:
    """PresentationSink that records every callback in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []
        self.fragment_seen = asyncio.Event()

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.events]

    def payloads(self, kind: str) -> list[object]:
        return [payload for k, payload in self.events if k == kind]

    def on_user_turn_appended(self, turn: Turn) -> None:
        self.events.append(("user_turn", turn))

    def on_fragment(self, text: str) -> None:
        self.events.append(("fragment", text))
        self.fragment_seen.set()

    def on_complete(self, turn: Turn) -> None:
        self.events.append(("complete", turn))

    def on_error(self, error) -> None:
        self.events.append(("error", error))

    def on_cancelled(self, turn: Turn | None) -> None:
        self.events.append(("cancelled", turn))


@pytest_asyncio.fixture
async def store():
    db = await init_db(":memory:")
    yield ConversationStore(db)
    await close_db(db)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
