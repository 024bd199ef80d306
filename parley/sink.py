"""Presentation sink contract.

The stream coordinator pushes incremental and final content through this
interface and never renders anything itself. Implementations are called
only from the coordinator's owning event loop, in lifecycle order:

    on_user_turn_appended → on_fragment* → on_complete | on_error | on_cancelled
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from parley.errors import ParleyError
from parley.schemas.conversation import Turn


@runtime_checkable
class PresentationSink(Protocol):
    """Receives conversation updates from the StreamCoordinator."""

    def on_user_turn_appended(self, turn: Turn) -> None:
        """A user turn was durably committed."""

    def on_fragment(self, text: str) -> None:
        """An incremental piece of assistant text arrived (append-only)."""

    def on_complete(self, turn: Turn) -> None:
        """The stream ended and the assistant turn was committed."""

    def on_error(self, error: ParleyError) -> None:
        """A transport or store failure ended the operation."""

    def on_cancelled(self, turn: Turn | None) -> None:
        """The user cancelled; ``turn`` is the saved partial reply, if any."""
