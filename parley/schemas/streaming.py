"""Streaming schemas for worker-to-coordinator hand-off.

A StreamEvent is the only thing the transport worker ever produces; the
coordinator consumes them in order from a single queue.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class StreamEventKind(StrEnum):
    """Lifecycle markers for a single streaming request."""

    OPENED = "opened"
    FRAGMENT = "fragment"
    END = "end"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StreamEvent:
    """A single event posted by the stream worker."""

    kind: StreamEventKind
    text: str = ""
    error: Exception | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in (
            StreamEventKind.END,
            StreamEventKind.ERROR,
            StreamEventKind.CANCELLED,
        )
