"""Error taxonomy for Parley.

Every error surfaced to the user derives from ParleyError and carries a
human-readable message. The original cause is chained via ``raise ... from``
so diagnostics stay available without leaking into the UI.
"""

from __future__ import annotations


class ParleyError(Exception):
    """Base exception for all application-specific errors."""


class TransportError(ParleyError):
    """The chat-completion stream could not be opened or read.

    Covers authentication, network, timeout and malformed-response
    failures alike. ``reason`` is a short label for display.
    """

    def __init__(self, message: str, *, reason: str = "") -> None:
        super().__init__(message)
        self.reason = reason


class StoreError(ParleyError):
    """A persistence operation failed (I/O or constraint violation)."""


class NotFoundError(StoreError):
    """Unknown conversation or system prompt identifier."""


class ValidationError(ParleyError):
    """User input was rejected before reaching the coordinator."""


class SessionBusyError(ParleyError):
    """The operation requires an idle coordinator but a stream is active."""
