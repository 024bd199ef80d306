"""Pydantic schemas and plain records shared across Parley."""

from parley.schemas.config import ClientConfig
from parley.schemas.conversation import (
    Conversation,
    ConversationRecord,
    ConversationSummary,
    Role,
    SystemPrompt,
    Turn,
    derive_title,
)
from parley.schemas.streaming import StreamEvent, StreamEventKind

__all__ = [
    "ClientConfig",
    "Conversation",
    "ConversationRecord",
    "ConversationSummary",
    "Role",
    "StreamEvent",
    "StreamEventKind",
    "SystemPrompt",
    "Turn",
    "derive_title",
]
