"""Conversation schemas.

Defines the persisted Conversation and Turn records, the lightweight
ConversationSummary used for listing, named SystemPrompt templates and
the ConversationRecord bundle used for JSON export.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# Titles are derived from the first user turn and capped at this length
TITLE_MAX_LENGTH = 30


class Role(StrEnum):
    """Author of a turn, using OpenAI chat role names."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Turn(BaseModel):
    """One committed message in a conversation. Immutable."""

    model_config = ConfigDict(frozen=True)

    conversation_id: str = Field(description="Owning conversation identifier")
    seq: int = Field(ge=1, description="1-based position within the conversation")
    role: Role = Field(description="Who authored this turn")
    content: str = Field(description="Turn text")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the turn was committed",
    )

    def as_message(self) -> dict[str, str]:
        """Return the turn as an OpenAI-format message dict."""
        return {"role": self.role.value, "content": self.content}


class Conversation(BaseModel):
    """A persisted conversation header (turns are stored separately)."""

    id: str = Field(description="Unique conversation identifier (UUID)")
    title: str = Field(default="", description="Derived from the first user turn")
    model: str = Field(default="", description="Model identifier used for the chat")
    system_prompt: str = Field(default="", description="System instruction, may be empty")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the conversation was created",
    )


class ConversationSummary(BaseModel):
    """Lightweight conversation summary for listing."""

    id: str
    title: str
    model: str = ""
    created_at: datetime
    turn_count: int = Field(default=0, ge=0)


class SystemPrompt(BaseModel):
    """A named system-instruction template."""

    id: str
    name: str
    content: str = ""


class ConversationRecord(BaseModel):
    """A conversation together with all of its turns."""

    conversation: Conversation
    turns: list[Turn] = Field(default_factory=list)


def derive_title(text: str, limit: int = TITLE_MAX_LENGTH) -> str:
    """Derive a conversation title from the first user turn.

    Whitespace is collapsed; text longer than ``limit`` is cut and
    suffixed with an ellipsis so the result is exactly ``limit`` chars.
    """
    title = " ".join(text.split())
    if len(title) > limit:
        title = title[: limit - 3] + "..."
    return title
