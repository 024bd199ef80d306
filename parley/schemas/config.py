"""Client configuration record."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ClientConfig(BaseModel):
    """Connection and storage settings for the chat client.

    Loaded by parley.config.load_config(); the transport is rebuilt
    whenever this record changes.
    """

    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI-compatible endpoint base URL",
    )
    api_key: str = Field(default="", description="API key for the endpoint")
    model: str = Field(default="gpt-3.5-turbo", description="Model name to request")
    provider: str = Field(
        default="openai",
        description="LiteLLM provider used to talk to the endpoint",
    )
    db_path: str = Field(
        default="~/.parley/parley.db",
        description="SQLite database path (supports ~)",
    )
    timeout: int = Field(default=120, ge=1, description="Request timeout in seconds")
    system_prompt: str = Field(
        default="", description="System prompt applied to new conversations",
    )

    def masked_api_key(self) -> str:
        """Return the API key with all but the last 4 chars hidden."""
        if not self.api_key:
            return "(not set)"
        if len(self.api_key) <= 4:
            return "****"
        return "*" * 8 + self.api_key[-4:]
