"""Abstract base class for chat-completion transports.

Defines the TransportClient interface the stream coordinator drives.
The coordinator never calls provider SDKs directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator


class TransportClient(ABC):
    """Opens streaming chat-completion requests.

    One call to open_stream() opens exactly one request. The returned
    iterator yields non-empty text fragments in arrival order and ends by
    exhausting normally; failures raise TransportError instead.
    """

    @property
    def model_id(self) -> str:
        """Model identifier the transport sends requests to."""
        return ""

    @abstractmethod
    async def open_stream(
        self, messages: list[dict[str, str]],
    ) -> AsyncIterator[str]:
        """Open a streaming request for the given conversation context.

        Args:
            messages: The full ordered history in OpenAI format, system
                      turn first when present. Never a diff.

        Returns:
            A lazy, finite, non-restartable async iterator of fragments.
            Closing it (``aclose()``) or cancelling the consuming task
            releases the underlying connection.

        Raises:
            TransportError: If the request cannot be opened. Errors while
                            reading are raised from the iterator itself.
        """
