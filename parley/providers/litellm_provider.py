"""LiteLLM adapter implementing the TransportClient interface.

Streams chat completions from any OpenAI-compatible endpoint through
LiteLLM's unified API and maps every failure onto TransportError.
No retries are attempted here; a failed request is resubmitted by the user.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import litellm

# Suppress LiteLLM's "Give Feedback / Get Help" and "Provider List" banners
litellm.suppress_debug_info = True

from parley.errors import TransportError
from parley.providers.base import TransportClient
from parley.schemas.config import ClientConfig

logger = logging.getLogger(__name__)

# Errors that mean the server is reachable but the request failed transiently
_TRANSIENT_ERRORS = (
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
    litellm.APIConnectionError,
    litellm.Timeout,
)


def _short_error_reason(error: BaseException) -> str:
    """Extract a short, user-friendly reason from a LiteLLM error.

    Maps error types and status codes to concise descriptions instead
    of dumping full JSON error payloads.
    """
    if isinstance(error, litellm.AuthenticationError):
        return "authentication failed"
    error_str = str(error).lower()
    if "rate" in error_str or "429" in error_str:
        return "rate limit"
    if "overloaded" in error_str or "529" in error_str:
        return "overloaded"
    if "timeout" in error_str or isinstance(error, TimeoutError):
        return "timeout"
    if "503" in error_str or "unavailable" in error_str:
        return "service unavailable"
    if "500" in error_str or "internal" in error_str:
        return "server error"
    if "connection" in error_str:
        return "connection error"
    # Fallback: first 80 chars of the error
    return str(error)[:80]


class LiteLLMTransport(TransportClient):
    """Streaming transport powered by litellm.acompletion(stream=True)."""

    def __init__(self, config: ClientConfig) -> None:
        self._config = config

    @property
    def model_id(self) -> str:
        return self._config.model

    @property
    def config(self) -> ClientConfig:
        return self._config

    async def open_stream(
        self, messages: list[dict[str, str]],
    ) -> AsyncIterator[str]:
        """Open the completion stream and return a fragment iterator.

        Raises:
            TransportError: If the request is rejected or cannot connect.
        """
        kwargs = self._build_completion_kwargs(messages)
        logger.debug(
            "Opening stream to %s (%d messages)", self._config.model, len(messages),
        )
        try:
            response = await litellm.acompletion(**kwargs)
        except litellm.AuthenticationError as e:
            raise TransportError(
                f"Authentication failed for {self._config.model}. "
                "Check the API key with /config or `parley config set api_key`.",
                reason="authentication failed",
            ) from e
        except litellm.BadRequestError as e:
            raise TransportError(
                f"Bad request to {self._config.model}: {e}",
                reason="bad request",
            ) from e
        except (*_TRANSIENT_ERRORS, TimeoutError) as e:
            reason = _short_error_reason(e)
            raise TransportError(
                f"Request to {self._config.model} failed ({reason})",
                reason=reason,
            ) from e
        except litellm.APIError as e:
            raise TransportError(
                f"Request to {self._config.model} failed: {e}",
                reason=_short_error_reason(e),
            ) from e

        return self._iter_fragments(response)

    async def _iter_fragments(self, response: Any) -> AsyncIterator[str]:
        """Yield non-empty content deltas until the stream is exhausted."""
        count = 0
        try:
            async for chunk in response:
                delta = self._extract_delta(chunk)
                if delta:
                    count += 1
                    yield delta
        except (*_TRANSIENT_ERRORS, TimeoutError, litellm.APIError) as e:
            reason = _short_error_reason(e)
            raise TransportError(
                f"Stream from {self._config.model} interrupted ({reason})",
                reason=reason,
            ) from e
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
            raise TransportError(
                f"Malformed response from {self._config.model}: {e}",
                reason="malformed response",
            ) from e
        finally:
            await _release(response)
            logger.debug("Stream from %s closed after %d fragments", self._config.model, count)

    @staticmethod
    def _extract_delta(chunk: Any) -> str:
        """Return the text delta carried by a streaming chunk."""
        if not chunk.choices:
            return ""
        delta = chunk.choices[0].delta
        if delta is None:
            return ""
        return delta.content or ""

    def _build_completion_kwargs(self, messages: list[dict[str, str]]) -> dict:
        """Build the kwargs dict for litellm.acompletion."""
        kwargs: dict = {
            "model": self._config.model,
            "messages": messages,
            "stream": True,
            "timeout": float(self._config.timeout),
        }

        if self._config.api_key:
            kwargs["api_key"] = self._config.api_key

        if self._config.base_url:
            kwargs["api_base"] = self._config.base_url

        if self._config.provider:
            kwargs["custom_llm_provider"] = self._config.provider

        return kwargs


async def _release(response: Any) -> None:
    """Close the underlying HTTP stream if the wrapper exposes a closer."""
    closer = getattr(response, "aclose", None)
    if closer is None:
        return
    try:
        await closer()
    except Exception:
        logger.debug("Error while closing completion stream", exc_info=True)
