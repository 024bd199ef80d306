"""Parley transport layer.

All chat-completion traffic goes through a TransportClient; the default
implementation routes requests via LiteLLM.
"""

from parley.providers.base import TransportClient
from parley.providers.litellm_provider import LiteLLMTransport

__all__ = [
    "LiteLLMTransport",
    "TransportClient",
]
