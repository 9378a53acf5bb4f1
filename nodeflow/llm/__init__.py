"""LLM provider abstraction."""

from nodeflow.llm.chat_endpoint import ChatEndpointProvider
from nodeflow.llm.provider import LLMProvider, LLMResponse

__all__ = [
    "ChatEndpointProvider",
    "LLMProvider",
    "LLMResponse",
]
