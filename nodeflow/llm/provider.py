"""Language-model collaborator used by the planner, built-in tools and custom code."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class LLMResponse:
    """First choice of a chat completion plus usage."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None


class LLMProvider(ABC):
    """
    Chat-completion backend.

    Subclasses raise ConfigurationError when they cannot authenticate and
    LLMRequestError when the request fails or the endpoint rejects it.
    """

    @abstractmethod
    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int | None = None,
        temperature: float | None = None,
        node: Any = None,
    ) -> LLMResponse:
        """
        Run one chat completion.

        Args:
            messages: [{"role": "user" | "assistant", "content": ...}]
            system: System prompt, sent ahead of ``messages``
            max_tokens: Completion budget; None means the provider default
            temperature: Sampling temperature; None means the provider default
            node: Node the call is made for, so its API log can record it
        """

    def has_credentials(self) -> bool:
        return True

    async def complete_text(self, prompt: str, system: str = "", node: Any = None) -> str:
        """Send a single user message and return the reply text."""
        response = await self.acomplete(
            [{"role": "user", "content": prompt}], system=system, node=node
        )
        return response.content
