"""Shared fixtures: a scripted language model and small registries."""

from collections.abc import Callable
from typing import Any

import pytest

from nodeflow.agent.orchestrator import AgentOrchestrator
from nodeflow.agent.planner import Planner
from nodeflow.graph.behavior import BehaviorFactory
from nodeflow.graph.workflow import Workflow
from nodeflow.llm.provider import LLMProvider, LLMResponse
from nodeflow.runner.tool_registry import ToolCategory, ToolRegistry, tool
from nodeflow.runtime.event_bus import EventBus

# A reply is a string, an exception to raise, or a callable(messages, system) -> str
Reply = str | Exception | Callable[[list[dict[str, Any]], str], str]


class FakeLLMProvider(LLMProvider):
    """Returns scripted replies in order, then ``default_reply``."""

    def __init__(
        self,
        replies: list[Reply] | None = None,
        default_reply: Reply = "",
        credentials: bool = True,
    ):
        self.replies = list(replies or [])
        self.default_reply = default_reply
        self.credentials = credentials
        self.calls: list[dict[str, Any]] = []

    def has_credentials(self) -> bool:
        return self.credentials

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int | None = None,
        temperature: float | None = None,
        node: Any = None,
    ) -> LLMResponse:
        self.calls.append({"messages": messages, "system": system, "temperature": temperature})
        reply = self.replies.pop(0) if self.replies else self.default_reply
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(messages, system)
        return LLMResponse(content=reply, model="fake-model")


@tool(id="text-echo", name="Echo", category=ToolCategory.TEXT_PROCESSING)
def echo(text: str = "") -> str:
    """Return the text unchanged."""
    return text


@tool(id="text-upper", name="Upper", category=ToolCategory.TEXT_PROCESSING)
async def upper(text: str = "") -> str:
    """Upper-case the text."""
    return text.upper()


@pytest.fixture
def llm() -> FakeLLMProvider:
    return FakeLLMProvider()


@pytest.fixture
def registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_function(echo)
    registry.register_function(upper)
    return registry


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def planner(llm, registry, event_bus) -> Planner:
    return Planner(llm, registry, event_bus=event_bus)


@pytest.fixture
def orchestrator(planner, event_bus) -> AgentOrchestrator:
    return AgentOrchestrator(planner, event_bus=event_bus)


@pytest.fixture
def workflow(orchestrator) -> Workflow:
    return Workflow(BehaviorFactory(orchestrator))
