"""
Node behaviors - what ``Node.process`` does for each node kind.

A node holds one behavior, chosen when the node is created or loaded, so
what a kind can do is fixed up front rather than looked up on each call.
"""

from typing import TYPE_CHECKING, Any, Protocol

from nodeflow.errors import ConfigurationError

if TYPE_CHECKING:
    from nodeflow.agent.orchestrator import AgentOrchestrator
    from nodeflow.graph.node import Node


class Behavior(Protocol):
    """Processing strategy attached to a node."""

    async def process(self, node: "Node", input: Any) -> Any: ...


class PlainBehavior:
    """Pass-through transform used by plain nodes."""

    async def process(self, node: "Node", input: Any) -> Any:
        return input


class AgentBehavior:
    """Runs one agent iteration through the orchestrator."""

    def __init__(self, orchestrator: "AgentOrchestrator | None"):
        self.orchestrator = orchestrator

    async def process(self, node: "Node", input: Any) -> Any:
        if self.orchestrator is None:
            raise ConfigurationError(f"Agent node {node.id} has no orchestrator configured")
        return await self.orchestrator.process_agent_node(node, input)


class BehaviorFactory:
    """
    Picks the behavior for a node from its kind.

    Agent and custom nodes share AgentBehavior; the orchestrator dispatches
    on ``agent_type`` inside the iteration body.
    """

    def __init__(self, orchestrator: "AgentOrchestrator | None" = None):
        self.orchestrator = orchestrator
        self._plain = PlainBehavior()

    def __call__(self, node: "Node") -> Behavior:
        if node.is_agent:
            return AgentBehavior(self.orchestrator)
        return self._plain
