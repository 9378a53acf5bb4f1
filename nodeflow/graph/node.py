"""
Node Protocol - the unit of computation in a workflow graph.

A Node carries input/output content plus runtime flags. What a node DOES is
decided by its ``behavior`` (composition, see behavior.py), not by its class:

- plain nodes pass their input through
- agent nodes run the bounded plan/act loop
- custom nodes are agent nodes whose iteration body is user code
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from nodeflow.graph.memory import AgentMemory

DEFAULT_AGENT_SYSTEM_PROMPT = (
    "You are an autonomous agent that reasons step by step. "
    "You can access various tools, including MCP tools for search, memory, and documentation. "
    "Use these tools whenever they help you fulfill the user's request."
)

DEFAULT_REFLECTION_PROMPT = (
    "Reflect on your previous actions and results. What worked well? "
    "What could be improved? How can you better solve the problem?"
)

# Runtime flags that are never persisted and are reset on load
RUNTIME_FIELDS = {"selected", "processing", "error"}


class NodeKind(StrEnum):
    """Kinds of node a store can create."""

    PLAIN = "plain"
    AGENT = "agent"
    CUSTOM = "custom"


def now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


class Node(BaseModel):
    """
    A node in the workflow graph.

    Edge bookkeeping (``inputs`` / ``outputs``) holds connection ids and is
    mutated only by the ConnectionStore.
    """

    id: str
    kind: NodeKind = NodeKind.PLAIN
    title: str = ""

    # Geometry
    x: float = 0
    y: float = 0
    width: float = 200
    height: float = 150

    # Content and runtime state
    content: Any = ""
    input_content: str = ""
    selected: bool = False
    processing: bool = False
    error: str | None = None
    has_been_processed: bool = False

    # Connection bookkeeping (connection ids, in creation order)
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)

    # Agent-only fields
    system_prompt: str = ""
    agent_type: str = "default"
    tools: list[str] = Field(default_factory=list)
    memory: AgentMemory | None = None
    max_iterations: int = Field(default=5, ge=1)
    current_iteration: int = Field(default=0, ge=0)
    is_iterating: bool = False
    auto_iterate: bool = True
    custom_code: str = ""

    # Reflection every `reflection_frequency` iterations, plus once at the limit
    enable_reflection: bool = True
    reflection_prompt: str = ""
    reflection_frequency: int = Field(default=2, ge=1)

    # Sanitized chat request/response records made on behalf of this node
    api_logs: list[dict[str, Any]] = Field(default_factory=list, exclude=True)

    # Behavior chosen at construction time; never serialized
    behavior: Any = Field(default=None, exclude=True)

    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    model_config = {"extra": "allow", "validate_assignment": True}

    @property
    def is_agent(self) -> bool:
        return self.kind in (NodeKind.AGENT, NodeKind.CUSTOM)

    def touch(self) -> None:
        self.updated_at = now_ms()

    def reset_input(self) -> None:
        self.input_content = ""

    async def process(self, input: Any) -> Any:
        """Process ``input`` through this node's behavior."""
        if self.behavior is None:
            raise RuntimeError(f"Node {self.id} has no behavior attached")
        return await self.behavior.process(self, input)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for persistence, dropping runtime-only flags."""
        return self.model_dump(mode="json", exclude=RUNTIME_FIELDS)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Node":
        """Rebuild a node from persisted data with runtime flags reset."""
        values = {k: v for k, v in data.items() if k not in RUNTIME_FIELDS}
        node = cls.model_validate(values)
        node.touch()
        return node
