"""
Agent Memory - per-node working state for agent nodes.

Each agent node owns one AgentMemory, created lazily on first use:
- context: recent inputs the planner should see (bounded)
- history: actions taken and their results (bounded)
- store: arbitrary key/value state (current plan, per-iteration results, ...)

Memory is cleared explicitly, never implicitly.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

MAX_CONTEXT_ENTRIES = 50
MAX_HISTORY_ENTRIES = 100

MEMORY_SECTIONS = ("context", "history", "store")


def _now() -> datetime:
    return datetime.now(UTC)


class MemoryEntry(BaseModel):
    """One item of planner-visible context."""

    timestamp: datetime = Field(default_factory=_now)
    content: Any = None


class HistoryEntry(BaseModel):
    """One recorded action and its outcome."""

    timestamp: datetime = Field(default_factory=_now)
    action: dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class AgentMemory(BaseModel):
    """Context, action history and key/value store of a single agent node."""

    context: list[MemoryEntry] = Field(default_factory=list)
    history: list[HistoryEntry] = Field(default_factory=list)
    store: dict[str, Any] = Field(default_factory=dict)

    model_config = {"arbitrary_types_allowed": True}

    def add_to_context(self, content: Any) -> list[MemoryEntry]:
        """Append to context, dropping the oldest entry past the bound."""
        self.context.append(MemoryEntry(content=content))
        if len(self.context) > MAX_CONTEXT_ENTRIES:
            self.context.pop(0)
        return self.context

    def add_to_history(self, action: dict[str, Any], result: Any) -> list[HistoryEntry]:
        """Record an action and its result, dropping the oldest past the bound."""
        self.history.append(HistoryEntry(action=action, result=result))
        if len(self.history) > MAX_HISTORY_ENTRIES:
            self.history.pop(0)
        return self.history

    def remember(self, key: str, value: Any) -> Any:
        self.store[key] = value
        logger.debug(f"Agent memory updated: {key}")
        return value

    def recall(self, key: str, default: Any = None) -> Any:
        return self.store.get(key, default)

    def context_text(self) -> str:
        """Newline-joined context contents, as shown to the planner."""
        if not self.context:
            return "No context available"
        return "\n".join(str(entry.content) for entry in self.context)

    def clear(self, section: str = "all") -> "AgentMemory":
        """
        Clear one section or everything.

        Args:
            section: "all", "context", "history" or "store"

        Raises:
            ValueError: if the section name is unknown
        """
        if section == "all":
            self.context = []
            self.history = []
            self.store = {}
        elif section == "context":
            self.context = []
        elif section == "history":
            self.history = []
        elif section == "store":
            self.store = {}
        else:
            raise ValueError(f"Invalid memory section: {section}")

        logger.info(f"Agent memory cleared: {section}")
        return self

    def export_json(self) -> str:
        return self.model_dump_json(indent=2)

    @classmethod
    def import_json(cls, data: str) -> "AgentMemory":
        memory = cls.model_validate_json(data)
        logger.info("Agent memory imported successfully")
        return memory


def ensure_memory(node: Any) -> AgentMemory:
    """Return the node's memory, creating it on first use."""
    if node.memory is None:
        node.memory = AgentMemory()
    return node.memory
