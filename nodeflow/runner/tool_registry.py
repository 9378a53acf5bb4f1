"""Tool catalog and dispatch for agent nodes."""

import inspect
import logging
import re
import types
import typing
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from nodeflow.errors import ToolNotFoundError

if TYPE_CHECKING:
    from nodeflow.graph.node import Node
    from nodeflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_case(name: str) -> str:
    """maxLength -> max_length, so camelCase params reach Python tools."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _schema_type(annotation: Any) -> Any:
    """int | None -> int, dict[str, Any] -> dict; other annotations unchanged."""
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return _schema_type(args[0])
        return annotation
    return origin or annotation


class ToolCategory(StrEnum):
    """Groups tools are listed under."""

    TEXT_PROCESSING = "text-processing"
    IMAGE_PROCESSING = "image-processing"
    OPENAI = "openai"
    DATA_MANIPULATION = "data-manipulation"
    EXTERNAL_API = "external-api"
    WORKFLOW = "workflow"
    MCP_MEMORY = "mcp-memory"
    MCP_SEARCH = "mcp-search"
    MCP_DOCUMENTATION = "mcp-documentation"


# (params, node) -> result
ToolExecutor = Callable[[dict[str, Any], "Node | None"], Awaitable[Any]]


@dataclass
class AgentTool:
    """A named async capability an agent can plan with."""

    id: str
    name: str
    description: str
    category: str
    execute: ToolExecutor
    parameters: dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        """One line as listed in planning prompts."""
        return f"{self.id}: {self.name} - {self.description}"


class ToolRegistry:
    """
    Catalog of tools keyed by id.

    Registries are plain instances handed to the planner and the custom-code
    sandbox, so tests can build one with just the fixture tools they need.

    Example:
        registry = ToolRegistry()

        @tool(id="text-upper", category=ToolCategory.TEXT_PROCESSING)
        def upper(text: str) -> str:
            return text.upper()

        registry.register_function(upper)
        await registry.execute_tool("text-upper", {"text": "hi"})
    """

    def __init__(self, event_bus: "EventBus | None" = None):
        self._tools: dict[str, AgentTool] = {}
        self.event_bus = event_bus

    # === REGISTRATION ===

    def register(self, agent_tool: AgentTool) -> None:
        """Register a tool, replacing any earlier tool with the same id."""
        if agent_tool.id in self._tools:
            logger.warning(f"Tool '{agent_tool.id}' is already registered; replacing it")
        self._tools[agent_tool.id] = agent_tool

    def register_function(
        self,
        func: Callable,
        id: str | None = None,
        name: str | None = None,
        description: str | None = None,
        category: str | None = None,
    ) -> AgentTool:
        """
        Register a plain (sync or async) function as a tool.

        Keyword arguments override metadata set by the @tool decorator. Tool
        params are passed as keyword arguments; a ``node`` parameter, if the
        function declares one, receives the calling node.

        Returns:
            The registered AgentTool
        """
        metadata = getattr(func, "_tool_metadata", {})
        tool_id = id or metadata.get("id") or func.__name__
        tool_name = name or metadata.get("name") or func.__name__
        tool_desc = (
            description or metadata.get("description") or func.__doc__ or f"Execute {tool_name}"
        )
        tool_category = category or metadata.get("category") or ToolCategory.EXTERNAL_API

        sig = inspect.signature(func)
        accepts_node = "node" in sig.parameters
        properties = {}
        required = []

        for param_name, param in sig.parameters.items():
            if param_name in ("self", "cls", "node"):
                continue

            param_type = "string"  # Default
            if param.annotation != inspect.Parameter.empty:
                annotation = _schema_type(param.annotation)
                if annotation is int:
                    param_type = "integer"
                elif annotation is float:
                    param_type = "number"
                elif annotation is bool:
                    param_type = "boolean"
                elif annotation is dict:
                    param_type = "object"
                elif annotation is list:
                    param_type = "array"

            properties[param_name] = {"type": param_type}

            if param.default == inspect.Parameter.empty:
                required.append(param_name)

        async def executor(params: dict[str, Any], node: "Node | None" = None) -> Any:
            kwargs = {}
            for key, value in params.items():
                key = key if key in properties else _snake_case(key)
                if key in properties:
                    kwargs[key] = value
            if accepts_node:
                kwargs["node"] = node
            result = func(**kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result

        agent_tool = AgentTool(
            id=tool_id,
            name=tool_name,
            description=tool_desc.strip(),
            category=str(tool_category),
            execute=executor,
            parameters={"type": "object", "properties": properties, "required": required},
        )
        self.register(agent_tool)
        return agent_tool

    def unregister(self, tool_id: str) -> bool:
        return self._tools.pop(tool_id, None) is not None

    # === LOOKUP ===

    def has_tool(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def get_all_tools(self) -> list[AgentTool]:
        return list(self._tools.values())

    def get_tools_by_category(self, category: str) -> list[AgentTool]:
        return [t for t in self._tools.values() if t.category == category]

    def get_tool_by_id(self, tool_id: str) -> AgentTool | None:
        return self._tools.get(tool_id)

    def get_registered_ids(self) -> list[str]:
        return list(self._tools.keys())

    def get_tools_for_node(self, node: "Node") -> list[AgentTool]:
        """Tools offered to a node when planning: its own list, or all of them."""
        if not node.tools:
            return self.get_all_tools()
        return [self._tools[t] for t in node.tools if t in self._tools]

    # === EXECUTION ===

    async def execute_tool(
        self,
        tool_id: str,
        params: dict[str, Any],
        node: "Node | None" = None,
    ) -> Any:
        """
        Run a tool and return its result.

        Failures are logged and re-raised so the caller can apply its own
        policy.

        Raises:
            ToolNotFoundError: if ``tool_id`` is not registered
        """
        agent_tool = self.get_tool_by_id(tool_id)
        if agent_tool is None:
            raise ToolNotFoundError(tool_id)

        node_id = node.id if node is not None else ""
        logger.info(
            f'Executing tool "{agent_tool.name}" (ID: {agent_tool.id})',
            extra={"tool_id": agent_tool.id},
        )
        if self.event_bus:
            await self.event_bus.emit_tool_call_started(
                node_id=node_id, tool_id=tool_id, tool_input=params
            )

        try:
            result = await agent_tool.execute(params, node)
        except Exception as e:
            logger.error(
                f'Error executing tool "{agent_tool.name}": {e}',
                extra={"tool_id": agent_tool.id},
            )
            if self.event_bus:
                await self.event_bus.emit_tool_call_completed(
                    node_id=node_id, tool_id=tool_id, result=str(e), is_error=True
                )
            raise

        logger.info(
            f'Tool "{agent_tool.name}" executed successfully',
            extra={"tool_id": agent_tool.id},
        )
        if self.event_bus:
            await self.event_bus.emit_tool_call_completed(
                node_id=node_id, tool_id=tool_id, result=str(result)[:200]
            )
        return result

    def __len__(self) -> int:
        return len(self._tools)


def tool(
    id: str | None = None,
    name: str | None = None,
    description: str | None = None,
    category: str | None = None,
) -> Callable:
    """
    Decorator to mark a function as a tool.

    Usage:
        @tool(id="data-word-count", category=ToolCategory.DATA_MANIPULATION)
        def word_count(text: str) -> int:
            return len(text.split())

        registry.register_function(word_count)
    """

    def decorator(func: Callable) -> Callable:
        func._tool_metadata = {
            "id": id,
            "name": name or func.__name__,
            "description": description or func.__doc__,
            "category": category,
        }
        return func

    return decorator
