"""
nodeflow - compose node graphs and run autonomous agent nodes inside them.

Plain nodes pass content along their connections; agent nodes run a bounded
plan/act loop against a language-model endpoint and a registry of tools.
"""

from nodeflow.agent import AgentOrchestrator, IterationQueue, Planner
from nodeflow.config import RuntimeConfig
from nodeflow.errors import NodeflowError
from nodeflow.graph import (
    BehaviorFactory,
    Connection,
    ConnectionRuleSet,
    ConnectionStore,
    Node,
    NodeKind,
    NodeStore,
    Workflow,
    WorkflowRunner,
)
from nodeflow.llm import ChatEndpointProvider, LLMProvider, LLMResponse
from nodeflow.runner import RemoteToolClient, ToolRegistry, register_builtin_tools, tool
from nodeflow.runtime import EventBus, EventType

__version__ = "0.1.0"

__all__ = [
    # Graph
    "Node",
    "NodeKind",
    "NodeStore",
    "Connection",
    "ConnectionRuleSet",
    "ConnectionStore",
    "BehaviorFactory",
    "Workflow",
    "WorkflowRunner",
    # Agents
    "AgentOrchestrator",
    "IterationQueue",
    "Planner",
    # Tools
    "ToolRegistry",
    "RemoteToolClient",
    "register_builtin_tools",
    "tool",
    # LLM
    "LLMProvider",
    "LLMResponse",
    "ChatEndpointProvider",
    # Runtime
    "EventBus",
    "EventType",
    "RuntimeConfig",
    "NodeflowError",
]
