"""Graph structures: nodes, connections, agent memory, plans and the workflow runner."""

from nodeflow.graph.behavior import AgentBehavior, Behavior, BehaviorFactory, PlainBehavior
from nodeflow.graph.connection import (
    Connection,
    ConnectionRule,
    ConnectionRuleSet,
    ConnectionStore,
    TempConnection,
)
from nodeflow.graph.memory import AgentMemory, HistoryEntry, MemoryEntry, ensure_memory
from nodeflow.graph.node import Node, NodeKind
from nodeflow.graph.node_store import NodeStore, generate_id
from nodeflow.graph.plan import Plan, PlanStep, parse_plan
from nodeflow.graph.runner import WorkflowRunner
from nodeflow.graph.workflow import Workflow

__all__ = [
    # Node
    "Node",
    "NodeKind",
    "NodeStore",
    "generate_id",
    # Behavior
    "Behavior",
    "BehaviorFactory",
    "PlainBehavior",
    "AgentBehavior",
    # Connection
    "Connection",
    "ConnectionRule",
    "ConnectionRuleSet",
    "ConnectionStore",
    "TempConnection",
    # Memory
    "AgentMemory",
    "MemoryEntry",
    "HistoryEntry",
    "ensure_memory",
    # Plan
    "Plan",
    "PlanStep",
    "parse_plan",
    # Workflow
    "Workflow",
    "WorkflowRunner",
]
