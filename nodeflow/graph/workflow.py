"""
Workflow - one graph: its nodes, its connections and how they persist.

The stores keep their split responsibilities (a NodeStore never touches
edges); this facade is where node deletion cascades to the connections.

Persisted shape::

    {"nodes": [...], "connections": [...]}
"""

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from nodeflow.graph.behavior import Behavior, BehaviorFactory
from nodeflow.graph.connection import Connection, ConnectionRuleSet, ConnectionStore
from nodeflow.graph.node import Node, NodeKind
from nodeflow.graph.node_store import NodeStore

logger = logging.getLogger(__name__)


class Workflow:
    """
    A node graph with cascading deletes and JSON persistence.

    Args:
        behavior_factory: Chooses each node's behavior (plain or agent)
        rules: Connection rules injected into the ConnectionStore

    Example:
        workflow = Workflow(BehaviorFactory(orchestrator))
        a = workflow.create_node("plain", 0, 0, {"title": "Input"})
        b = workflow.create_node("agent", 300, 0)
        workflow.connect(a.id, b.id)
        workflow.save("flow.json")
    """

    def __init__(
        self,
        behavior_factory: Callable[[Node], Behavior] | None = None,
        rules: ConnectionRuleSet | None = None,
    ):
        self.behavior_factory = behavior_factory or BehaviorFactory()
        self.nodes = NodeStore(self.behavior_factory)
        self.connections = ConnectionStore(self.nodes, rules)

    # === NODES ===

    def create_node(
        self,
        kind: NodeKind | str = NodeKind.PLAIN,
        x: float = 0,
        y: float = 0,
        options: dict[str, Any] | None = None,
    ) -> Node:
        return self.nodes.create_node(kind, x, y, options)

    def get_node(self, node_id: str) -> Node | None:
        return self.nodes.get_node(node_id)

    def delete_node(self, node_id: str) -> bool:
        """Delete a node after removing every connection that touches it."""
        if node_id not in self.nodes:
            return False
        removed = self.connections.delete_node_connections(node_id)
        if removed:
            logger.debug(f"Removed {removed} connection(s) of node {node_id}")
        return self.nodes.delete_node(node_id)

    # === CONNECTIONS ===

    def connect(
        self,
        from_id: str,
        to_id: str,
        options: dict[str, Any] | None = None,
    ) -> Connection:
        """Create an edge; raises the ConnectionStore's errors unchanged."""
        return self.connections.create_connection(from_id, to_id, options)

    def disconnect(self, connection_id: str) -> bool:
        return self.connections.delete_connection(connection_id)

    def has_cycle(self) -> bool:
        return self.connections.has_cycle()

    def topological_order(self) -> list[Node]:
        """Nodes in dependency order (meaningful only for acyclic graphs)."""
        order = self.connections.get_topological_sort()
        return [node for node_id in order if (node := self.nodes.get_node(node_id))]

    def source_nodes(self) -> list[Node]:
        """Nodes with no incoming edges, in topological order."""
        return [node for node in self.topological_order() if not node.inputs]

    def clear(self) -> None:
        self.connections.clear()
        self.nodes.clear()

    # === PERSISTENCE ===

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": self.nodes.serialize(),
            "connections": self.connections.serialize(),
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        behavior_factory: Callable[[Node], Behavior] | None = None,
        rules: ConnectionRuleSet | None = None,
    ) -> "Workflow":
        """Rebuild a workflow; nodes first so connections find their endpoints."""
        workflow = cls(behavior_factory, rules)
        workflow.nodes.deserialize(data.get("nodes", []))
        workflow.connections.deserialize(data.get("connections", []))
        logger.info(
            f"Loaded workflow with {len(workflow.nodes)} nodes and "
            f"{len(workflow.connections.get_all_connections())} connections"
        )
        return workflow

    def save(self, path: str | Path) -> Path:
        """Write the workflow as JSON, atomically (write .tmp, then rename)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)
        return path

    @classmethod
    def load(
        cls,
        path: str | Path,
        behavior_factory: Callable[[Node], Behavior] | None = None,
        rules: ConnectionRuleSet | None = None,
    ) -> "Workflow":
        """
        Load a workflow saved by ``save()``.

        Raises:
            FileNotFoundError: if ``path`` does not exist
            json.JSONDecodeError: if the file is not valid JSON
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Workflow not found: {path}")
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls.from_dict(data, behavior_factory, rules)
