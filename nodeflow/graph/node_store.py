"""
Node Store - owns node entities.

Creation applies kind-specific defaults and a collision-resistant id;
deletion does NOT cascade to connections. Callers delete a node's
connections through the ConnectionStore first (Workflow.delete_node does).
"""

import itertools
import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from nodeflow.graph.behavior import Behavior, BehaviorFactory
from nodeflow.graph.node import (
    DEFAULT_AGENT_SYSTEM_PROMPT,
    DEFAULT_REFLECTION_PROMPT,
    Node,
    NodeKind,
)

logger = logging.getLogger(__name__)

MIN_WIDTH, MAX_WIDTH = 100, 800
MIN_HEIGHT, MAX_HEIGHT = 50, 600

ALIGNMENTS = ("left", "right", "top", "bottom", "center-h", "center-v")

_id_counter = itertools.count(1)


def generate_id(prefix: str) -> str:
    """``<prefix>_<ms>_<random>``; the counter keeps ids unique within a process."""
    millis = int(datetime.now(UTC).timestamp() * 1000)
    return f"{prefix}_{millis}_{next(_id_counter)}{secrets.token_hex(4)}"


def kind_defaults(kind: NodeKind) -> dict[str, Any]:
    """Field defaults applied at creation for each node kind."""
    if kind == NodeKind.PLAIN:
        return {"width": 200, "height": 150}
    return {
        "width": 240,
        "height": 200,
        "system_prompt": DEFAULT_AGENT_SYSTEM_PROMPT,
        "agent_type": "custom" if kind == NodeKind.CUSTOM else "default",
        "tools": [],
        "memory": None,
        "max_iterations": 5,
        "current_iteration": 0,
        "is_iterating": False,
        "auto_iterate": True,
        "custom_code": "",
        "enable_reflection": True,
        "reflection_prompt": DEFAULT_REFLECTION_PROMPT,
        "reflection_frequency": 2,
    }


class NodeStore:
    """
    In-memory collection of nodes, in z-order (last is topmost).

    Example:
        store = NodeStore()
        node = store.create_node("agent", 100, 100, {"title": "Researcher"})
    """

    def __init__(self, behavior_factory: Callable[[Node], Behavior] | None = None):
        self._nodes: list[Node] = []
        self.behavior_factory = behavior_factory or BehaviorFactory()

    # === CRUD ===

    def create_node(
        self,
        kind: NodeKind | str,
        x: float,
        y: float,
        options: dict[str, Any] | None = None,
    ) -> Node:
        """
        Create a node with kind defaults and a fresh id.

        Args:
            kind: "plain", "agent" or "custom"
            x: Left coordinate
            y: Top coordinate
            options: Field overrides (title, content, max_iterations, ...)

        Returns:
            The new node, with empty edge lists
        """
        kind = NodeKind(kind)
        node_id = generate_id("node")

        values: dict[str, Any] = {**kind_defaults(kind), **(options or {})}
        for key in ("id", "kind", "inputs", "outputs", "behavior"):
            values.pop(key, None)
        values.setdefault("title", f"{kind.value} Node {node_id}")

        node = Node(id=node_id, kind=kind, x=x, y=y, **values)
        node.behavior = self.behavior_factory(node)
        self._nodes.append(node)

        logger.debug(f"Created {kind.value} node {node_id}")
        return node

    def update_node(self, node_id: str, updates: dict[str, Any]) -> Node | None:
        """Apply field updates; a value the field rejects raises pydantic.ValidationError."""
        node = self.get_node(node_id)
        if node is None:
            return None

        for key, value in updates.items():
            if key in ("id", "kind", "inputs", "outputs"):
                continue
            setattr(node, key, value)
        node.touch()
        return node

    def delete_node(self, node_id: str) -> bool:
        """Remove a node. Its connections must already be gone."""
        for index, node in enumerate(self._nodes):
            if node.id == node_id:
                del self._nodes[index]
                logger.debug(f"Deleted node {node_id}")
                return True
        return False

    def get_node(self, node_id: str) -> Node | None:
        for node in self._nodes:
            if node.id == node_id:
                return node
        return None

    def get_all_nodes(self) -> list[Node]:
        return list(self._nodes)

    def get_nodes_by_kind(self, kind: NodeKind | str) -> list[Node]:
        return [n for n in self._nodes if n.kind == NodeKind(kind)]

    def clear(self) -> None:
        self._nodes = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return any(n.id == node_id for n in self._nodes)

    # === SELECTION ===

    def select_node(self, node_id: str, exclusive: bool = True) -> Node | None:
        if exclusive:
            self.deselect_all()
        node = self.get_node(node_id)
        if node is not None:
            node.selected = True
        return node

    def deselect_all(self) -> None:
        for node in self._nodes:
            node.selected = False

    def get_selected_nodes(self) -> list[Node]:
        return [n for n in self._nodes if n.selected]

    # === GEOMETRY ===

    def move_nodes(self, node_ids: list[str], dx: float, dy: float) -> None:
        for node_id in node_ids:
            node = self.get_node(node_id)
            if node is not None:
                node.x += dx
                node.y += dy
                node.touch()

    def resize_node(self, node_id: str, width: float, height: float) -> Node | None:
        """Resize with width clamped to [100, 800] and height to [50, 600]."""
        node = self.get_node(node_id)
        if node is None:
            return None
        node.width = max(MIN_WIDTH, min(MAX_WIDTH, width))
        node.height = max(MIN_HEIGHT, min(MAX_HEIGHT, height))
        node.touch()
        return node

    def get_node_at(self, x: float, y: float) -> Node | None:
        """Topmost node containing the point."""
        for node in reversed(self._nodes):
            if node.x <= x <= node.x + node.width and node.y <= y <= node.y + node.height:
                return node
        return None

    def align_nodes(self, node_ids: list[str], alignment: str) -> None:
        """Align two or more nodes along an edge or center line."""
        if alignment not in ALIGNMENTS:
            raise ValueError(f"Unknown alignment: {alignment}")

        nodes = [n for n in (self.get_node(i) for i in node_ids) if n is not None]
        if len(nodes) < 2:
            return

        if alignment == "left":
            target = min(n.x for n in nodes)
            for n in nodes:
                n.x = target
        elif alignment == "right":
            target = max(n.x + n.width for n in nodes)
            for n in nodes:
                n.x = target - n.width
        elif alignment == "top":
            target = min(n.y for n in nodes)
            for n in nodes:
                n.y = target
        elif alignment == "bottom":
            target = max(n.y + n.height for n in nodes)
            for n in nodes:
                n.y = target - n.height
        elif alignment == "center-h":
            target = sum(n.x + n.width / 2 for n in nodes) / len(nodes)
            for n in nodes:
                n.x = target - n.width / 2
        else:
            target = sum(n.y + n.height / 2 for n in nodes) / len(nodes)
            for n in nodes:
                n.y = target - n.height / 2

        for n in nodes:
            n.touch()

    def distribute_nodes(self, node_ids: list[str], direction: str, spacing: float = 50) -> None:
        """Lay three or more nodes out with equal gaps, keeping the first in place."""
        nodes = [n for n in (self.get_node(i) for i in node_ids) if n is not None]
        if len(nodes) < 3:
            return

        if direction == "horizontal":
            nodes.sort(key=lambda n: n.x)
            current = nodes[0].x
            for index, node in enumerate(nodes):
                if index > 0:
                    current += nodes[index - 1].width + spacing
                node.x = current
                node.touch()
        elif direction == "vertical":
            nodes.sort(key=lambda n: n.y)
            current = nodes[0].y
            for index, node in enumerate(nodes):
                if index > 0:
                    current += nodes[index - 1].height + spacing
                node.y = current
                node.touch()
        else:
            raise ValueError(f"Unknown direction: {direction}")

    # === CLONING / SERIALIZATION ===

    def clone_node(self, node_id: str, offset_x: float = 50, offset_y: float = 50) -> Node | None:
        """Copy a node with a new id, empty edge lists and reset runtime flags."""
        original = self.get_node(node_id)
        if original is None:
            return None

        options = original.model_dump(
            exclude={
                "id",
                "kind",
                "x",
                "y",
                "inputs",
                "outputs",
                "selected",
                "processing",
                "error",
                "has_been_processed",
                "is_iterating",
                "current_iteration",
                "created_at",
                "updated_at",
            }
        )
        options["title"] = f"{original.title} (Copy)"
        return self.create_node(
            original.kind, original.x + offset_x, original.y + offset_y, options
        )

    def serialize(self) -> list[dict[str, Any]]:
        return [node.to_dict() for node in self._nodes]

    def deserialize(self, data: list[dict[str, Any]]) -> None:
        """Replace every node with the persisted ones, re-attaching behaviors."""
        nodes = []
        for node_data in data:
            node = Node.from_dict(node_data)
            node.behavior = self.behavior_factory(node)
            nodes.append(node)
        self._nodes = nodes
        logger.debug(f"Loaded {len(nodes)} nodes")
