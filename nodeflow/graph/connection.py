"""
Connection Protocol - directed edges between nodes.

Connections define:
1. Source (``from``) and target (``to``) nodes
2. Port names and display metadata
3. Nothing about execution: the workflow runner follows output edges

The ConnectionStore is the only component allowed to mutate a node's
``inputs`` / ``outputs`` lists. Every edge it holds satisfies:
- from != to (no self-loops)
- no duplicate (from, to) pair
- both endpoints are live nodes at creation time
"""

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from nodeflow.errors import ConnectionNotAllowedError, InvalidNodeError
from nodeflow.graph.node import Node, now_ms
from nodeflow.graph.node_store import NodeStore, generate_id

logger = logging.getLogger(__name__)

WILDCARD = "*"

# Fields update_connection() refuses to change
IMMUTABLE_FIELDS = {"id", "from_id", "to_id", "from", "to"}

ConnectionValidator = Callable[[Node, Node], bool]


class Connection(BaseModel):
    """
    A directed edge ``from -> to``.

    Serialized with the wire names ``from``, ``to``, ``fromPort``, ``toPort``,
    ``createdAt`` and ``updatedAt``.
    """

    id: str
    from_id: str = Field(alias="from")
    to_id: str = Field(alias="to")
    from_port: str = "output"
    to_port: str = "input"
    type: str = "data"
    label: str = ""
    color: str = "#4a90e2"
    style: str = "solid"
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)

    model_config = {
        "extra": "allow",
        "alias_generator": to_camel,
        "populate_by_name": True,
    }

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class ConnectionRule:
    from_kind: str
    to_kind: str
    validator: ConnectionValidator


class ConnectionRuleSet:
    """
    Validators keyed by ordered (from_kind, to_kind) pairs.

    Lookup goes from most to least specific: exact pair, ``*->to``,
    ``from->*``, then ``*->*``. With no matching rule a connection is allowed.
    """

    def __init__(self) -> None:
        self._rules: dict[tuple[str, str], ConnectionRule] = {}

    def register(
        self,
        from_kind: str,
        to_kind: str,
        validator: ConnectionValidator | None = None,
    ) -> None:
        self._rules[(str(from_kind), str(to_kind))] = ConnectionRule(
            from_kind=str(from_kind),
            to_kind=str(to_kind),
            validator=validator or (lambda _from, _to: True),
        )

    def find_rule(self, from_kind: str, to_kind: str) -> ConnectionRule | None:
        for key in (
            (from_kind, to_kind),
            (WILDCARD, to_kind),
            (from_kind, WILDCARD),
            (WILDCARD, WILDCARD),
        ):
            rule = self._rules.get(key)
            if rule is not None:
                return rule
        return None

    def allows(self, from_node: Node, to_node: Node) -> bool:
        rule = self.find_rule(str(from_node.kind), str(to_node.kind))
        if rule is None:
            return True
        return bool(rule.validator(from_node, to_node))

    def __len__(self) -> int:
        return len(self._rules)


@dataclass
class TempConnection:
    """An edge being dragged in the UI, not yet part of the graph."""

    from_id: str
    from_x: float
    from_y: float
    to_x: float
    to_y: float


class ConnectionStore:
    """
    Owns every connection of one graph.

    Example:
        connections = ConnectionStore(node_store)
        connections.create_connection(a.id, b.id)
        connections.get_topological_sort()
    """

    def __init__(self, node_store: NodeStore, rules: ConnectionRuleSet | None = None):
        self.node_store = node_store
        self.rules = rules or ConnectionRuleSet()
        self._connections: list[Connection] = []
        self.temp_connection: TempConnection | None = None

    # === RULES ===

    def register_connection_rule(
        self,
        from_kind: str,
        to_kind: str,
        validator: ConnectionValidator | None = None,
    ) -> None:
        self.rules.register(from_kind, to_kind, validator)

    def can_connect(self, from_node: Node, to_node: Node) -> bool:
        """Whether an edge from ``from_node`` to ``to_node`` may be created."""
        if from_node.id == to_node.id:
            return False
        if self.is_connected(from_node.id, to_node.id):
            return False
        return self.rules.allows(from_node, to_node)

    # === MUTATION ===

    def create_connection(
        self,
        from_id: str,
        to_id: str,
        options: dict[str, Any] | None = None,
    ) -> Connection:
        """
        Validate and create an edge, then record it on both endpoints.

        Raises:
            InvalidNodeError: if either endpoint is unknown
            ConnectionNotAllowedError: if can_connect() rejects the pair
        """
        from_node = self.node_store.get_node(from_id)
        to_node = self.node_store.get_node(to_id)

        if from_node is None:
            raise InvalidNodeError(from_id)
        if to_node is None:
            raise InvalidNodeError(to_id)

        if not self.can_connect(from_node, to_node):
            raise ConnectionNotAllowedError(from_id, to_id)

        values = {
            k: v for k, v in (options or {}).items() if k not in IMMUTABLE_FIELDS and v
        }
        connection = Connection(
            id=generate_id("conn"),
            from_id=from_id,
            to_id=to_id,
            **values,
        )
        self._connections.append(connection)

        from_node.outputs.append(connection.id)
        to_node.inputs.append(connection.id)

        logger.debug(f"Connected {from_id} -> {to_id} ({connection.id})")
        return connection

    def delete_connection(self, connection_id: str) -> bool:
        connection = self.get_connection(connection_id)
        if connection is None:
            return False

        self._connections.remove(connection)

        from_node = self.node_store.get_node(connection.from_id)
        if from_node is not None:
            from_node.outputs = [c for c in from_node.outputs if c != connection_id]
        to_node = self.node_store.get_node(connection.to_id)
        if to_node is not None:
            to_node.inputs = [c for c in to_node.inputs if c != connection_id]

        return True

    def delete_node_connections(self, node_id: str) -> int:
        """Delete every edge touching ``node_id``; returns how many were removed."""
        to_delete = [c.id for c in self.get_node_connections(node_id)]
        for connection_id in to_delete:
            self.delete_connection(connection_id)
        return len(to_delete)

    def update_connection(self, connection_id: str, updates: dict[str, Any]) -> Connection | None:
        """Update display metadata. Identity and endpoints cannot change."""
        connection = self.get_connection(connection_id)
        if connection is None:
            return None

        for key, value in updates.items():
            if key in IMMUTABLE_FIELDS:
                logger.warning(f"Ignoring update to immutable connection field '{key}'")
                continue
            setattr(connection, key, value)
        connection.updated_at = now_ms()
        return connection

    def clear(self) -> None:
        for node in self.node_store.get_all_nodes():
            node.inputs = []
            node.outputs = []
        self._connections = []
        self.temp_connection = None

    # === QUERIES ===

    def get_connection(self, connection_id: str) -> Connection | None:
        for connection in self._connections:
            if connection.id == connection_id:
                return connection
        return None

    def get_all_connections(self) -> list[Connection]:
        return list(self._connections)

    def get_node_connections(self, node_id: str) -> list[Connection]:
        return [c for c in self._connections if node_id in (c.from_id, c.to_id)]

    def get_input_connections(self, node_id: str) -> list[Connection]:
        return [c for c in self._connections if c.to_id == node_id]

    def get_output_connections(self, node_id: str) -> list[Connection]:
        return [c for c in self._connections if c.from_id == node_id]

    def is_connected(self, from_id: str, to_id: str) -> bool:
        return any(c.from_id == from_id and c.to_id == to_id for c in self._connections)

    def get_connected_nodes(self, node_id: str) -> list[Node]:
        """Downstream neighbours."""
        nodes = (self.node_store.get_node(c.to_id) for c in self.get_output_connections(node_id))
        return [n for n in nodes if n is not None]

    def get_source_nodes(self, node_id: str) -> list[Node]:
        """Upstream neighbours."""
        nodes = (self.node_store.get_node(c.from_id) for c in self.get_input_connections(node_id))
        return [n for n in nodes if n is not None]

    def find_path(self, from_id: str, to_id: str) -> list[str] | None:
        """Depth-first path of node ids from ``from_id`` to ``to_id``, or None."""
        if from_id == to_id:
            return [from_id]

        visited = {from_id}
        stack = [(from_id, self._successors(from_id))]
        while stack:
            _, successors = stack[-1]
            for next_id in successors:
                if next_id == to_id:
                    return [node_id for node_id, _ in stack] + [to_id]
                if next_id not in visited:
                    visited.add(next_id)
                    stack.append((next_id, self._successors(next_id)))
                    break
            else:
                stack.pop()
        return None

    # === GRAPH ANALYSIS ===

    def has_cycle(self, start_id: str | None = None) -> bool:
        """
        Detect a directed cycle.

        Without ``start_id`` the search starts from every node, since the
        graph need not be connected.
        """
        if start_id is not None:
            start_ids = [start_id] if start_id in self.node_store else []
        else:
            start_ids = [n.id for n in self.node_store.get_all_nodes()]

        visited: set[str] = set()
        for node_id in start_ids:
            if node_id not in visited and self._has_cycle_from(node_id, visited):
                return True
        return False

    def _successors(self, node_id: str) -> Iterator[str]:
        return iter([c.to_id for c in self.get_output_connections(node_id)])

    def _has_cycle_from(self, start_id: str, visited: set[str]) -> bool:
        visited.add(start_id)
        on_path = {start_id}
        stack = [(start_id, self._successors(start_id))]

        while stack:
            node_id, successors = stack[-1]
            for next_id in successors:
                if next_id in on_path:
                    return True
                if next_id not in visited:
                    visited.add(next_id)
                    on_path.add(next_id)
                    stack.append((next_id, self._successors(next_id)))
                    break
            else:
                stack.pop()
                on_path.discard(node_id)
        return False

    def get_topological_sort(self) -> list[str]:
        """
        Node ids ordered so every edge points forward.

        Only meaningful on an acyclic graph; on a cyclic one this returns the
        same DFS finishing order without raising.
        """
        visited: set[str] = set()
        finished: list[str] = []

        for node in self.node_store.get_all_nodes():
            if node.id in visited:
                continue
            visited.add(node.id)
            stack = [(node.id, self._successors(node.id))]
            while stack:
                node_id, successors = stack[-1]
                for next_id in successors:
                    if next_id not in visited:
                        visited.add(next_id)
                        stack.append((next_id, self._successors(next_id)))
                        break
                else:
                    stack.pop()
                    finished.append(node_id)

        return finished[::-1]

    # === INTERACTIVE STAGING ===

    def start_temp_connection(self, from_id: str, from_x: float, from_y: float) -> TempConnection:
        self.temp_connection = TempConnection(
            from_id=from_id, from_x=from_x, from_y=from_y, to_x=from_x, to_y=from_y
        )
        return self.temp_connection

    def update_temp_connection(self, to_x: float, to_y: float) -> None:
        if self.temp_connection is not None:
            self.temp_connection.to_x = to_x
            self.temp_connection.to_y = to_y

    def complete_temp_connection(self, to_id: str) -> Connection | None:
        """Commit the staged edge through create_connection (same validation)."""
        if self.temp_connection is None:
            return None

        try:
            connection = self.create_connection(self.temp_connection.from_id, to_id)
        finally:
            self.temp_connection = None
        return connection

    def cancel_temp_connection(self) -> None:
        self.temp_connection = None

    # === SERIALIZATION ===

    def serialize(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self._connections]

    def deserialize(self, data: list[dict[str, Any]]) -> None:
        """Load edges and re-attach their ids to live endpoint nodes."""
        self._connections = []
        for connection_data in data:
            connection = Connection.model_validate(connection_data)
            from_node = self.node_store.get_node(connection.from_id)
            to_node = self.node_store.get_node(connection.to_id)
            if from_node is None or to_node is None:
                logger.warning(
                    f"Skipping connection {connection.id}: endpoint "
                    f"{connection.from_id} -> {connection.to_id} is missing"
                )
                continue

            connection.updated_at = now_ms()
            self._connections.append(connection)
            if connection.id not in from_node.outputs:
                from_node.outputs.append(connection.id)
            if connection.id not in to_node.inputs:
                to_node.inputs.append(connection.id)
