"""Tests for NodeStore: creation defaults, CRUD, geometry and serialization."""

import pytest
from pydantic import ValidationError

from nodeflow.graph.behavior import AgentBehavior, PlainBehavior
from nodeflow.graph.node import (
    DEFAULT_AGENT_SYSTEM_PROMPT,
    DEFAULT_REFLECTION_PROMPT,
    Node,
    NodeKind,
)
from nodeflow.graph.node_store import NodeStore


class TestCreateNode:
    def test_plain_defaults(self):
        store = NodeStore()
        node = store.create_node("plain", 10, 20)

        assert node.kind == NodeKind.PLAIN
        assert (node.x, node.y) == (10, 20)
        assert (node.width, node.height) == (200, 150)
        assert node.inputs == [] and node.outputs == []
        assert node.title == f"plain Node {node.id}"
        assert isinstance(node.behavior, PlainBehavior)

    def test_agent_defaults(self):
        store = NodeStore()
        node = store.create_node(NodeKind.AGENT, 0, 0, {"title": "Researcher"})

        assert node.title == "Researcher"
        assert (node.width, node.height) == (240, 200)
        assert node.system_prompt == DEFAULT_AGENT_SYSTEM_PROMPT
        assert node.agent_type == "default"
        assert node.max_iterations == 5
        assert node.current_iteration == 0
        assert node.is_iterating is False
        assert node.auto_iterate is True
        assert node.enable_reflection is True
        assert node.reflection_frequency == 2
        assert node.reflection_prompt == DEFAULT_REFLECTION_PROMPT
        assert isinstance(node.behavior, AgentBehavior)

    def test_custom_kind_uses_custom_agent_type(self):
        node = NodeStore().create_node("custom", 0, 0)
        assert node.agent_type == "custom"
        assert node.is_agent

    def test_ids_are_unique(self):
        store = NodeStore()
        ids = {store.create_node("plain", 0, 0).id for _ in range(200)}
        assert len(ids) == 200
        assert all(i.startswith("node_") for i in ids)

    def test_options_cannot_override_identity(self):
        store = NodeStore()
        node = store.create_node("plain", 0, 0, {"id": "forced", "inputs": ["c1"]})
        assert node.id != "forced"
        assert node.inputs == []

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            NodeStore().create_node("widget", 0, 0)


class TestCrud:
    def test_update_ignores_id_and_edges(self):
        store = NodeStore()
        node = store.create_node("plain", 0, 0)
        original_id = node.id

        updated = store.update_node(node.id, {"title": "Renamed", "id": "x", "outputs": ["c"]})

        assert updated is node
        assert node.title == "Renamed"
        assert node.id == original_id
        assert node.outputs == []

    def test_update_is_validated(self):
        store = NodeStore()
        node = store.create_node("agent", 0, 0, {"max_iterations": 4})

        with pytest.raises(ValidationError):
            store.update_node(node.id, {"max_iterations": 0})
        with pytest.raises(ValidationError):
            store.update_node(node.id, {"reflection_frequency": 0})

        assert node.max_iterations == 4
        assert node.reflection_frequency == 2

    def test_update_missing_returns_none(self):
        assert NodeStore().update_node("missing", {"title": "x"}) is None

    def test_delete(self):
        store = NodeStore()
        node = store.create_node("plain", 0, 0)

        assert store.delete_node(node.id) is True
        assert store.delete_node(node.id) is False
        assert node.id not in store
        assert len(store) == 0

    def test_get_nodes_by_kind(self):
        store = NodeStore()
        store.create_node("plain", 0, 0)
        agent = store.create_node("agent", 0, 0)

        assert store.get_nodes_by_kind("agent") == [agent]


class TestSelectionAndGeometry:
    def test_exclusive_selection(self):
        store = NodeStore()
        a = store.create_node("plain", 0, 0)
        b = store.create_node("plain", 0, 0)

        store.select_node(a.id)
        store.select_node(b.id)
        assert store.get_selected_nodes() == [b]

        store.select_node(a.id, exclusive=False)
        assert set(n.id for n in store.get_selected_nodes()) == {a.id, b.id}

    def test_resize_is_clamped(self):
        store = NodeStore()
        node = store.create_node("plain", 0, 0)

        store.resize_node(node.id, 10, 5000)
        assert (node.width, node.height) == (100, 600)

    def test_get_node_at_prefers_topmost(self):
        store = NodeStore()
        bottom = store.create_node("plain", 0, 0)
        top = store.create_node("plain", 50, 50)

        assert store.get_node_at(60, 60) is top
        assert store.get_node_at(10, 10) is bottom
        assert store.get_node_at(1000, 1000) is None

    def test_align_left(self):
        store = NodeStore()
        a = store.create_node("plain", 30, 0)
        b = store.create_node("plain", 10, 100)

        store.align_nodes([a.id, b.id], "left")
        assert a.x == b.x == 10

    def test_align_unknown_raises(self):
        store = NodeStore()
        with pytest.raises(ValueError, match="Unknown alignment"):
            store.align_nodes([], "diagonal")

    def test_distribute_horizontal(self):
        store = NodeStore()
        a = store.create_node("plain", 0, 0)
        b = store.create_node("plain", 500, 0)
        c = store.create_node("plain", 100, 0)

        store.distribute_nodes([a.id, b.id, c.id], "horizontal", spacing=10)

        assert a.x == 0
        assert c.x == 210
        assert b.x == 420

    def test_distribute_needs_three_nodes(self):
        store = NodeStore()
        a = store.create_node("plain", 0, 0)
        b = store.create_node("plain", 500, 0)

        store.distribute_nodes([a.id, b.id], "horizontal")
        assert (a.x, b.x) == (0, 500)

    def test_move_nodes(self):
        store = NodeStore()
        node = store.create_node("plain", 0, 0)
        store.move_nodes([node.id, "missing"], 5, -5)
        assert (node.x, node.y) == (5, -5)


class TestCloneAndSerialize:
    def test_clone_resets_runtime_state(self):
        store = NodeStore()
        node = store.create_node("agent", 0, 0, {"title": "Agent"})
        node.outputs.append("conn_1")
        node.is_iterating = True
        node.current_iteration = 2
        node.has_been_processed = True

        clone = store.clone_node(node.id)

        assert clone.id != node.id
        assert clone.title == "Agent (Copy)"
        assert (clone.x, clone.y) == (50, 50)
        assert clone.outputs == []
        assert clone.is_iterating is False
        assert clone.current_iteration == 0
        assert clone.has_been_processed is False

    def test_serialize_drops_runtime_flags(self):
        store = NodeStore()
        node = store.create_node("plain", 0, 0, {"content": "hello"})
        node.selected = True
        node.processing = True
        node.error = "boom"

        data = store.serialize()[0]

        assert data["content"] == "hello"
        assert "selected" not in data
        assert "processing" not in data
        assert "error" not in data
        assert "behavior" not in data

    def test_deserialize_resets_flags_and_reattaches_behavior(self):
        store = NodeStore()
        store.create_node("agent", 0, 0)
        data = store.serialize()
        data[0]["selected"] = True

        restored = NodeStore()
        restored.deserialize(data)
        node = restored.get_all_nodes()[0]

        assert isinstance(node, Node)
        assert node.selected is False
        assert isinstance(node.behavior, AgentBehavior)
