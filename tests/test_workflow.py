"""Tests for Workflow persistence and WorkflowRunner propagation."""

import json

import pytest

from nodeflow.errors import ConnectionNotAllowedError
from nodeflow.graph.behavior import BehaviorFactory
from nodeflow.graph.runner import WorkflowRunner
from nodeflow.graph.workflow import Workflow
from nodeflow.runtime.event_bus import EventType


class TestWorkflow:
    def test_delete_node_cascades(self):
        workflow = Workflow()
        a = workflow.create_node("plain")
        b = workflow.create_node("plain")
        workflow.connect(a.id, b.id)

        assert workflow.delete_node(b.id) is True

        assert workflow.connections.get_all_connections() == []
        assert a.outputs == []
        assert workflow.delete_node(b.id) is False

    def test_connect_propagates_store_errors(self):
        workflow = Workflow()
        a = workflow.create_node("plain")

        with pytest.raises(ConnectionNotAllowedError):
            workflow.connect(a.id, a.id)

    def test_save_and_load(self, tmp_path):
        workflow = Workflow()
        a = workflow.create_node("plain", 0, 0, {"title": "A", "content": "hello"})
        b = workflow.create_node("agent", 300, 0, {"title": "B", "max_iterations": 2})
        conn = workflow.connect(a.id, b.id)

        path = workflow.save(tmp_path / "flows" / "flow.json")
        data = json.loads(path.read_text())
        assert [n["id"] for n in data["nodes"]] == [a.id, b.id]
        assert data["connections"][0]["from"] == a.id

        loaded = Workflow.load(path)

        assert loaded.get_node(a.id).content == "hello"
        assert loaded.get_node(b.id).max_iterations == 2
        assert loaded.get_node(b.id).inputs == [conn.id]
        assert loaded.get_node(b.id).behavior is not None

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Workflow.load(tmp_path / "nope.json")

    def test_topological_order_and_sources(self):
        workflow = Workflow()
        c = workflow.create_node("plain")
        a = workflow.create_node("plain")
        b = workflow.create_node("plain")
        workflow.connect(a.id, b.id)
        workflow.connect(b.id, c.id)

        assert [n.id for n in workflow.topological_order()] == [a.id, b.id, c.id]
        assert [n.id for n in workflow.source_nodes()] == [a.id]


class TestWorkflowRunner:
    @pytest.mark.asyncio
    async def test_hello_propagates_to_downstream_node(self):
        workflow = Workflow()
        a = workflow.create_node("plain", 0, 0, {"title": "A"})
        b = workflow.create_node("plain", 300, 0, {"title": "B"})
        workflow.connect(a.id, b.id)
        runner = WorkflowRunner(workflow)

        output = await runner.process_node_and_connections(a, "hello")

        assert output == "hello"
        assert a.content == "hello"
        assert b.input_content == "hello"
        assert b.content == "hello"
        assert b.has_been_processed is True
        assert a.processing is False and b.processing is False

    @pytest.mark.asyncio
    async def test_events_published(self, event_bus):
        workflow = Workflow()
        a = workflow.create_node("plain")
        b = workflow.create_node("plain")
        conn = workflow.connect(a.id, b.id)
        runner = WorkflowRunner(workflow, event_bus=event_bus)

        await runner.process_node_and_connections(a, "x")

        assert len(event_bus.get_history(event_type=EventType.NODE_PROCESSED)) == 2
        edge = event_bus.get_history(event_type=EventType.EDGE_TRAVERSED)[0]
        assert edge.data["connection_id"] == conn.id

    @pytest.mark.asyncio
    async def test_cycle_is_not_reentered(self):
        workflow = Workflow()
        a = workflow.create_node("plain")
        b = workflow.create_node("plain")
        workflow.connect(a.id, b.id)
        workflow.connect(b.id, a.id)
        runner = WorkflowRunner(workflow)

        await runner.process_node_and_connections(a, "loop")

        assert b.content == "loop"

    @pytest.mark.asyncio
    async def test_downstream_failure_recorded_siblings_still_run(self, orchestrator):
        workflow = Workflow(BehaviorFactory(orchestrator))
        source = workflow.create_node("plain")
        broken = workflow.create_node("custom")  # no code attached
        sibling = workflow.create_node("plain")
        workflow.connect(source.id, broken.id)
        workflow.connect(source.id, sibling.id)
        runner = WorkflowRunner(workflow, orchestrator)

        await runner.process_node_and_connections(source, "data")

        assert "No custom code" in broken.error
        assert broken.processing is False
        assert sibling.content == "data"

    @pytest.mark.asyncio
    async def test_direct_failure_raises(self, orchestrator):
        workflow = Workflow(BehaviorFactory(orchestrator))
        broken = workflow.create_node("custom")
        runner = WorkflowRunner(workflow, orchestrator)

        with pytest.raises(Exception, match="No custom code"):
            await runner.process_node_and_connections(broken, "data")
        assert broken.error

    @pytest.mark.asyncio
    async def test_agent_iterations_flow_downstream(self, orchestrator):
        workflow = Workflow(BehaviorFactory(orchestrator))
        code = "def process(input, ctx):\n    return input + '+'\n"
        agent = workflow.create_node("custom", 0, 0, {"custom_code": code, "max_iterations": 3})
        sink = workflow.create_node("plain")
        workflow.connect(agent.id, sink.id)
        runner = WorkflowRunner(workflow, orchestrator)

        await runner.process_node_and_connections(agent, "x")
        assert sink.content == "x+"

        await runner.wait_for_iterations()

        assert agent.current_iteration == 3
        assert sink.content == "x+++"

    @pytest.mark.asyncio
    async def test_run_all_processes_sources(self):
        workflow = Workflow()
        a = workflow.create_node("plain")
        b = workflow.create_node("plain")
        c = workflow.create_node("plain")
        workflow.connect(a.id, c.id)
        workflow.connect(b.id, c.id)
        runner = WorkflowRunner(workflow)

        contents = await runner.run_all("start")

        assert contents == {a.id: "start", b.id: "start", c.id: "start"}
