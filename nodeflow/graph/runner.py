"""
Workflow Runner - processes nodes and feeds results along their edges.

This is the caller side of the graph: nodes never push their own output
downstream. The runner processes a node, stores the output, then processes
every node on the far end of its output connections with that output as
input, depth first, in connection order.

Agent nodes that auto-iterate produce more results later, from the
orchestrator's IterationQueue. The runner registers a result listener so
those results are propagated downstream the same way.
"""

import logging
from typing import TYPE_CHECKING, Any

from nodeflow.graph.node import Node
from nodeflow.graph.workflow import Workflow

if TYPE_CHECKING:
    from nodeflow.agent.orchestrator import AgentOrchestrator
    from nodeflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)


def _as_input_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


class WorkflowRunner:
    """
    Drives processing over a Workflow.

    Args:
        workflow: Graph to process
        orchestrator: Agent orchestrator; when given, deferred iteration
            results are propagated downstream
        event_bus: Optional bus for node/edge events

    Example:
        runner = WorkflowRunner(workflow, orchestrator)
        await runner.process_node_and_connections(start, "hello")
        await runner.wait_for_iterations()
    """

    def __init__(
        self,
        workflow: Workflow,
        orchestrator: "AgentOrchestrator | None" = None,
        event_bus: "EventBus | None" = None,
    ):
        self.workflow = workflow
        self.orchestrator = orchestrator
        self.event_bus = event_bus

        if orchestrator is not None:
            orchestrator.queue.add_result_listener(self._on_iteration_result)

    async def process_node_and_connections(
        self,
        node: Node,
        input: Any,
        source: Node | None = None,
        _visited: set[str] | None = None,
    ) -> Any:
        """
        Process ``node`` and then everything downstream of it.

        Args:
            node: Node to process
            input: Input for ``node``
            source: Upstream node that produced ``input``; None for a direct run,
                which first clears the node's previous input

        Returns:
            The node's output

        Raises:
            Whatever the node's behavior raised. Failures of downstream nodes
            are recorded on those nodes and logged, not raised.
        """
        visited = _visited if _visited is not None else set()
        if node.id in visited:
            logger.warning(f'Node "{node.title}" (ID: {node.id}) already processed in this run')
            return node.content
        visited.add(node.id)

        if source is None:
            node.reset_input()
        text = _as_input_text(input)
        if text:
            node.input_content = text

        node.processing = True
        node.error = None
        try:
            output = await node.process(input)
        except Exception as e:
            node.error = str(e)
            logger.error(f'Node "{node.title}" (ID: {node.id}) failed: {e}')
            raise
        finally:
            node.processing = False

        if output is not None:
            node.content = output
        node.has_been_processed = True
        node.touch()
        logger.info(f'Node "{node.title}" (ID: {node.id}) processed')

        if self.event_bus:
            await self.event_bus.emit_node_processed(node.id, output)

        await self.propagate(node, output, visited)
        return output

    async def propagate(self, node: Node, output: Any, _visited: set[str] | None = None) -> None:
        """Feed ``output`` to every node on ``node``'s output connections."""
        visited = _visited if _visited is not None else {node.id}
        connections = self.workflow.connections.get_output_connections(node.id)
        if connections:
            logger.debug(f"Processing {len(connections)} connected node(s) of {node.id}")

        for connection in connections:
            target = self.workflow.get_node(connection.to_id)
            if target is None:
                continue

            if self.event_bus:
                await self.event_bus.emit_edge_traversed(connection.id, node.id, target.id)

            try:
                await self.process_node_and_connections(target, output, node, visited)
            except Exception as e:
                # Recorded on target.error; siblings still run
                logger.error(f"Error processing connected node {target.id}: {e}")

    async def run_all(self, input: Any = None) -> dict[str, Any]:
        """
        Process every source node (no incoming edges) in topological order.

        Returns:
            Mapping of node id to content after the run
        """
        if self.workflow.has_cycle():
            logger.warning("Workflow contains a cycle; source order may not respect every edge")

        visited: set[str] = set()
        for node in self.workflow.source_nodes():
            start = input if input is not None else node.content
            try:
                await self.process_node_and_connections(node, start, None, visited)
            except Exception as e:
                logger.error(f"Error processing source node {node.id}: {e}")

        return {node.id: node.content for node in self.workflow.nodes.get_all_nodes()}

    async def wait_for_iterations(self) -> None:
        """Wait until all deferred agent iterations (and their propagation) finish."""
        if self.orchestrator is not None:
            await self.orchestrator.queue.join()

    async def _on_iteration_result(self, node: Node, result: Any) -> None:
        if node.id not in self.workflow.nodes:
            return
        await self.propagate(node, result)
