"""
Agent Orchestrator - the per-node iteration state machine.

States:
    Idle --process_agent_node()--> Iterating
    Iterating --result, more rounds allowed--> Iterating (deferred re-entry)
    Iterating --result, no more rounds--> Idle
    Iterating --current_iteration > max_iterations--> Stopped(max reached)
    Iterating --any error--> Stopped(error), error re-raised

The next round is never a direct recursive call: it is enqueued on an
IterationQueue whose single worker consults a per-node cancellation flag on
every dequeue.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from nodeflow.agent.custom_code import CustomAgentContext, run_custom_code
from nodeflow.agent.planner import Planner
from nodeflow.errors import ConfigurationError, UnknownAgentTypeError
from nodeflow.graph.memory import ensure_memory
from nodeflow.observability.logging import set_trace_context

if TYPE_CHECKING:
    from nodeflow.graph.node import Node
    from nodeflow.llm.provider import LLMProvider
    from nodeflow.runner.tool_registry import ToolRegistry
    from nodeflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)

IterationHandler = Callable[["Node", Any], Awaitable[Any]]
ResultListener = Callable[["Node", Any], Awaitable[None]]


class IterationQueue:
    """
    Work queue for deferred agent iterations.

    One worker task drains the queue in order. Cancelling a node marks it;
    the mark is checked when that node's next iteration is dequeued, which
    then stops the node instead of running it.
    """

    def __init__(self, handler: IterationHandler, event_bus: "EventBus | None" = None):
        self._handler = handler
        self.event_bus = event_bus
        self._queue: "asyncio.Queue[tuple[Node, Any]]" = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._cancelled: set[str] = set()
        self._listeners: list[ResultListener] = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def add_result_listener(self, listener: ResultListener) -> None:
        """Call ``listener(node, result)`` after each deferred iteration succeeds."""
        self._listeners.append(listener)

    def enqueue(self, node: "Node", input: Any) -> None:
        self._queue.put_nowait((node, input))
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="nodeflow-iterations")

    def cancel(self, node_id: str) -> None:
        """Stop ``node_id`` at its next deferred iteration."""
        self._cancelled.add(node_id)

    def clear_cancel(self, node_id: str) -> None:
        self._cancelled.discard(node_id)

    def is_cancelled(self, node_id: str) -> bool:
        return node_id in self._cancelled

    async def join(self) -> None:
        """Wait until every queued iteration (and any it schedules) has run."""
        await self._queue.join()

    async def stop(self) -> None:
        """Stop the worker. Queued iterations are dropped."""
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None

        while not self._queue.empty():
            node, _ = self._queue.get_nowait()
            node.is_iterating = False
            self._queue.task_done()

    async def _run(self) -> None:
        while True:
            node, input = await self._queue.get()
            try:
                if node.id in self._cancelled:
                    self._cancelled.discard(node.id)
                    node.is_iterating = False
                    logger.info(f"Iteration cancelled for node {node.id}")
                    if self.event_bus:
                        await self.event_bus.emit_node_loop_stopped(
                            node_id=node.id,
                            reason="cancelled",
                            iterations=node.current_iteration,
                        )
                    continue

                result = await self._handler(node, input)
                for listener in self._listeners:
                    await listener(node, result)
            except Exception as e:
                # The orchestrator has already recorded node.error
                logger.error(f"Deferred iteration failed for node {node.id}: {e}")
            finally:
                self._queue.task_done()


class AgentOrchestrator:
    """
    Drives the planner (or custom code) across bounded iterations.

    Args:
        planner: Plans and executes default agents
        tools: Registry exposed to custom code (defaults to the planner's)
        llm: Model exposed to custom code (defaults to the planner's)
        event_bus: Optional bus for loop events

    Example:
        orchestrator = AgentOrchestrator(Planner(llm, registry))
        result = await orchestrator.process_agent_node(node, "Research X")
        await orchestrator.queue.join()  # wait for auto-iterations
    """

    def __init__(
        self,
        planner: Planner,
        tools: "ToolRegistry | None" = None,
        llm: "LLMProvider | None" = None,
        event_bus: "EventBus | None" = None,
    ):
        self.planner = planner
        self.tools = tools or planner.tools
        self.llm = llm or planner.llm
        self.event_bus = event_bus
        self.queue = IterationQueue(self.process_agent_node, event_bus)

    def cancel(self, node_id: str) -> None:
        """Stop a node's auto-iteration before its next round starts."""
        self.queue.cancel(node_id)

    async def process_agent_node(self, node: "Node", input: Any) -> Any:
        """
        Run one iteration for an agent node.

        Returns:
            The iteration result, or the iteration-limit message

        Raises:
            Whatever the iteration body raised, after recording node.error
        """
        memory = ensure_memory(node)

        if not node.is_iterating:
            node.current_iteration = 0
            node.is_iterating = True
            node.error = None
            self.queue.clear_cancel(node.id)
            if input is None:
                node.input_content = ""
            else:
                node.input_content = input if isinstance(input, str) else str(input)
            memory.remember("original_input", input)
            if self.event_bus:
                await self.event_bus.emit_node_loop_started(node.id, node.max_iterations)

        node.current_iteration += 1
        iteration = node.current_iteration
        set_trace_context(node_id=node.id, iteration=iteration)

        if iteration > node.max_iterations:
            logger.warning(f"Reached maximum iterations ({node.max_iterations})")
            node.current_iteration = node.max_iterations
            node.is_iterating = False
            if self.event_bus:
                await self.event_bus.emit_node_loop_stopped(
                    node.id, reason="max_iterations", iterations=node.max_iterations
                )
            if not node.enable_reflection:
                return (
                    f"Agent reached maximum iterations ({node.max_iterations}). "
                    f"Final result: {input}"
                )
            final_reflection = await self.planner.reflect(node, input, final=True)
            memory.remember("final_reflection", final_reflection)
            return (
                f"Agent reached maximum iterations ({node.max_iterations}).\n\n"
                f"Final result: {input}\n\n"
                f"Final reflection: {final_reflection}"
            )

        logger.info(f"Iteration {iteration}/{node.max_iterations}")
        if self.event_bus:
            await self.event_bus.emit_node_loop_iteration(node.id, iteration, node.max_iterations)

        try:
            reflection = ""
            if self._reflection_due(node, iteration):
                reflection = await self.planner.reflect(node, input)
                memory.remember(f"reflection_{iteration}", reflection)
            result = await self._run_iteration(node, input, reflection)
        except Exception as e:
            node.error = str(e)
            node.is_iterating = False
            memory.remember(f"error_{iteration}", str(e))
            logger.error(f"Error in iteration {iteration}: {e}")
            if self.event_bus:
                await self.event_bus.emit_execution_failed(node.id, str(e))
            raise

        node.content = result
        node.has_been_processed = True
        memory.remember(f"result_{iteration}", result)

        if node.auto_iterate and node.is_iterating and iteration < node.max_iterations:
            logger.info(f"Scheduling iteration {iteration + 1}/{node.max_iterations}")
            self.queue.enqueue(node, result)
        else:
            node.is_iterating = False
            logger.info(f"Agent finished after {iteration} iteration(s)")
            if self.event_bus:
                await self.event_bus.emit_node_loop_completed(node.id, iteration)

        return result

    @staticmethod
    def _reflection_due(node: "Node", iteration: int) -> bool:
        return (
            node.enable_reflection
            and iteration > 1
            and iteration % node.reflection_frequency == 0
        )

    async def _run_iteration(self, node: "Node", input: Any, reflection: str = "") -> Any:
        logger.info(f"Processing with agent type: {node.agent_type}")

        if node.agent_type == "default":
            return await self._process_default_agent(node, input, reflection)
        if node.agent_type == "custom":
            return await self._process_custom_agent(node, input, reflection)
        raise UnknownAgentTypeError(node.agent_type)

    async def _process_default_agent(
        self, node: "Node", input: Any, reflection: str = ""
    ) -> Any:
        # Re-plan from scratch each round; memory carries what was learned
        memory = ensure_memory(node)
        memory.add_to_context(input)
        if reflection:
            memory.add_to_context(f"Reflection: {reflection}")
        await self.planner.generate_plan(node, input)
        return await self.planner.execute_plan(node)

    async def _process_custom_agent(
        self, node: "Node", input: Any, reflection: str = ""
    ) -> Any:
        if not node.custom_code or not node.custom_code.strip():
            raise ConfigurationError("No custom code provided for custom agent")
        ctx = CustomAgentContext(
            node, input, tools=self.tools, llm=self.llm, reflection=reflection
        )
        return await run_custom_code(node.custom_code, ctx)
