"""
Event Bus - publish/subscribe for agent iterations and workflow runs.

Subscribers (a UI, the CLI, tests) can follow:
- agent iterations as they start, advance and stop
- plans and the tool calls made while a plan executes
- node processing and edge propagation in a workflow run

Every published event is also kept in a bounded history, which is what the
tests inspect.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Kinds of event the bus carries."""

    # Agent iteration lifecycle
    NODE_LOOP_STARTED = "node_loop_started"
    NODE_LOOP_ITERATION = "node_loop_iteration"
    NODE_LOOP_COMPLETED = "node_loop_completed"
    NODE_LOOP_STOPPED = "node_loop_stopped"
    EXECUTION_FAILED = "execution_failed"

    PLAN_GENERATED = "plan_generated"

    TOOL_CALL_STARTED = "tool_call_started"
    TOOL_CALL_COMPLETED = "tool_call_completed"

    # Workflow propagation
    NODE_PROCESSED = "node_processed"
    EDGE_TRAVERSED = "edge_traversed"


@dataclass
class GraphEvent:
    """One published event; ``node_id`` is the node it concerns."""

    type: EventType
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[GraphEvent], Awaitable[None]]


@dataclass
class Subscription:
    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_node: str | None = None

    def matches(self, event: GraphEvent) -> bool:
        if event.type not in self.event_types:
            return False
        return self.filter_node is None or self.filter_node == event.node_id


class EventBus:
    """
    In-process event bus.

    Handlers run in subscription order. A failing handler is logged and
    does not stop the others, nor the publisher.

    Example:
        bus = EventBus()

        async def on_iteration(event: GraphEvent):
            print(f"{event.node_id} iteration {event.data['iteration']}")

        bus.subscribe([EventType.NODE_LOOP_ITERATION], on_iteration)
    """

    def __init__(self, max_history: int = 1000):
        self._subscriptions: dict[str, Subscription] = {}
        self._history: list[GraphEvent] = []
        self._max_history = max_history
        self._next_id = 0

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_node: str | None = None,
    ) -> str:
        """
        Register ``handler`` for ``event_types``.

        Args:
            event_types: Event kinds to receive
            handler: Async callable taking the event
            filter_node: Only deliver events about this node

        Returns:
            Subscription id for unsubscribe()
        """
        self._next_id += 1
        sub_id = f"sub_{self._next_id}"
        self._subscriptions[sub_id] = Subscription(sub_id, set(event_types), handler, filter_node)
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        return self._subscriptions.pop(subscription_id, None) is not None

    async def publish(self, event: GraphEvent) -> None:
        self._history.append(event)
        if len(self._history) > self._max_history:
            del self._history[: len(self._history) - self._max_history]

        for sub in list(self._subscriptions.values()):
            if not sub.matches(event):
                continue
            try:
                await sub.handler(event)
            except Exception as e:
                logger.error(f"Handler {sub.id} failed for {event.type}: {e}")

    async def _emit(self, event_type: EventType, node_id: str | None, **data: Any) -> None:
        await self.publish(GraphEvent(type=event_type, node_id=node_id, data=data))

    # === AGENT ITERATIONS ===

    async def emit_node_loop_started(self, node_id: str, max_iterations: int) -> None:
        """Idle -> Iterating."""
        await self._emit(EventType.NODE_LOOP_STARTED, node_id, max_iterations=max_iterations)

    async def emit_node_loop_iteration(
        self, node_id: str, iteration: int, max_iterations: int
    ) -> None:
        await self._emit(
            EventType.NODE_LOOP_ITERATION,
            node_id,
            iteration=iteration,
            max_iterations=max_iterations,
        )

    async def emit_node_loop_completed(self, node_id: str, iterations: int) -> None:
        """Iterating -> Idle after the last allowed or requested round."""
        await self._emit(EventType.NODE_LOOP_COMPLETED, node_id, iterations=iterations)

    async def emit_node_loop_stopped(self, node_id: str, reason: str, iterations: int) -> None:
        """Loop ended early: ``reason`` is "max_iterations" or "cancelled"."""
        await self._emit(
            EventType.NODE_LOOP_STOPPED, node_id, reason=reason, iterations=iterations
        )

    async def emit_execution_failed(self, node_id: str, error: str) -> None:
        await self._emit(EventType.EXECUTION_FAILED, node_id, error=error)

    async def emit_plan_generated(self, node_id: str, steps: list[dict[str, Any]]) -> None:
        await self._emit(EventType.PLAN_GENERATED, node_id, steps=steps)

    # === TOOLS ===

    async def emit_tool_call_started(
        self, node_id: str, tool_id: str, tool_input: dict[str, Any] | None = None
    ) -> None:
        await self._emit(
            EventType.TOOL_CALL_STARTED, node_id, tool_id=tool_id, tool_input=tool_input or {}
        )

    async def emit_tool_call_completed(
        self, node_id: str, tool_id: str, result: str = "", is_error: bool = False
    ) -> None:
        await self._emit(
            EventType.TOOL_CALL_COMPLETED,
            node_id,
            tool_id=tool_id,
            result=result,
            is_error=is_error,
        )

    # === WORKFLOW ===

    async def emit_node_processed(self, node_id: str, output: Any) -> None:
        await self._emit(EventType.NODE_PROCESSED, node_id, output=output)

    async def emit_edge_traversed(
        self, connection_id: str, source_node: str, target_node: str
    ) -> None:
        await self._emit(
            EventType.EDGE_TRAVERSED,
            source_node,
            connection_id=connection_id,
            source_node=source_node,
            target_node=target_node,
        )

    # === QUERIES ===

    def get_history(
        self,
        event_type: EventType | None = None,
        node_id: str | None = None,
        limit: int = 100,
    ) -> list[GraphEvent]:
        """Recorded events, most recent first, optionally filtered."""
        events = [
            e
            for e in reversed(self._history)
            if (event_type is None or e.type == event_type)
            and (node_id is None or e.node_id == node_id)
        ]
        return events[:limit]

    async def wait_for(
        self,
        event_type: EventType,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> GraphEvent | None:
        """
        Wait for the next event of ``event_type``.

        Returns:
            The event, or None if ``timeout`` seconds pass first
        """
        received: asyncio.Future[GraphEvent] = asyncio.get_running_loop().create_future()

        async def handler(event: GraphEvent) -> None:
            if not received.done():
                received.set_result(event)

        sub_id = self.subscribe([event_type], handler, filter_node=node_id)
        try:
            return await asyncio.wait_for(received, timeout=timeout)
        except TimeoutError:
            return None
        finally:
            self.unsubscribe(sub_id)
