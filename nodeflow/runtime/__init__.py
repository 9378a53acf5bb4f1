"""Runtime collaborators shared by the orchestrator and the workflow runner."""

from nodeflow.runtime.event_bus import EventBus, EventType, GraphEvent

__all__ = ["EventBus", "EventType", "GraphEvent"]
