"""Agent nodes: planning, iteration control and custom code."""

from nodeflow.agent.custom_code import CustomAgentContext, run_custom_code, validate_custom_code
from nodeflow.agent.orchestrator import AgentOrchestrator, IterationQueue
from nodeflow.agent.planner import Planner, StepOutcome

__all__ = [
    "AgentOrchestrator",
    "CustomAgentContext",
    "IterationQueue",
    "Planner",
    "StepOutcome",
    "run_custom_code",
    "validate_custom_code",
]
