"""
Plan Data Structures for agent iterations.

A Plan is generated by the planner at the start of every agent iteration:
- The language model replies with numbered, tool-backed lines
- parse_plan() turns that reply into PlanSteps
- The planner executes the steps strictly in order and records results

Plans are ephemeral: each outer iteration re-plans from scratch using the
node's accumulated memory.
"""

import json
import re
from typing import Any

from pydantic import BaseModel, Field

from nodeflow.errors import PlanParseError

# "<number>. [<tool_id>] - <description>"
PLAN_LINE_PATTERN = re.compile(r"^\s*(\d+)\.\s*\[([\w.\-]+)\]\s*-\s*(.+)$", re.IGNORECASE)


class PlanStep(BaseModel):
    """A single tool-backed step in a plan."""

    number: int
    tool_id: str
    description: str

    # Execution state
    completed: bool = False
    result: Any | None = None

    model_config = {"extra": "allow"}

    def result_excerpt(self, limit: int = 100) -> str:
        """Short rendering of the result for summaries."""
        if self.result is None or self.result == "":
            return "No result"
        if isinstance(self.result, str):
            return self.result[:limit] + ("..." if len(self.result) > limit else "")
        return _to_json(self.result)


class Plan(BaseModel):
    """
    An ordered list of steps plus the raw reply it was parsed from.

    current_step indexes the next step to execute; completed flips once it
    passes the last step.
    """

    text: str = ""
    steps: list[PlanStep] = Field(default_factory=list)
    current_step: int = 0
    completed: bool = False

    model_config = {"extra": "allow"}

    def get_current_step(self) -> PlanStep | None:
        if 0 <= self.current_step < len(self.steps):
            return self.steps[self.current_step]
        return None

    def advance(self) -> PlanStep | None:
        """Move past the current step and return the next one, if any."""
        self.current_step += 1
        if self.current_step >= len(self.steps):
            self.completed = True
        return self.get_current_step()

    def get_completed_steps(self) -> list[PlanStep]:
        return [s for s in self.steps if s.completed]

    def summary(self) -> str:
        """Step-by-step summary used when compiling the final answer."""
        return "\n\n".join(
            f"Step {s.number}: {s.description}\nResult: {s.result_excerpt()}" for s in self.steps
        )


def parse_plan(text: str, strict: bool = False) -> Plan:
    """
    Parse a language-model reply into a Plan.

    Lines that do not match ``<number>. [<tool_id>] - <description>`` are
    ignored.

    Args:
        text: Raw reply text
        strict: Raise PlanParseError when a non-empty reply yields no steps

    Returns:
        Plan with current_step 0 and completed False
    """
    steps = []
    for line in text.splitlines():
        match = PLAN_LINE_PATTERN.match(line)
        if match:
            number, tool_id, description = match.groups()
            steps.append(
                PlanStep(number=int(number), tool_id=tool_id, description=description.strip())
            )

    if strict and text.strip() and not steps:
        raise PlanParseError("Plan reply contained no steps in the expected format")

    return Plan(text=text, steps=steps)


def _to_json(value: Any) -> str:
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)
