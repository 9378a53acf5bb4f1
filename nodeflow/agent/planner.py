"""
Planner - turns a goal into tool-backed steps and executes them.

One agent iteration runs:
    generate_plan()        -> ask the model for "<n>. [tool_id] - description" lines
    execute_plan()         -> execute_next_step() until the plan completes
        determine_tool_params() per step: model JSON, else keyword guess
    compile_plan_results() -> ask the model to synthesize a final answer,
                              falling back to the last step result

reflect() is called by the orchestrator between iterations and once more when
the iteration limit is reached.

Steps run strictly one after another; there are no parallel tool calls.
"""

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from nodeflow.agent.params import extract_json_params, extract_params_from_description
from nodeflow.errors import (
    CompilationError,
    ConfigurationError,
    LLMRequestError,
    NodeflowError,
    ParamParseError,
    ToolNotFoundError,
)
from nodeflow.graph.memory import ensure_memory
from nodeflow.graph.node import DEFAULT_REFLECTION_PROMPT
from nodeflow.graph.plan import Plan, PlanStep, parse_plan
from nodeflow.llm.provider import LLMProvider
from nodeflow.runner.tool_registry import AgentTool, ToolRegistry

if TYPE_CHECKING:
    from nodeflow.graph.node import Node
    from nodeflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)

PLAN_KEY = "current_plan"
PLAN_TEXT_KEY = "current_plan_text"

PLANNING_PROMPT = """You are an agent tasked with planning how to process the following input.
Your goal is to create a step-by-step plan using the available tools.

Available tools:
{tools}

Current context:
{context}

Create a plan with the following format:
1. [tool_id] - Brief description of what you'll do with this tool
2. [tool_id] - Next step
...

Only include valid tool IDs from the list above. Be specific about what you'll do with each tool."""

PARAMS_PROMPT = """You are an agent tasked with determining the parameters for a tool.
The tool is: {name} ({id}) - {description}
{schema}
You need to extract the necessary parameters from the context and input.
Return ONLY a valid JSON object with the parameters needed for this tool."""

PARAMS_REQUEST = """
Input: {input}

Context:
{context}

{previous}

Current step: {number}. {description}

Determine the parameters for the tool {tool_id} based on this information.
Return ONLY a valid JSON object."""

COMPILE_PROMPT = """You are an agent tasked with compiling the results of a plan execution.
Summarize the results and provide a coherent response that addresses the original input.
Focus on the most important information and insights gained from executing the plan."""

COMPILE_REQUEST = """Original input: {input}

Plan execution summary:
{summary}

Compile these results into a coherent response that addresses the original input."""

REFLECTION_PROMPT = (
    "You are an agent reflecting on your recent actions and results. Analyze what's working "
    "well, what isn't, and how you can improve your approach for the next iteration."
)

FINAL_REFLECTION_PROMPT = (
    "You are an agent reflecting on your entire problem-solving process. Analyze what worked "
    "well, what didn't, and how you could improve in the future."
)

REFLECTION_REQUEST = """Original task: {original_input}

Current input: {input}

{history}

{reflections}

{prompt}{final}"""

FINAL_REFLECTION_NOTE = (
    "\n\nThis is your final reflection. Summarize your overall approach, results, "
    "and what you learned from this task."
)


@dataclass
class StepOutcome:
    """What execute_next_step() reports back."""

    completed: bool
    result: Any = None
    next_step: PlanStep | None = None
    message: str = ""


class Planner:
    """
    Plans and executes one agent iteration against a tool registry.

    Args:
        llm: Language-model collaborator
        tools: Registry plan steps are resolved against
        event_bus: Optional bus for plan events
    """

    def __init__(
        self,
        llm: LLMProvider,
        tools: ToolRegistry,
        event_bus: "EventBus | None" = None,
    ):
        self.llm = llm
        self.tools = tools
        self.event_bus = event_bus

    def _require_credentials(self) -> None:
        if not self.llm.has_credentials():
            raise ConfigurationError("OpenAI API key not configured")

    # === PLAN STATE ===

    def get_current_plan(self, node: "Node") -> Plan | None:
        """The plan stored in the node's memory, if any."""
        plan = ensure_memory(node).recall(PLAN_KEY)
        if isinstance(plan, dict):
            # Memory loaded from JSON holds the plan as a plain dict
            plan = Plan.model_validate(plan)
            ensure_memory(node).remember(PLAN_KEY, plan)
        return plan

    # === PLANNING ===

    async def generate_plan(self, node: "Node", input: Any) -> Plan:
        """
        Ask the model for a plan and store it in the node's memory.

        Raises:
            ConfigurationError: if the model has no credentials
            LLMRequestError: on transport or endpoint failure
        """
        logger.info(f'Generating plan for agent "{node.title}" (ID: {node.id})')
        self._require_credentials()

        tools = self.tools.get_tools_for_node(node)
        memory = ensure_memory(node)
        system = PLANNING_PROMPT.format(
            tools="\n".join(t.describe() for t in tools),
            context=memory.context_text(),
        )
        if node.system_prompt:
            system = f"{node.system_prompt}\n\n{system}"

        try:
            response = await self.llm.acomplete(
                messages=[{"role": "user", "content": f"Input: {input}"}],
                system=system,
                temperature=0.7,
                node=node,
            )
        except NodeflowError as e:
            logger.error(f"Error generating plan: {e}")
            raise

        plan = parse_plan(response.content)
        memory.remember(PLAN_KEY, plan)
        memory.remember(PLAN_TEXT_KEY, response.content)

        if not plan.steps:
            logger.warning("Plan reply contained no steps in the expected format")
        logger.info(f"Plan generated with {len(plan.steps)} steps")

        if self.event_bus:
            summary_fields = {"number", "tool_id", "description"}
            await self.event_bus.emit_plan_generated(
                node_id=node.id,
                steps=[s.model_dump(include=summary_fields) for s in plan.steps],
            )
        return plan

    # === STEP EXECUTION ===

    async def execute_next_step(self, node: "Node") -> StepOutcome:
        """
        Execute the current step of the node's plan and advance it.

        Raises:
            ToolNotFoundError: if the step names an unregistered tool
        """
        plan = self.get_current_plan(node)
        if plan is None or not plan.steps:
            if plan is not None:
                plan.completed = True
            return StepOutcome(completed=True, message="No plan steps to execute")

        if plan.completed:
            return StepOutcome(completed=True, message="Plan already completed")

        step = plan.get_current_step()
        if step is None:
            plan.completed = True
            return StepOutcome(completed=True, message="No more steps to execute")

        logger.info(f"Executing step {step.number}: {step.description}")
        try:
            agent_tool = self.tools.get_tool_by_id(step.tool_id)
            if agent_tool is None:
                raise ToolNotFoundError(step.tool_id)

            params, source = await self._resolve_params(node, step, agent_tool)
            result = await self.tools.execute_tool(step.tool_id, params, node)
        except Exception as e:
            logger.error(f"Error executing step {step.number}: {e}")
            raise

        step.completed = True
        step.result = result

        ensure_memory(node).add_to_history(
            {
                "step": step.number,
                "tool": step.tool_id,
                "description": step.description,
                "params": params,
                "params_source": source,
            },
            result,
        )

        next_step = plan.advance()
        if plan.completed:
            logger.info("Plan execution completed")

        return StepOutcome(completed=True, result=result, next_step=next_step)

    async def determine_tool_params(
        self,
        node: "Node",
        step: PlanStep,
        agent_tool: AgentTool,
    ) -> dict[str, Any]:
        """
        Resolve parameters for a step.

        Asks the model for a JSON object first; if the call or the parse
        fails, falls back to keyword extraction from the step description.

        Raises:
            ConfigurationError: if the model has no credentials
        """
        params, _ = await self._resolve_params(node, step, agent_tool)
        return params

    async def _resolve_params(
        self,
        node: "Node",
        step: PlanStep,
        agent_tool: AgentTool,
    ) -> tuple[dict[str, Any], str]:
        self._require_credentials()

        memory = ensure_memory(node)
        schema = ""
        if agent_tool.parameters.get("properties"):
            schema = f"Parameter schema: {agent_tool.parameters}\n"

        if step.number > 1:
            previous = "Previous steps:\n" + "\n\n".join(
                f"Step {h.action.get('step')}: {h.action.get('description')}\nResult: {h.result}"
                for h in memory.history
                if isinstance(h.action.get("step"), int) and h.action["step"] < step.number
            )
        else:
            previous = "No previous steps"

        try:
            response = await self.llm.acomplete(
                messages=[
                    {
                        "role": "user",
                        "content": PARAMS_REQUEST.format(
                            input=node.input_content,
                            context=memory.context_text(),
                            previous=previous,
                            number=step.number,
                            description=step.description,
                            tool_id=agent_tool.id,
                        ),
                    }
                ],
                system=PARAMS_PROMPT.format(
                    name=agent_tool.name,
                    id=agent_tool.id,
                    description=agent_tool.description,
                    schema=schema,
                ),
                temperature=0.3,
                node=node,
            )
            return extract_json_params(response.content), "llm"
        except ParamParseError as e:
            logger.warning(str(e))
            logger.warning(f"Raw parameters text: {e.raw_text}")
        except LLMRequestError as e:
            logger.warning(f"Error determining tool parameters: {e}")

        logger.warning(
            f"Falling back to keyword parameter extraction for step {step.number} "
            f"({agent_tool.id}); parameters may be wrong",
            extra={"tool_id": agent_tool.id},
        )
        return extract_params_from_description(step.description, node.input_content), "heuristic"

    # === WHOLE PLAN ===

    async def execute_plan(self, node: "Node") -> Any:
        """Execute every remaining step, then compile a final answer."""
        plan = self.get_current_plan(node)
        if plan is None:
            plan = await self.generate_plan(node, node.input_content)

        results: list[StepOutcome] = []
        while not plan.completed:
            results.append(await self.execute_next_step(node))

        return await self.compile_plan_results(node, results)

    async def compile_plan_results(self, node: "Node", step_results: list[StepOutcome]) -> Any:
        """
        Synthesize the final answer for the iteration.

        Never raises: if synthesis fails the last step's result is returned,
        or a generic completion message when no step produced one.
        """
        plan = self.get_current_plan(node)
        if plan is None:
            return "No plan available"

        try:
            return await self._synthesize(node, plan)
        except Exception as e:
            logger.error(f"Error compiling plan results: {e}")

        if step_results and step_results[-1].result:
            return step_results[-1].result
        return (
            f"Plan execution completed with {len(plan.steps)} steps. "
            "Check the agent memory for details."
        )

    async def _synthesize(self, node: "Node", plan: Plan) -> str:
        self._require_credentials()
        try:
            response = await self.llm.acomplete(
                messages=[
                    {
                        "role": "user",
                        "content": COMPILE_REQUEST.format(
                            input=node.input_content, summary=plan.summary()
                        ),
                    }
                ],
                system=COMPILE_PROMPT,
                temperature=0.7,
                node=node,
            )
        except LLMRequestError as e:
            raise CompilationError(str(e)) from e

        if not response.content:
            raise CompilationError("Empty synthesis reply")
        return response.content

    # === REFLECTION ===

    async def reflect(self, node: "Node", input: Any, final: bool = False) -> str:
        """
        Ask the model to review the node's actions so far.

        The prompt carries the original task, the action history and the
        reflections stored for earlier iterations. A failed reflection never
        stops the loop: the error text is returned in place of a reflection.
        """
        logger.info(f"Performing {'final ' if final else ''}reflection")
        memory = ensure_memory(node)

        reflections = [
            (i, memory.recall(f"reflection_{i}"))
            for i in range(1, node.current_iteration + (1 if final else 0))
            if memory.recall(f"reflection_{i}")
        ]
        if memory.history:
            history = "Action history:\n" + "\n\n".join(
                f"Action: {json.dumps(h.action, default=str)}\nResult: {_excerpt(h.result)}"
                for h in memory.history
            )
        else:
            history = "No actions taken yet."
        if reflections:
            previous = "Previous reflections:\n" + "\n\n".join(
                f"Iteration {i}: {_excerpt(text)}" for i, text in reflections
            )
        else:
            previous = "No previous reflections."

        try:
            self._require_credentials()
            response = await self.llm.acomplete(
                messages=[
                    {
                        "role": "user",
                        "content": REFLECTION_REQUEST.format(
                            original_input=memory.recall("original_input", ""),
                            input=input,
                            history=history,
                            reflections=previous,
                            prompt=node.reflection_prompt or DEFAULT_REFLECTION_PROMPT,
                            final=FINAL_REFLECTION_NOTE if final else "",
                        ),
                    }
                ],
                system=FINAL_REFLECTION_PROMPT if final else REFLECTION_PROMPT,
                temperature=0.7,
                node=node,
            )
        except NodeflowError as e:
            logger.error(f"Error performing reflection: {e}")
            return f"Error performing reflection: {e}"

        return response.content


def _excerpt(value: Any, limit: int = 200) -> str:
    if isinstance(value, str):
        return value[:limit] + ("..." if len(value) > limit else "")
    return json.dumps(value, default=str)
