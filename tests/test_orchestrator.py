"""Tests for the agent iteration state machine and its deferred queue."""

import pytest

from nodeflow.errors import (
    ConfigurationError,
    CustomCodeError,
    LLMRequestError,
    UnknownAgentTypeError,
)
from nodeflow.runtime.event_bus import EventType


def scripted(messages, system):
    """Plan one echo step, give it params, then answer."""
    if "step-by-step plan" in system:
        return "1. [text-echo] - Echo it"
    if "parameters for a tool" in system:
        return '{"text": "again"}'
    return "partial answer"


def _events(bus, event_type):
    return bus.get_history(event_type=event_type)


class TestDefaultAgentIterations:
    @pytest.mark.asyncio
    async def test_auto_iterates_up_to_max(self, llm, orchestrator, workflow, event_bus):
        llm.default_reply = scripted
        node = workflow.create_node("agent", 0, 0, {"max_iterations": 3})

        result = await orchestrator.process_agent_node(node, "goal")
        assert result == "partial answer"
        assert node.is_iterating is True

        await orchestrator.queue.join()

        assert node.current_iteration == 3
        assert node.is_iterating is False
        assert node.content == "partial answer"
        assert node.has_been_processed is True
        assert node.input_content == "goal"
        assert node.memory.recall("original_input") == "goal"
        assert [node.memory.recall(f"result_{i}") for i in (1, 2, 3)] == ["partial answer"] * 3
        assert len(_events(event_bus, EventType.NODE_LOOP_STARTED)) == 1
        assert len(_events(event_bus, EventType.NODE_LOOP_ITERATION)) == 3
        assert len(_events(event_bus, EventType.NODE_LOOP_COMPLETED)) == 1

    @pytest.mark.asyncio
    async def test_reentry_past_limit(self, orchestrator, workflow, event_bus):
        node = workflow.create_node(
            "agent", 0, 0, {"max_iterations": 3, "enable_reflection": False}
        )
        node.is_iterating = True
        node.current_iteration = 3

        result = await orchestrator.process_agent_node(node, "last")

        assert result == "Agent reached maximum iterations (3). Final result: last"
        assert node.is_iterating is False
        assert node.current_iteration == 3
        stopped = _events(event_bus, EventType.NODE_LOOP_STOPPED)
        assert stopped[0].data["reason"] == "max_iterations"

    @pytest.mark.asyncio
    async def test_single_iteration_without_auto_iterate(self, llm, orchestrator, workflow):
        llm.default_reply = scripted
        node = workflow.create_node("agent", 0, 0, {"auto_iterate": False})

        await orchestrator.process_agent_node(node, "goal")

        assert node.current_iteration == 1
        assert node.is_iterating is False
        assert orchestrator.queue.pending == 0

    @pytest.mark.asyncio
    async def test_new_run_resets_counter(self, llm, orchestrator, workflow):
        llm.default_reply = scripted
        node = workflow.create_node("agent", 0, 0, {"auto_iterate": False})

        await orchestrator.process_agent_node(node, "first")
        await orchestrator.process_agent_node(node, "second")

        assert node.current_iteration == 1

    @pytest.mark.asyncio
    async def test_context_grows_each_iteration(self, llm, orchestrator, workflow):
        llm.default_reply = scripted
        node = workflow.create_node(
            "agent", 0, 0, {"max_iterations": 2, "enable_reflection": False}
        )

        await orchestrator.process_agent_node(node, "goal")
        await orchestrator.queue.join()

        assert [e.content for e in node.memory.context] == ["goal", "partial answer"]

    @pytest.mark.asyncio
    async def test_input_content_follows_each_new_run(self, llm, orchestrator, workflow):
        llm.default_reply = scripted
        node = workflow.create_node("agent", 0, 0, {"auto_iterate": False})

        await orchestrator.process_agent_node(node, "first")
        assert node.input_content == "first"

        await orchestrator.process_agent_node(node, "second")
        assert node.input_content == "second"
        assert node.memory.recall("original_input") == "second"


class TestFailures:
    @pytest.mark.asyncio
    async def test_missing_credentials_stops(self, llm, orchestrator, workflow, event_bus):
        llm.credentials = False
        node = workflow.create_node("agent", 0, 0)

        with pytest.raises(ConfigurationError):
            await orchestrator.process_agent_node(node, "goal")

        assert node.is_iterating is False
        assert node.error == "OpenAI API key not configured"
        assert node.memory.recall("error_1") == "OpenAI API key not configured"
        assert len(_events(event_bus, EventType.EXECUTION_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_unknown_agent_type(self, orchestrator, workflow):
        node = workflow.create_node("agent", 0, 0, {"agent_type": "mystery"})

        with pytest.raises(UnknownAgentTypeError, match="Unknown agent type: mystery"):
            await orchestrator.process_agent_node(node, "goal")
        assert node.is_iterating is False

    @pytest.mark.asyncio
    async def test_deferred_failure_is_recorded_and_queue_continues(self, orchestrator, workflow):
        code = (
            "def process(input, ctx):\n"
            "    if input == 'boom':\n"
            "        raise ValueError('bad input')\n"
            "    return 'boom'\n"
        )
        node = workflow.create_node("custom", 0, 0, {"custom_code": code})

        assert await orchestrator.process_agent_node(node, "start") == "boom"
        await orchestrator.queue.join()

        assert node.current_iteration == 2
        assert node.is_iterating is False
        assert "bad input" in node.error


class TestCustomAgents:
    @pytest.mark.asyncio
    async def test_plain_function(self, orchestrator, workflow):
        code = "def process(input, ctx):\n    return input.upper()\n"
        node = workflow.create_node("custom", 0, 0, {"custom_code": code, "auto_iterate": False})

        assert await orchestrator.process_agent_node(node, "hello") == "HELLO"

    @pytest.mark.asyncio
    async def test_async_function_with_tools_and_memory(self, orchestrator, workflow):
        code = (
            "async def process(input, ctx):\n"
            "    shouted = await ctx.call_tool('text-upper', {'text': input})\n"
            "    ctx.memory.remember('shouted', shouted)\n"
            "    return shouted + '!'\n"
        )
        node = workflow.create_node("custom", 0, 0, {"custom_code": code, "auto_iterate": False})

        assert await orchestrator.process_agent_node(node, "hi") == "HI!"
        assert node.memory.recall("shouted") == "HI"

    @pytest.mark.asyncio
    async def test_missing_code(self, orchestrator, workflow):
        node = workflow.create_node("custom", 0, 0)

        with pytest.raises(ConfigurationError, match="No custom code"):
            await orchestrator.process_agent_node(node, "x")

    @pytest.mark.asyncio
    async def test_rejected_code(self, orchestrator, workflow):
        code = "import os\ndef process(input, ctx):\n    return os.getcwd()\n"
        node = workflow.create_node("custom", 0, 0, {"custom_code": code})

        with pytest.raises(CustomCodeError, match="imports are not allowed"):
            await orchestrator.process_agent_node(node, "x")


class TestIterationQueue:
    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_iteration(self, orchestrator, workflow, event_bus):
        code = "def process(input, ctx):\n    return input + '.'\n"
        node = workflow.create_node("custom", 0, 0, {"custom_code": code, "max_iterations": 5})

        await orchestrator.process_agent_node(node, "go")
        orchestrator.cancel(node.id)
        await orchestrator.queue.join()

        assert node.current_iteration == 1
        assert node.content == "go."
        assert node.is_iterating is False
        stopped = _events(event_bus, EventType.NODE_LOOP_STOPPED)
        assert stopped[0].data["reason"] == "cancelled"

    @pytest.mark.asyncio
    async def test_result_listener_sees_deferred_results(self, orchestrator, workflow):
        seen = []

        async def listener(node, result):
            seen.append(result)

        orchestrator.queue.add_result_listener(listener)
        code = "def process(input, ctx):\n    return input + '!'\n"
        node = workflow.create_node("custom", 0, 0, {"custom_code": code, "max_iterations": 3})

        assert await orchestrator.process_agent_node(node, "a") == "a!"
        await orchestrator.queue.join()

        assert seen == ["a!!", "a!!!"]
        assert node.content == "a!!!"

    @pytest.mark.asyncio
    async def test_stop_drops_pending(self, orchestrator, workflow):
        code = "def process(input, ctx):\n    return input\n"
        node = workflow.create_node("custom", 0, 0, {"custom_code": code})

        await orchestrator.process_agent_node(node, "x")
        await orchestrator.queue.stop()

        assert orchestrator.queue.pending == 0
        assert node.is_iterating is False


def reflective(messages, system):
    """Like ``scripted``, but reflections get their own reply."""
    if "reflecting" in system:
        return "final lesson" if "entire" in system else "keep going"
    return scripted(messages, system)


class TestReflection:
    @pytest.mark.asyncio
    async def test_reflects_every_other_iteration(self, llm, orchestrator, workflow):
        llm.default_reply = reflective
        node = workflow.create_node("agent", 0, 0, {"max_iterations": 3})

        await orchestrator.process_agent_node(node, "goal")
        await orchestrator.queue.join()

        assert node.memory.recall("reflection_1") is None
        assert node.memory.recall("reflection_2") == "keep going"
        assert node.memory.recall("reflection_3") is None
        reflection_calls = [c for c in llm.calls if "reflecting" in c["system"]]
        assert len(reflection_calls) == 1
        assert reflection_calls[0]["temperature"] == 0.7
        prompt = reflection_calls[0]["messages"][0]["content"]
        assert "Original task: goal" in prompt
        assert "Action history:" in prompt
        assert "No previous reflections." in prompt
        context = [e.content for e in node.memory.context]
        assert context.index("Reflection: keep going") == context.index("partial answer") + 1

    @pytest.mark.asyncio
    async def test_frequency_setting(self, llm, orchestrator, workflow):
        llm.default_reply = reflective
        node = workflow.create_node(
            "agent", 0, 0, {"max_iterations": 4, "reflection_frequency": 3}
        )

        await orchestrator.process_agent_node(node, "goal")
        await orchestrator.queue.join()

        stored = [i for i in range(1, 5) if node.memory.recall(f"reflection_{i}")]
        assert stored == [3]

    @pytest.mark.asyncio
    async def test_final_reflection_at_limit(self, llm, orchestrator, workflow):
        llm.default_reply = reflective
        node = workflow.create_node("agent", 0, 0, {"max_iterations": 3})
        node.memory.remember("reflection_2", "earlier thought")
        node.is_iterating = True
        node.current_iteration = 3

        result = await orchestrator.process_agent_node(node, "last")

        assert result == (
            "Agent reached maximum iterations (3).\n\n"
            "Final result: last\n\n"
            "Final reflection: final lesson"
        )
        assert node.memory.recall("final_reflection") == "final lesson"
        prompt = llm.calls[-1]["messages"][0]["content"]
        assert "Iteration 2: earlier thought" in prompt
        assert "This is your final reflection." in prompt

    @pytest.mark.asyncio
    async def test_disabled(self, llm, orchestrator, workflow):
        llm.default_reply = reflective
        node = workflow.create_node(
            "agent", 0, 0, {"max_iterations": 2, "enable_reflection": False}
        )

        await orchestrator.process_agent_node(node, "goal")
        await orchestrator.queue.join()

        assert not any("reflecting" in c["system"] for c in llm.calls)
        assert node.memory.recall("reflection_2") is None

    @pytest.mark.asyncio
    async def test_failed_reflection_does_not_stop_the_loop(self, llm, orchestrator, workflow):
        def flaky(messages, system):
            if "reflecting" in system:
                raise LLMRequestError("endpoint down")
            return scripted(messages, system)

        llm.default_reply = flaky
        node = workflow.create_node("agent", 0, 0, {"max_iterations": 2})

        await orchestrator.process_agent_node(node, "goal")
        await orchestrator.queue.join()

        assert node.error is None
        assert node.current_iteration == 2
        assert node.memory.recall("reflection_2").startswith("Error performing reflection:")

    @pytest.mark.asyncio
    async def test_custom_code_sees_reflection(self, llm, orchestrator, workflow):
        llm.default_reply = "try harder"
        code = "def process(input, ctx):\n    return ctx.reflection or input\n"
        node = workflow.create_node("custom", 0, 0, {"custom_code": code, "max_iterations": 2})

        await orchestrator.process_agent_node(node, "start")
        await orchestrator.queue.join()

        assert node.memory.recall("result_1") == "start"
        assert node.memory.recall("result_2") == "try harder"
