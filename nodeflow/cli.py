"""
Command-line interface for nodeflow.

Usage:
    nodeflow validate flow.json
    nodeflow run flow.json --node node_123 --input "Research solar storage"
    nodeflow run flow.json --input "hello" --json
    nodeflow tools
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from nodeflow.agent.orchestrator import AgentOrchestrator
from nodeflow.agent.planner import Planner
from nodeflow.config import RuntimeConfig
from nodeflow.graph.behavior import BehaviorFactory
from nodeflow.graph.runner import WorkflowRunner
from nodeflow.graph.workflow import Workflow
from nodeflow.llm.chat_endpoint import ChatEndpointProvider
from nodeflow.observability.logging import configure_logging
from nodeflow.runner.builtin_tools import register_builtin_tools
from nodeflow.runner.remote_tools import RemoteToolClient
from nodeflow.runner.tool_registry import ToolRegistry
from nodeflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)


def _load_workflow(path: str, behavior_factory: BehaviorFactory | None = None) -> Workflow | None:
    try:
        return Workflow.load(path, behavior_factory)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
    except json.JSONDecodeError as e:
        print(f"Error: {path} is not valid JSON: {e}", file=sys.stderr)
    return None


def _preview(content: Any, limit: int = 500) -> str:
    text = content if isinstance(content, str) else json.dumps(content, default=str)
    if len(text) > limit:
        return text[:limit] + "..."
    return text


# === validate ===


def cmd_validate(args: argparse.Namespace) -> int:
    """Print graph statistics; fail when the graph has a cycle."""
    workflow = _load_workflow(args.workflow)
    if workflow is None:
        return 1

    has_cycle = workflow.has_cycle()
    order = workflow.topological_order()

    print(f"Nodes: {len(workflow.nodes)}")
    print(f"Connections: {len(workflow.connections.get_all_connections())}")
    print(f"Cycle: {'yes' if has_cycle else 'no'}")
    print("Order: " + " -> ".join(f"{n.title} ({n.id})" for n in order))

    if has_cycle:
        print("Error: workflow contains a cycle", file=sys.stderr)
        return 1
    return 0


# === run ===


async def _run_workflow(args: argparse.Namespace, config: RuntimeConfig) -> int:
    event_bus = EventBus()
    llm = ChatEndpointProvider(config)
    registry = ToolRegistry(event_bus=event_bus)
    planner = Planner(llm, registry, event_bus=event_bus)
    orchestrator = AgentOrchestrator(planner, event_bus=event_bus)

    workflow = _load_workflow(args.workflow, BehaviorFactory(orchestrator))
    if workflow is None:
        return 1

    register_builtin_tools(registry, llm=llm, workflow=workflow, remote=RemoteToolClient(config))
    runner = WorkflowRunner(workflow, orchestrator, event_bus=event_bus)

    try:
        if args.node:
            node = workflow.get_node(args.node)
            if node is None:
                print(f"Error: node not found: {args.node}", file=sys.stderr)
                return 1
            await runner.process_node_and_connections(node, args.input)
        else:
            await runner.run_all(args.input)
        await runner.wait_for_iterations()
    except Exception as e:
        logger.debug("Run failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await orchestrator.queue.stop()

    nodes = workflow.nodes.get_all_nodes()
    if args.json:
        report = {
            n.id: {"title": n.title, "content": n.content, "error": n.error} for n in nodes
        }
        print(json.dumps(report, indent=2, default=str))
    else:
        for n in nodes:
            status = f"error: {n.error}" if n.error else "ok"
            print(f"== {n.title} ({n.id}) [{status}]")
            print(_preview(n.content))

    if args.save:
        path = workflow.save(args.save)
        print(f"Saved workflow to {path}", file=sys.stderr)

    return 1 if any(n.error for n in nodes) else 0


def cmd_run(args: argparse.Namespace) -> int:
    """Process a node (or every source node) and everything downstream."""
    configure_logging(level=args.log_level, format=args.log_format)

    config = RuntimeConfig()
    if args.model:
        config.model = args.model
    if args.api_base:
        config.api_base = args.api_base
    if not config.has_credentials:
        logger.warning("No API key configured; agent nodes will fail to plan")

    return asyncio.run(_run_workflow(args, config))


# === tools ===


def cmd_tools(args: argparse.Namespace) -> int:
    """List the built-in tool catalogue."""
    registry = register_builtin_tools(ToolRegistry(), remote=RemoteToolClient())
    for agent_tool in sorted(registry.get_all_tools(), key=lambda t: (t.category, t.id)):
        print(f"[{agent_tool.category}] {agent_tool.describe()}")
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    validate_parser = subparsers.add_parser("validate", help="Check a workflow file")
    validate_parser.add_argument("workflow", type=str, help="Path to a workflow JSON file")
    validate_parser.set_defaults(func=cmd_validate)

    run_parser = subparsers.add_parser("run", help="Run a workflow")
    run_parser.add_argument("workflow", type=str, help="Path to a workflow JSON file")
    run_parser.add_argument("--node", type=str, help="Start node id (default: all source nodes)")
    run_parser.add_argument("--input", type=str, default=None, help="Input for the start node(s)")
    run_parser.add_argument("--model", type=str, default=None, help="Override the chat model")
    run_parser.add_argument("--api-base", type=str, default=None, help="Override the API base URL")
    run_parser.add_argument("--json", action="store_true", help="Print node contents as JSON")
    run_parser.add_argument("--save", type=Path, default=None, help="Save the workflow afterwards")
    run_parser.add_argument("--log-level", default="INFO", help="Logging level")
    run_parser.add_argument(
        "--log-format",
        choices=["auto", "json", "human"],
        default="auto",
        help="Log output format",
    )
    run_parser.set_defaults(func=cmd_run)

    tools_parser = subparsers.add_parser("tools", help="List built-in tools")
    tools_parser.set_defaults(func=cmd_tools)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="nodeflow",
        description="nodeflow - run node graphs with autonomous agent nodes",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args(argv)

    if hasattr(args, "func"):
        sys.exit(args.func(args))


if __name__ == "__main__":
    main()
