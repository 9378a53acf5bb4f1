"""Tools available to agent nodes: registry, built-ins and the remote endpoint client."""

from nodeflow.runner.builtin_tools import register_builtin_tools, register_remote_tools
from nodeflow.runner.remote_tools import RemoteToolClient
from nodeflow.runner.tool_registry import AgentTool, ToolCategory, ToolRegistry, tool

__all__ = [
    "AgentTool",
    "RemoteToolClient",
    "ToolCategory",
    "ToolRegistry",
    "register_builtin_tools",
    "register_remote_tools",
    "tool",
]
