"""Exception hierarchy for graph construction and agent execution."""

from __future__ import annotations


class NodeflowError(Exception):
    """Base exception for everything raised by nodeflow."""


class ConfigurationError(NodeflowError):
    """Missing credential, missing custom code, or otherwise unusable settings."""


class GraphError(NodeflowError):
    """Invalid graph mutation."""


class InvalidNodeError(GraphError):
    """A connection request referenced a node that does not exist."""

    def __init__(self, node_id: str | None, message: str | None = None):
        super().__init__(message or f"Invalid node ID: {node_id}")
        self.node_id = node_id


class ConnectionNotAllowedError(GraphError):
    """A connection request was rejected by the validity rules."""

    def __init__(self, from_id: str, to_id: str, message: str | None = None):
        super().__init__(message or f"Connection not allowed: {from_id} -> {to_id}")
        self.from_id = from_id
        self.to_id = to_id


class ToolNotFoundError(NodeflowError):
    """A plan step or caller referenced an unregistered tool."""

    def __init__(self, tool_id: str):
        super().__init__(f"Tool with ID {tool_id} not found")
        self.tool_id = tool_id


class PlanParseError(NodeflowError):
    """The language model's plan reply contained no usable steps."""


class ParamParseError(NodeflowError):
    """The language model's parameter reply was not a JSON object."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class CompilationError(NodeflowError):
    """The final synthesis call failed."""


class UnknownAgentTypeError(NodeflowError):
    def __init__(self, agent_type: str):
        super().__init__(f"Unknown agent type: {agent_type}")
        self.agent_type = agent_type


class LLMRequestError(NodeflowError):
    """The chat endpoint could not be reached or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteToolError(NodeflowError):
    """The remote tool-execution endpoint failed."""

    def __init__(self, tool_id: str, message: str, status_code: int | None = None):
        super().__init__(f"MCP API request failed for '{tool_id}': {message}")
        self.tool_id = tool_id
        self.status_code = status_code


class CustomCodeError(NodeflowError):
    """Custom agent code was rejected by the sandbox or failed while running."""
