"""
Custom agent code - user-supplied Python run as an agent iteration body.

The code must define ``process(input, ctx)`` (plain or ``async``). It only
sees what ``CustomAgentContext`` exposes: the iteration input, the latest
reflection, the node id, the node's memory, tool calls and a single-prompt
model call.

Before anything runs the source is checked with an AST pass:
- no import statements
- no ``global`` / ``nonlocal``
- no name or attribute starting with an underscore (blocks dunder escapes
  such as ``().__class__.__mro__``)

It is then executed with a whitelisted builtins table.
"""

import ast
import builtins
import inspect
import logging
from typing import TYPE_CHECKING, Any

from nodeflow.errors import CustomCodeError, NodeflowError
from nodeflow.graph.memory import AgentMemory, ensure_memory

if TYPE_CHECKING:
    from nodeflow.graph.node import Node
    from nodeflow.llm.provider import LLMProvider
    from nodeflow.runner.tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

MAX_SOURCE_LENGTH = 20_000
ENTRY_POINT = "process"

_ALLOWED_BUILTINS = (
    "abs",
    "all",
    "any",
    "bool",
    "dict",
    "enumerate",
    "filter",
    "float",
    "int",
    "isinstance",
    "len",
    "list",
    "map",
    "max",
    "min",
    "range",
    "repr",
    "reversed",
    "round",
    "set",
    "sorted",
    "str",
    "sum",
    "tuple",
    "zip",
    "Exception",
    "KeyError",
    "TypeError",
    "ValueError",
)

SAFE_BUILTINS: dict[str, Any] = {name: getattr(builtins, name) for name in _ALLOWED_BUILTINS}


class CustomAgentContext:
    """Everything custom code may touch during one iteration."""

    def __init__(
        self,
        node: "Node",
        input: Any,
        tools: "ToolRegistry | None" = None,
        llm: "LLMProvider | None" = None,
        reflection: str = "",
    ):
        self._node = node
        self._tools = tools
        self._llm = llm
        self.input = input
        self.reflection = reflection
        self.node_id = node.id
        self.logger = logging.getLogger(f"{__name__}.{node.id}")

    @property
    def memory(self) -> AgentMemory:
        return ensure_memory(self._node)

    async def call_tool(self, tool_id: str, params: dict[str, Any] | None = None) -> Any:
        if self._tools is None:
            raise CustomCodeError("No tools are available to custom code")
        return await self._tools.execute_tool(tool_id, params or {}, self._node)

    async def complete(self, prompt: str, system: str = "") -> str:
        if self._llm is None:
            raise CustomCodeError("No language model is available to custom code")
        return await self._llm.complete_text(prompt, system=system, node=self._node)


def _check_identifier(name: str, lineno: int) -> None:
    if name.startswith("_"):
        raise CustomCodeError(f"Line {lineno}: names starting with '_' are not allowed ({name})")


def validate_custom_code(source: str) -> ast.Module:
    """
    Parse and vet custom agent source.

    Returns:
        The parsed module

    Raises:
        CustomCodeError: on a syntax error or a forbidden construct
    """
    if not source or not source.strip():
        raise CustomCodeError("Custom code is empty")
    if len(source) > MAX_SOURCE_LENGTH:
        raise CustomCodeError(
            f"Custom code too long ({len(source)} chars, max {MAX_SOURCE_LENGTH})"
        )

    try:
        tree = ast.parse(source, mode="exec")
    except SyntaxError as e:
        raise CustomCodeError(f"Invalid custom code syntax: {e}") from e

    for node in ast.walk(tree):
        lineno = getattr(node, "lineno", 0)
        if isinstance(node, ast.Import | ast.ImportFrom):
            raise CustomCodeError(f"Line {lineno}: imports are not allowed")
        if isinstance(node, ast.Global | ast.Nonlocal):
            raise CustomCodeError(f"Line {lineno}: global/nonlocal are not allowed")
        if isinstance(node, ast.Name):
            _check_identifier(node.id, lineno)
        elif isinstance(node, ast.Attribute):
            _check_identifier(node.attr, lineno)
        elif isinstance(node, ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef):
            _check_identifier(node.name, lineno)
        elif isinstance(node, ast.arg):
            _check_identifier(node.arg, lineno)

    if not any(
        isinstance(stmt, ast.FunctionDef | ast.AsyncFunctionDef) and stmt.name == ENTRY_POINT
        for stmt in tree.body
    ):
        raise CustomCodeError(f"Custom code must define {ENTRY_POINT}(input, ctx)")

    return tree


async def run_custom_code(source: str, ctx: CustomAgentContext) -> Any:
    """
    Validate, load and call the custom ``process(input, ctx)``.

    Errors raised by nodeflow itself (a missing tool, a failed model call)
    propagate unchanged; anything else the code raises becomes CustomCodeError.
    """
    tree = validate_custom_code(source)
    code = compile(tree, f"<custom-agent:{ctx.node_id}>", "exec")

    namespace: dict[str, Any] = {"__builtins__": SAFE_BUILTINS}
    try:
        exec(code, namespace)
    except Exception as e:
        raise CustomCodeError(f"Custom code failed to load: {e}") from e

    process = namespace[ENTRY_POINT]
    logger.debug(f"Running custom code for node {ctx.node_id}")

    try:
        result = process(ctx.input, ctx)
        if inspect.isawaitable(result):
            result = await result
    except NodeflowError:
        raise
    except Exception as e:
        raise CustomCodeError(f"Custom code raised {type(e).__name__}: {e}") from e

    return result
