"""
Built-in tool catalogue.

Text and image tools make one language-model call each; the workflow tool
reads another node's content; the perplexity tools run remotely through
the tool execution endpoint.
"""

import json
import logging
from typing import TYPE_CHECKING, Any

from nodeflow.errors import ConfigurationError
from nodeflow.graph.memory import ensure_memory
from nodeflow.llm.provider import LLMProvider
from nodeflow.runner.remote_tools import RemoteToolClient
from nodeflow.runner.tool_registry import ToolCategory, ToolRegistry, tool

if TYPE_CHECKING:
    from nodeflow.graph.node import Node
    from nodeflow.graph.workflow import Workflow

logger = logging.getLogger(__name__)

BUILTIN_TOOL_IDS = (
    "text-summarize",
    "text-extract-entities",
    "image-analyze",
    "data-parse-json",
    "workflow-get-node-content",
)

REMOTE_TOOL_IDS = (
    "search_perplexity-server",
    "get_documentation_perplexity-server",
    "chat_perplexity_perplexity-server",
)


def register_builtin_tools(
    registry: ToolRegistry,
    llm: LLMProvider | None = None,
    workflow: "Workflow | None" = None,
    remote: RemoteToolClient | None = None,
) -> ToolRegistry:
    """
    Register the standard tools on ``registry``.

    Args:
        registry: Registry to populate
        llm: Provider for the text and image tools
        workflow: Graph the node-content tool reads from
        remote: Client for the perplexity tools; they are skipped when None

    Returns:
        The same registry
    """

    def require_llm() -> LLMProvider:
        if llm is None:
            raise ConfigurationError("No language model configured for built-in tools")
        return llm

    # --- text-processing ---

    @tool(
        id="text-summarize",
        name="Summarize Text",
        description="Summarize the input text to a shorter version",
        category=ToolCategory.TEXT_PROCESSING,
    )
    async def summarize(text: str = "", max_length: int | None = None, node=None) -> str:
        if not text:
            raise ValueError("No text provided for summarization")
        length_hint = f" to approximately {max_length} words" if max_length else ""
        response = await require_llm().acomplete(
            messages=[{"role": "user", "content": text}],
            system=(
                f"Summarize the following text{length_hint}. "
                "Maintain the key points and main ideas."
            ),
            node=node,
        )
        return response.content

    @tool(
        id="text-extract-entities",
        name="Extract Entities",
        description="Extract named entities (people, places, organizations, etc.) from text",
        category=ToolCategory.TEXT_PROCESSING,
    )
    async def extract_entities(text: str = "", node=None) -> str:
        if not text:
            raise ValueError("No text provided for entity extraction")
        response = await require_llm().acomplete(
            messages=[{"role": "user", "content": text}],
            system=(
                "Extract named entities from the following text. Return the results as a "
                "JSON object with categories for people, places, organizations, dates, and "
                "other notable entities. Format the response as valid JSON only."
            ),
            temperature=0.3,
            node=node,
        )
        return response.content

    # --- image-processing ---

    @tool(
        id="image-analyze",
        name="Analyze Image",
        description="Analyze and describe the content of an image",
        category=ToolCategory.IMAGE_PROCESSING,
    )
    async def analyze_image(image_url: str = "", node=None) -> str:
        if not image_url:
            raise ValueError("No image URL provided for analysis")
        response = await require_llm().acomplete(
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Describe this image in detail."},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
            node=node,
        )
        return response.content

    # --- data-manipulation ---

    @tool(
        id="data-parse-json",
        name="Parse JSON",
        description="Parse a JSON string into a structured object",
        category=ToolCategory.DATA_MANIPULATION,
    )
    def parse_json(json_string: str = "") -> str:
        if not json_string:
            raise ValueError("No JSON string provided for parsing")
        try:
            parsed = json.loads(json_string)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}") from e
        return json.dumps(parsed, indent=2)

    # --- workflow ---

    @tool(
        id="workflow-get-node-content",
        name="Get Node Content",
        description="Get the content of another node in the workflow",
        category=ToolCategory.WORKFLOW,
    )
    def get_node_content(node_id: str = "") -> Any:
        if not node_id:
            raise ValueError("No node ID provided")
        if workflow is None:
            raise ConfigurationError("No workflow attached to the tool registry")
        target = workflow.get_node(str(node_id))
        if target is None:
            raise ValueError(f"Node with ID {node_id} not found")
        return target.content or ""

    for func in (summarize, extract_entities, analyze_image, parse_json, get_node_content):
        registry.register_function(func)

    if remote is not None:
        register_remote_tools(registry, remote)

    logger.debug(f"Registered {len(registry)} tools")
    return registry


def register_remote_tools(registry: ToolRegistry, remote: RemoteToolClient) -> None:
    """Register the perplexity tools served by the remote endpoint."""

    @tool(
        id="search_perplexity-server",
        name="Search with Perplexity",
        description=(
            "Perform a general search query to get comprehensive information on any topic"
        ),
        category=ToolCategory.MCP_SEARCH,
    )
    async def search(query: str = "", detail_level: str = "normal") -> Any:
        if not query:
            raise ValueError("No search query provided")
        logger.info(f"Searching for: {query}")
        data = await remote.execute(
            "search_perplexity-server",
            {"query": query, "detail_level": detail_level or "normal"},
        )
        return data.get("result")

    @tool(
        id="get_documentation_perplexity-server",
        name="Get Documentation",
        description=(
            "Get documentation and usage examples for a specific technology, library, or API"
        ),
        category=ToolCategory.MCP_DOCUMENTATION,
    )
    async def get_documentation(query: str = "", context: str = "") -> Any:
        if not query:
            raise ValueError("No query provided for documentation")
        logger.info(f"Getting documentation for: {query}")
        data = await remote.execute(
            "get_documentation_perplexity-server",
            {"query": query, "context": context or ""},
        )
        return data.get("result")

    @tool(
        id="chat_perplexity_perplexity-server",
        name="Chat with Perplexity",
        description=(
            "Maintains ongoing conversations with Perplexity AI. Creates new chats or "
            "continues existing ones with full history context."
        ),
        category=ToolCategory.MCP_SEARCH,
    )
    async def chat(message: str = "", chat_id: str | None = None, node: "Node | None" = None):
        if not message:
            raise ValueError("No message provided for chat")
        memory = ensure_memory(node) if node is not None else None
        chat_id = chat_id or (memory.recall("chat_id") if memory else None)

        params: dict[str, Any] = {"message": message}
        if chat_id:
            params["chat_id"] = chat_id

        logger.info(f"Sending chat message: {message[:50]}{'...' if len(message) > 50 else ''}")
        data = await remote.execute("chat_perplexity_perplexity-server", params)

        # Continue the same conversation on the next call from this node
        if memory is not None and data.get("chat_id"):
            memory.remember("chat_id", data["chat_id"])
        return data.get("result")

    for func in (search, get_documentation, chat):
        registry.register_function(func)
