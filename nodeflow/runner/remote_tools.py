"""Client for the remote (MCP-style) tool execution endpoint."""

import logging
from typing import Any

import httpx

from nodeflow.config import RuntimeConfig
from nodeflow.errors import RemoteToolError

logger = logging.getLogger(__name__)

EXECUTE_PATH = "/api/mcp/execute"


class RemoteToolClient:
    """
    Executes tools hosted behind ``POST /api/mcp/execute``.

    The request body is ``{"tool": <id>, "params": {...}}`` and a successful
    reply carries ``{"result": ...}``.
    """

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or RuntimeConfig()
        self._client = client

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(EXECUTE_PATH, json=payload)

        async with httpx.AsyncClient(
            base_url=self.config.api_base,
            timeout=self.config.timeout,
        ) as client:
            return await client.post(EXECUTE_PATH, json=payload)

    async def execute(self, tool_id: str, params: dict[str, Any]) -> dict[str, Any]:
        """
        Call a remote tool.

        Returns:
            The full reply body (callers usually want ``["result"]``)

        Raises:
            RemoteToolError: on transport failure or a non-2xx reply
        """
        payload = {"tool": tool_id, "params": params}
        logger.debug(f"Remote tool call: {tool_id}")

        try:
            response = await self._post(payload)
        except httpx.HTTPError as e:
            raise RemoteToolError(tool_id, str(e)) from e

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = {}
            error = body.get("error") if isinstance(body, dict) else None
            if isinstance(error, dict):
                error = error.get("message")
            raise RemoteToolError(
                tool_id, error or "Unknown error", status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteToolError(tool_id, "Invalid JSON response") from e

        if not isinstance(data, dict):
            raise RemoteToolError(tool_id, "Unexpected response shape")
        return data
