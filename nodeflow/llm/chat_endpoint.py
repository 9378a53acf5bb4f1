"""Chat completion provider backed by the application's ``/api/openai/chat`` proxy."""

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from nodeflow.config import RuntimeConfig
from nodeflow.errors import ConfigurationError, LLMRequestError
from nodeflow.llm.provider import LLMProvider, LLMResponse
from nodeflow.observability.logging import sanitize_payload, summarize_payload

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/openai/chat"
MAX_API_LOGS = 50


def record_api_call(
    node: Any,
    request: dict[str, Any],
    response: Any = None,
    error: str | None = None,
) -> None:
    """Append a sanitized request/response record to ``node.api_logs``.

    Only the most recent ``MAX_API_LOGS`` records are kept.
    """
    if node is None or not hasattr(node, "api_logs"):
        return

    node.api_logs.append(
        {
            "timestamp": datetime.now(UTC).isoformat(),
            "request": sanitize_payload(request),
            "response": sanitize_payload(response),
            "error": error,
            "success": error is None,
        }
    )
    if len(node.api_logs) > MAX_API_LOGS:
        del node.api_logs[: len(node.api_logs) - MAX_API_LOGS]


def _error_message(response: httpx.Response) -> str:
    """Pull the human-readable message out of a non-2xx reply."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if body.get("message"):
            return body["message"]
    return f"HTTP {response.status_code}"


class ChatEndpointProvider(LLMProvider):
    """
    LLM provider that talks to the OpenAI-compatible chat proxy.

    The request body is ``{model, messages, temperature, max_tokens}`` and the
    key travels in the ``x-openai-api-key`` header. Retries and timeouts are
    left to the HTTP client.

    Example:
        provider = ChatEndpointProvider(RuntimeConfig())
        response = await provider.acomplete([{"role": "user", "content": "hi"}])
    """

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the provider.

        Args:
            config: Model, key, base URL and timeout. Defaults to RuntimeConfig().
            client: Pre-built async client (tests pass one with a MockTransport).
        """
        self.config = config or RuntimeConfig()
        self._client = client

    @property
    def model(self) -> str:
        return self.config.model

    def has_credentials(self) -> bool:
        return self.config.has_credentials

    def _build_request(
        self,
        messages: list[dict[str, Any]],
        system: str,
        max_tokens: int | None,
        temperature: float | None,
    ) -> dict[str, Any]:
        full_messages = []
        if system:
            full_messages.append({"role": "system", "content": system})
        full_messages.extend(messages)

        return {
            "model": self.config.model,
            "messages": full_messages,
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
        }

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {
            "Content-Type": "application/json",
            "x-openai-api-key": self.config.api_key or "",
        }
        if self._client is not None:
            return await self._client.post(CHAT_PATH, json=payload, headers=headers)

        async with httpx.AsyncClient(
            base_url=self.config.api_base,
            timeout=self.config.timeout,
        ) as client:
            return await client.post(CHAT_PATH, json=payload, headers=headers)

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int | None = None,
        temperature: float | None = None,
        node: Any = None,
    ) -> LLMResponse:
        """Send one chat completion request and return the first choice."""
        if not self.has_credentials():
            raise ConfigurationError("OpenAI API key not configured")

        payload = self._build_request(messages, system, max_tokens, temperature)
        logger.debug(f"Chat request: {summarize_payload(payload)}")

        try:
            response = await self._post(payload)
        except httpx.HTTPError as e:
            record_api_call(node, payload, error=str(e))
            raise LLMRequestError(f"Chat request failed: {e}") from e

        if not response.is_success:
            message = _error_message(response)
            record_api_call(node, payload, error=message)
            logger.error(f"Chat endpoint returned {response.status_code}: {message}")
            raise LLMRequestError(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            record_api_call(node, payload, error="Invalid JSON response")
            raise LLMRequestError("Chat endpoint returned invalid JSON") from e

        record_api_call(node, payload, response=data)
        logger.debug(f"Chat response: {summarize_payload(data)}")

        choices = data.get("choices") or []
        if not choices:
            raise LLMRequestError("Chat endpoint returned no choices")

        choice = choices[0]
        usage = data.get("usage") or {}
        return LLMResponse(
            content=(choice.get("message") or {}).get("content") or "",
            model=data.get("model", self.config.model),
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            stop_reason=choice.get("finish_reason") or "",
            raw_response=data,
        )
