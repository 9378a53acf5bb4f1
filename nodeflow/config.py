"""Shared nodeflow configuration utilities.

Centralises reading of ~/.nodeflow/configuration.json so that the CLI,
the chat endpoint client and tests share one implementation.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MODEL = "gpt-4o"
DEFAULT_MAX_TOKENS = 2000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_API_BASE = "http://localhost:3000"
DEFAULT_TIMEOUT = 60.0
DEFAULT_API_KEY_ENV_VAR = "OPENAI_API_KEY"

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

NODEFLOW_CONFIG_FILE = Path.home() / ".nodeflow" / "configuration.json"


def get_nodeflow_config(path: Path | None = None) -> dict[str, Any]:
    """Load nodeflow configuration from ~/.nodeflow/configuration.json."""
    config_file = path or NODEFLOW_CONFIG_FILE
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the configured chat model (e.g. 'gpt-4o')."""
    return get_nodeflow_config().get("llm", {}).get("model") or DEFAULT_MODEL


def get_max_tokens() -> int:
    """Return the configured max_tokens, falling back to DEFAULT_MAX_TOKENS."""
    return get_nodeflow_config().get("llm", {}).get("max_tokens", DEFAULT_MAX_TOKENS)


def get_temperature() -> float:
    return get_nodeflow_config().get("llm", {}).get("temperature", DEFAULT_TEMPERATURE)


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration.

    Falls back to OPENAI_API_KEY when the configuration does not name one.
    """
    llm = get_nodeflow_config().get("llm", {})
    api_key_env_var = llm.get("api_key_env_var") or DEFAULT_API_KEY_ENV_VAR
    return os.environ.get(api_key_env_var) or None


def get_api_base() -> str:
    api = get_nodeflow_config().get("api", {})
    return api.get("base_url") or os.environ.get("NODEFLOW_API_BASE") or DEFAULT_API_BASE


def get_timeout() -> float:
    return float(get_nodeflow_config().get("api", {}).get("timeout", DEFAULT_TIMEOUT))


# ---------------------------------------------------------------------------
# RuntimeConfig – shared by the CLI and the chat endpoint client
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Runtime configuration loaded from ~/.nodeflow/configuration.json and env."""

    model: str = field(default_factory=get_preferred_model)
    temperature: float = field(default_factory=get_temperature)
    max_tokens: int = field(default_factory=get_max_tokens)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str = field(default_factory=get_api_base)
    timeout: float = field(default_factory=get_timeout)

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)
