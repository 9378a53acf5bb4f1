"""
Tool parameter extraction.

Two ways to get a parameter object for a plan step:
- parse the JSON object out of a language-model reply
- guess from keywords in the step description (last resort)

The keyword guesser only runs after the model path failed; callers log
each use.
"""

import json
import re
from typing import Any

from nodeflow.errors import ParamParseError

_FENCED_JSON = re.compile(r"```json\s*\n(.*?)\n\s*```", re.DOTALL)
_FENCED_ANY = re.compile(r"```\s*\n(.*?)\n\s*```", re.DOTALL)
_BARE_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

_LENGTH_HINT = re.compile(r"(\d+)\s*(words|characters)", re.IGNORECASE)
_IMAGE_URL = re.compile(r"(https?://\S+\.(?:jpg|jpeg|png|gif|webp))", re.IGNORECASE)
_DATA_URL = re.compile(r"(data:image/[^;]+;base64,\S+)", re.IGNORECASE)
_NODE_REF = re.compile(r"node\s*(\d+)", re.IGNORECASE)
_ID_REF = re.compile(r"ID\s*(\d+)", re.IGNORECASE)


def extract_json_params(text: str) -> dict[str, Any]:
    """
    Parse the parameter object out of a model reply.

    Accepts a ```json fenced block, a plain ``` fenced block, or the first
    ``{...}`` span; otherwise the whole reply is parsed.

    Raises:
        ParamParseError: if no JSON object can be parsed
    """
    match = _FENCED_JSON.search(text) or _FENCED_ANY.search(text)
    if match:
        candidate = match.group(1)
    else:
        bare = _BARE_OBJECT.search(text)
        candidate = bare.group(0) if bare else text

    try:
        params = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ParamParseError(f"Error parsing parameters JSON: {e}", raw_text=text) from e

    if not isinstance(params, dict):
        raise ParamParseError(
            f"Expected a JSON object, got {type(params).__name__}", raw_text=text
        )
    return params


def extract_params_from_description(description: str, input: str) -> dict[str, Any]:
    """
    Guess tool parameters from keywords in a step description.

    Never fails: falls back to passing the raw input as ``text``.
    """
    input = input or ""
    params: dict[str, Any] = {}

    if "summarize" in description or "summary" in description:
        params["text"] = input
        length = _LENGTH_HINT.search(description)
        if length:
            params["max_length"] = int(length.group(1))
    elif "extract" in description or "entities" in description:
        params["text"] = input
    elif "image" in description or "analyze" in description:
        url = _IMAGE_URL.search(input) or _DATA_URL.search(input)
        if url:
            params["image_url"] = url.group(1)
        else:
            params["text"] = input
    elif "JSON" in description or "parse" in description:
        params["json_string"] = input
    elif "node" in description and "content" in description:
        ref = _NODE_REF.search(description) or _ID_REF.search(description)
        if ref:
            params["node_id"] = ref.group(1)
    else:
        params["text"] = input

    return params
