"""Tests for payload sanitizing, trace context and formatters."""

import json
import logging

import pytest

from nodeflow.observability.logging import (
    REDACTED,
    HumanReadableFormatter,
    StructuredFormatter,
    clear_trace_context,
    configure_logging,
    get_trace_context,
    sanitize_payload,
    set_trace_context,
    summarize_payload,
)


class TestSanitizePayload:
    def test_masks_secrets_and_truncates_long_strings(self):
        result = sanitize_payload({"apiKey": "abc", "note": "x" * 2000})

        assert result["apiKey"] == REDACTED
        assert result["note"].startswith("x" * 100 + " ... [truncated, total length: 2000]")
        assert len(result["note"].split(" ... ")[0]) <= 100

    def test_sensitive_key_variants(self):
        result = sanitize_payload(
            {"Authorization": "Bearer t", "refresh_token": "r", "password": "p", "model": "m"}
        )
        assert result == {
            "Authorization": REDACTED,
            "refresh_token": REDACTED,
            "password": REDACTED,
            "model": "m",
        }

    def test_base64_images_collapse(self):
        image = "data:image/png;base64," + "A" * 5000
        assert sanitize_payload({"url": image}) == {"url": "[BASE64_IMAGE]"}

    def test_long_lists_are_cut(self):
        result = sanitize_payload({"items": list(range(25))})
        assert result["items"][:10] == list(range(10))
        assert result["items"][10] == "... [truncated, total items: 25]"
        assert len(result["items"]) == 11

    def test_nested_structures(self):
        payload = {"messages": [{"role": "user", "content": "y" * 1500}], "meta": {"token": "t"}}

        result = sanitize_payload(payload)

        assert result["messages"][0]["content"].endswith("[truncated, total length: 1500]")
        assert result["meta"]["token"] == REDACTED

    def test_containers_under_sensitive_keys_are_masked(self):
        result = sanitize_payload(
            {"auth": {"password": "hunter2", "scheme": "basic"}, "tokens": ["a", "b", ""]}
        )

        assert result["auth"] == {"password": REDACTED, "scheme": REDACTED}
        assert result["tokens"] == [REDACTED, REDACTED, ""]

    def test_lists_nested_in_lists_are_walked(self):
        result = sanitize_payload({"headers": [[{"apiKey": "abc", "accept": "json"}]]})

        assert result["headers"] == [[{"apiKey": REDACTED, "accept": "json"}]]
        assert sanitize_payload([["z" * 1200]])[0][0].endswith("[truncated, total length: 1200]")

    def test_input_is_not_mutated(self):
        payload = {"apiKey": "abc"}
        sanitize_payload(payload)
        assert payload == {"apiKey": "abc"}

    def test_none_and_unserializable(self):
        assert sanitize_payload(None) is None

        result = sanitize_payload({"obj": object()})
        assert set(result) == {"_note", "_type", "_repr"}
        assert result["_type"] == "dict"


class TestSummarizePayload:
    def test_request_and_response(self):
        assert summarize_payload({"messages": [1, 2]}) == "Chat with 2 messages"
        response = {"choices": [{"message": {"content": "short"}}]}
        assert summarize_payload(response) == '"short"'
        assert summarize_payload(None) == "No data"


class TestTraceContext:
    def test_set_merge_and_clear(self):
        clear_trace_context()
        set_trace_context(node_id="n1")
        set_trace_context(iteration=2)

        assert get_trace_context() == {"node_id": "n1", "iteration": 2}

        clear_trace_context()
        assert get_trace_context() == {}

    def test_structured_formatter_includes_context(self):
        clear_trace_context()
        set_trace_context(node_id="n1", iteration=1)
        record = logging.LogRecord("nodeflow.test", logging.INFO, __file__, 1, "hi", None, None)
        record.tool_id = "text-echo"

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "hi"
        assert entry["node_id"] == "n1"
        assert entry["iteration"] == 1
        assert entry["tool_id"] == "text-echo"
        clear_trace_context()


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    level = root.level
    yield root
    for handler in list(root.handlers):
        if isinstance(handler.formatter, StructuredFormatter | HumanReadableFormatter):
            root.removeHandler(handler)
    root.setLevel(level)


class TestConfigureLogging:
    def test_json_format(self, restore_root_logger, monkeypatch):
        # configure_logging writes NO_COLOR; setenv makes teardown undo it
        monkeypatch.setenv("NO_COLOR", "")
        configure_logging(level="debug", format="json")

        assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)
        assert restore_root_logger.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_auto_uses_env(self, restore_root_logger, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "")
        monkeypatch.setenv("ENV", "development")
        configure_logging()

        assert isinstance(restore_root_logger.handlers[0].formatter, HumanReadableFormatter)
