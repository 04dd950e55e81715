"""Tests for logging configuration module.

Verifies that logging configuration:
1. Filters out secrets (BLOCKED_FIELDS), including oracle authorities and keys
2. Normalizes high-cardinality fields (URLs to endpoints, price histories)
3. Produces valid JSON output
"""

from __future__ import annotations

import io
import json
import logging

import pytest

from perpsim.logging_config import (
    BLOCKED_FIELDS,
    JsonFormatter,
    SimpleFormatter,
    _filter_log_record,
    _normalize_url,
    _sanitize_text,
    get_logger,
    setup_logging,
)

BASE58_KEY = "5" + "K" * 40 + "abcdefghijkmnopqrstuvwxyz"


def _record(msg: str = "hello", level: int = logging.INFO, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("perpsim.test", level, "engine.py", 42, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestBlockedFields:
    """Secrets never survive filtering."""

    def test_contains_credential_fields(self) -> None:
        assert {"authority", "private_key", "keypair", "secret"} <= BLOCKED_FIELDS

    def test_filter_removes_oracle_authority(self) -> None:
        filtered = _filter_log_record({"oracle_authority": "abc", "session_id": "sim_a"})
        assert filtered == {"session_id": "sim_a"}

    def test_filter_removes_partial_matches(self) -> None:
        filtered = _filter_log_record({"relay_api_key": "k", "signing_key_path": "/x", "intent_id": "mm-1"})
        assert filtered == {"intent_id": "mm-1"}

    def test_filter_case_insensitive(self) -> None:
        assert _filter_log_record({"Oracle_Authority": "abc"}) == {}


class TestSanitizeText:
    """Free-form text scrubbing."""

    def test_url_keeps_path_only(self) -> None:
        text = "GET https://hermes.pyth.network/v2/updates/price/latest?ids[]=0xabc"
        assert _sanitize_text(text) == "GET /v2/updates/price/latest"

    def test_bare_host_url(self) -> None:
        assert _sanitize_text("relay at http://10.0.0.1") == "relay at [URL]"

    def test_ip_redacted(self) -> None:
        assert "[IP]" in _sanitize_text("peer 192.168.1.100 refused")

    def test_bearer_token_redacted(self) -> None:
        assert "abc.def" not in _sanitize_text("Bearer abc.def")

    def test_authority_redacted(self) -> None:
        assert "sekrit" not in _sanitize_text("authority=sekrit")

    def test_base58_key_redacted(self) -> None:
        assert _sanitize_text(f"loaded {BASE58_KEY}") == "loaded [KEY]"

    def test_safe_text_unchanged(self) -> None:
        assert _sanitize_text("Price engine started") == "Price engine started"
        assert _sanitize_text("") == ""


class TestHighCardinalityFields:
    def test_url_normalized_to_endpoint(self) -> None:
        filtered = _filter_log_record({"url": "https://relay.example/intents?x=1"})
        assert filtered == {"endpoint": "/intents"}

    def test_normalize_url(self) -> None:
        assert _normalize_url("https://host/a/b?q=1") == "/a/b"
        assert _normalize_url("https://host") == "/"

    def test_history_redacted(self) -> None:
        assert _filter_log_record({"history": [1, 2, 3]}) == {"history": "[HISTORY]"}
        assert _filter_log_record({"prices": [1, 2]}) == {"prices": "[PRICES]"}


class TestFilterLogRecord:
    def test_safe_fields_preserved(self) -> None:
        record = {"session_id": "sim_a", "price_e6": 100_000_000, "ok": True, "scenario": None, "pct": 1.5}
        assert _filter_log_record(record) == record

    def test_list_capped_at_10(self) -> None:
        assert _filter_log_record({"seqs": list(range(11))}) == {"seqs": "[list:11 items]"}
        assert _filter_log_record({"seqs": (1, 2)}) == {"seqs": [1, 2]}

    def test_nested_dict_filtered(self) -> None:
        filtered = _filter_log_record({"credentials_meta": {}, "meta": {"authority": "x", "market_id": "m"}})
        assert filtered == {"meta": {"market_id": "m"}}

    def test_depth_limit(self) -> None:
        deep: dict[str, object] = {"a": {"b": {"c": {"d": {"e": {}}}}}}
        assert _filter_log_record(deep)["a"]["b"]["c"]["d"] == {"_truncated": "max depth exceeded"}  # type: ignore[index]


class TestJsonFormatter:
    def test_required_fields(self) -> None:
        parsed = json.loads(JsonFormatter().format(_record("Session started", session_id="sim_a")))
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "perpsim.test"
        assert parsed["msg"] == "Session started"
        assert parsed["session_id"] == "sim_a"
        assert parsed["ts"].endswith("+00:00")
        assert "file" not in parsed

    def test_warning_includes_location(self) -> None:
        parsed = json.loads(JsonFormatter().format(_record(level=logging.WARNING)))
        assert parsed["file"] == "engine.py"
        assert parsed["line"] == 42

    def test_extra_fields_filtered(self) -> None:
        output = JsonFormatter().format(_record(oracle_authority="do-not-log", agent="mm-1"))
        assert "do-not-log" not in output
        assert json.loads(output)["agent"] == "mm-1"

    def test_exception_included(self) -> None:
        try:
            raise RuntimeError("relay at https://relay.example/intents?token=abc failed")
        except RuntimeError:
            import sys

            record = _record(level=logging.ERROR)
            record.exc_info = sys.exc_info()
        parsed = json.loads(JsonFormatter().format(record))
        assert "RuntimeError" in parsed["exc"]
        assert "token=abc" not in parsed["exc"]


class TestSimpleFormatter:
    def test_basic_format(self) -> None:
        assert SimpleFormatter().format(_record("Tick")) == "INFO     perpsim.test: Tick"

    def test_extra_fields_appended(self) -> None:
        output = SimpleFormatter().format(_record("Tick", seq=3, keypair="k"))
        assert output.endswith("| seq=3")


class TestSetupLogging:
    """setup_logging wires one handler on the root logger."""

    def test_setup_logging_json(self) -> None:
        stream = io.StringIO()
        setup_logging(json_format=True, stream=stream)

        get_logger("test_json").info("test message", extra={"market_id": "m-1"})

        parsed = json.loads(stream.getvalue().strip())
        assert parsed["msg"] == "test message"
        assert parsed["market_id"] == "m-1"

    def test_setup_logging_simple(self) -> None:
        stream = io.StringIO()
        setup_logging(json_format=False, stream=stream)

        get_logger("test_simple").info("simple test")

        output = stream.getvalue()
        assert "simple test" in output
        with pytest.raises(json.JSONDecodeError):
            json.loads(output.strip())

    def test_setup_logging_level(self) -> None:
        stream = io.StringIO()
        setup_logging(level="WARNING", json_format=False, stream=stream)

        logger = get_logger("test_level")
        logger.info("info message")
        logger.warning("warning message")

        output = stream.getvalue()
        assert "info message" not in output
        assert "warning message" in output

    def test_no_credentials_in_output(self) -> None:
        stream = io.StringIO()
        setup_logging(json_format=True, stream=stream)

        get_logger("security_test").info(
            "Session credentials stored",
            extra={"oracle_authority": BASE58_KEY, "market_id": "m-1", "session_id": "sim_a"},
        )

        output = stream.getvalue()
        assert BASE58_KEY not in output
        assert "sim_a" in output
