"""
Unit tests for core.logger module.

Tests:
- format_kv_pairs() escaping and truncation
- StructuredFormatter output for structured and plain records
- Logger levels, JSON mode and value truncation
"""

from __future__ import annotations

import json
import logging

import pytest

from shelfstr.core.logger import Logger, StructuredFormatter, format_kv_pairs


class TestFormatKvPairs:
    """Key-value pairs formatting and escaping."""

    def test_simple(self) -> None:
        assert format_kv_pairs({"key": "hello"}) == " key=hello"
        assert format_kv_pairs({"key": 123}) == " key=123"

    def test_with_spaces(self) -> None:
        assert format_kv_pairs({"key": "hello world"}) == ' key="hello world"'

    def test_with_equals(self) -> None:
        assert format_kv_pairs({"url": "wss://x/?a=b"}) == ' url="wss://x/?a=b"'

    def test_with_double_quotes(self) -> None:
        assert format_kv_pairs({"key": 'say "hi"'}) == ' key="say \\"hi\\""'

    def test_empty_value(self) -> None:
        assert format_kv_pairs({"key": ""}) == ' key=""'

    def test_empty_dict(self) -> None:
        assert format_kv_pairs({}) == ""

    def test_truncation(self) -> None:
        result = format_kv_pairs({"key": "x" * 1500}, max_value_length=1000)
        assert "truncated 500 chars" in result

    def test_no_truncation(self) -> None:
        assert "truncated" not in format_kv_pairs({"key": "x" * 1500}, max_value_length=None)

    def test_custom_prefix(self) -> None:
        assert format_kv_pairs({"key": "val"}, prefix="") == "key=val"


class TestStructuredFormatter:
    """Record formatting."""

    def _record(self, msg: str, **extra: object) -> logging.LogRecord:
        record = logging.LogRecord("feed", logging.INFO, __file__, 1, msg, None, None)
        for k, v in extra.items():
            setattr(record, k, v)
        return record

    def test_plain_record(self) -> None:
        line = StructuredFormatter().format(self._record("feed_started"))
        assert line == "info feed feed_started"

    def test_structured_record(self) -> None:
        record = self._record("feed_loaded", structured_kv={"relations": 3, "rejected": 1})
        line = StructuredFormatter().format(record)
        assert line == "info feed feed_loaded relations=3 rejected=1"


class TestLogger:
    """Logger behaviour with real logging."""

    def test_name(self) -> None:
        assert Logger("feed").name == "feed"

    def test_info_attaches_structured_kv(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="feed"):
            Logger("feed").info("feed_loaded", relations=3)

        record = caplog.records[-1]
        assert record.getMessage() == "feed_loaded"
        assert record.structured_kv == {"relations": 3}  # type: ignore[attr-defined]

    @pytest.mark.parametrize(
        ("method", "level"),
        [
            ("debug", logging.DEBUG),
            ("info", logging.INFO),
            ("warning", logging.WARNING),
            ("error", logging.ERROR),
            ("critical", logging.CRITICAL),
        ],
    )
    def test_levels(self, method: str, level: int, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger="levels"):
            getattr(Logger("levels"), method)("event", k=1)
        assert caplog.records[-1].levelno == level

    def test_disabled_level_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="quiet"):
            logger = Logger("quiet")
            logger.debug("hidden")
            assert not logger.is_enabled_for(logging.DEBUG)
        assert not [r for r in caplog.records if r.name == "quiet"]

    def test_exception_includes_traceback(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR, logger="boom"):
            try:
                raise RuntimeError("boom")
            except RuntimeError:
                Logger("boom").exception("failed", step=2)

        assert caplog.records[-1].exc_info is not None

    def test_json_output(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="json"):
            Logger("json", json_output=True).info("published", id="ab", score=0.5)

        parsed = json.loads(caplog.records[-1].getMessage())
        assert parsed["message"] == "published"
        assert parsed["level"] == "info"
        assert parsed["service"] == "json"
        assert parsed["score"] == 0.5

    def test_value_truncation(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="trunc"):
            Logger("trunc", max_value_length=10).info("long", content="y" * 50)

        value = caplog.records[-1].structured_kv["content"]  # type: ignore[attr-defined]
        assert value.startswith("y" * 10)
        assert "truncated 40 chars" in value
