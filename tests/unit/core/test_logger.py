"""
Unit tests for core.logger module.

Tests:
- format_kv_pairs quoting, escaping and truncation
- StructuredFormatter and JsonFormatter output
- Logger structured_kv extras, bind() context, level filtering
"""

import json
import logging
import sys

import pytest

from vtsgate.core.logger import JsonFormatter, Logger, StructuredFormatter, format_kv_pairs


def _record(msg: str = "event", **kv) -> logging.LogRecord:
    record = logging.LogRecord("tunnel", logging.INFO, __file__, 1, msg, None, None)
    if kv:
        record.structured_kv = kv
    return record


class TestFormatKvPairs:
    def test_empty(self):
        assert format_kv_pairs({}) == ""

    def test_simple(self):
        assert format_kv_pairs({"port": 55432, "host": "db"}) == " port=55432 host=db"

    def test_quotes_whitespace_and_equals(self):
        assert format_kv_pairs({"error": "connection reset"}) == ' error="connection reset"'
        assert format_kv_pairs({"q": "a=b"}) == ' q="a=b"'

    def test_escapes_quotes(self):
        assert format_kv_pairs({"msg": 'say "hi"'}) == r' msg="say \"hi\""'

    def test_empty_value_quoted(self):
        assert format_kv_pairs({"x": ""}) == ' x=""'

    def test_truncation(self):
        out = format_kv_pairs({"v": "x" * 20}, max_value_length=5)
        assert "xxxxx...<truncated 15 chars>" in out

    def test_custom_prefix(self):
        assert format_kv_pairs({"a": 1}, prefix="") == "a=1"


class TestStructuredFormatter:
    def test_plain_record(self):
        assert StructuredFormatter().format(_record("hello")) == "info tunnel hello"

    def test_with_fields(self):
        out = StructuredFormatter().format(_record("tunnel_ready", local_port=55432))
        assert out == "info tunnel tunnel_ready local_port=55432"

    def test_appends_traceback(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record("failed")
            record.exc_info = sys.exc_info()
        out = StructuredFormatter().format(record)
        assert out.startswith("info tunnel failed\n")
        assert "ValueError: boom" in out


class TestJsonFormatter:
    def test_fields(self):
        payload = json.loads(JsonFormatter().format(_record("pool_ready", port=55432)))
        assert payload["level"] == "info"
        assert payload["logger"] == "tunnel"
        assert payload["message"] == "pool_ready"
        assert payload["port"] == 55432
        assert payload["timestamp"].endswith("+00:00")

    def test_non_serializable_values_stringified(self):
        payload = json.loads(JsonFormatter().format(_record("x", obj=object())))
        assert payload["obj"].startswith("<object object")


class TestLogger:
    def test_name(self):
        assert Logger("pool").name == "pool"

    def test_structured_extra(self, caplog):
        logger = Logger("test_extra")
        with caplog.at_level(logging.INFO, logger="test_extra"):
            logger.info("pool_ready", host="127.0.0.1", port=55432)
        record = caplog.records[-1]
        assert record.getMessage() == "pool_ready"
        assert record.structured_kv == {"host": "127.0.0.1", "port": 55432}

    def test_bind_merges_context(self, caplog):
        forward = Logger("test_bind").bind(remote="10.0.0.5:5432")
        with caplog.at_level(logging.DEBUG, logger="test_bind"):
            forward.debug("relay_opened", peer="127.0.0.1:5000")
        assert caplog.records[-1].structured_kv == {
            "remote": "10.0.0.5:5432",
            "peer": "127.0.0.1:5000",
        }

    def test_bind_does_not_mutate_parent(self, caplog):
        parent = Logger("test_parent")
        parent.bind(peer="x")
        with caplog.at_level(logging.INFO, logger="test_parent"):
            parent.info("event")
        assert not hasattr(caplog.records[-1], "structured_kv")

    def test_values_truncated(self, caplog):
        logger = Logger("test_trunc", max_value_length=4)
        with caplog.at_level(logging.INFO, logger="test_trunc"):
            logger.info("event", data="abcdefgh")
        assert caplog.records[-1].structured_kv["data"].startswith("abcd...<truncated")

    def test_disabled_level_skipped(self, caplog):
        logger = Logger("test_level")
        with caplog.at_level(logging.WARNING, logger="test_level"):
            logger.debug("hidden")
        assert caplog.records == []

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
    def test_levels(self, caplog, method, level):
        logger = Logger("test_levels")
        with caplog.at_level(logging.DEBUG, logger="test_levels"):
            getattr(logger, method)("event")
        assert caplog.records[-1].levelno == level

    def test_exception_attaches_exc_info(self, caplog):
        logger = Logger("test_exc")
        with caplog.at_level(logging.ERROR, logger="test_exc"):
            try:
                raise RuntimeError("x")
            except RuntimeError:
                logger.exception("crashed", step=1)
        record = caplog.records[-1]
        assert record.exc_info is not None
        assert record.structured_kv == {"step": 1}
