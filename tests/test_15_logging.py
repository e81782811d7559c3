"""Tests for the structured logging package."""
from __future__ import annotations

import io
import json
import logging
from unittest.mock import patch

import pytest

from tts_gateway.core.logging import (
    ColoredConsoleFormatter,
    JsonlFormatter,
    LogLevel,
    coerce_level,
    configure_logging,
    fail,
    get_level,
    get_logger,
    info,
    set_request_id,
    verbose,
)


@pytest.fixture
def captured(tmp_path, monkeypatch):
    """Reconfigure logging onto a StringIO; restore afterwards."""
    monkeypatch.setenv("TTS_GATEWAY_SETTINGS", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("TTS_GATEWAY_LOG_LEVEL", raising=False)
    monkeypatch.delenv("TTS_GATEWAY_LOG_DIR", raising=False)
    buf = io.StringIO()

    def configure(level):
        with patch("sys.stdout", buf):
            configure_logging(level=level, force=True)
        return buf

    yield configure
    configure_logging(force=True)


def _record(**extra):
    record = logging.LogRecord("tts-gateway.test", logging.INFO, __file__, 1, "cache_hit", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLevelCoercion:

    def test_from_int(self):
        assert coerce_level(1) == LogLevel.MINIMAL
        assert coerce_level(4) == LogLevel.DEBUG

    def test_from_names(self):
        assert coerce_level("verbose") == LogLevel.VERBOSE
        assert coerce_level("INFO") == LogLevel.NORMAL
        assert coerce_level(" 3 ") == LogLevel.VERBOSE

    def test_from_python_levels(self):
        assert coerce_level(logging.WARNING) == LogLevel.MINIMAL
        assert coerce_level(logging.INFO) == LogLevel.NORMAL
        assert coerce_level(logging.DEBUG) == LogLevel.DEBUG

    def test_unknown_falls_back_to_normal(self):
        assert coerce_level("chatty") == LogLevel.NORMAL
        assert coerce_level(None) == LogLevel.NORMAL


class TestFormatters:

    def test_jsonl(self):
        record = _record(tag="SUCCESS", request_id="abc123", numeric_level=2,
                         event="fallback", seconds=0.25, extra_data={"provider": "0:silent"})
        payload = json.loads(JsonlFormatter().format(record))

        assert payload["message"] == "cache_hit"
        assert payload["tag"] == "SUCCESS"
        assert payload["request_id"] == "abc123"
        assert payload["event"] == "fallback"
        assert payload["seconds"] == 0.25
        assert payload["extra"] == {"provider": "0:silent"}
        assert "ts" in payload

    def test_jsonl_omits_empty_fields(self):
        payload = json.loads(JsonlFormatter().format(_record(tag="INFO", request_id="-")))
        assert "extra" not in payload
        assert "event" not in payload

    def test_console_plain(self):
        line = ColoredConsoleFormatter().format(
            _record(tag="WARN", request_id="rid1", extra_data={"quota_percent": 93.4}, seconds=1.5)
        )
        assert "(rid1)" in line
        assert "cache_hit" in line
        assert "quota_percent=93.4" in line
        assert "1.500s" in line


class TestLevelFiltering:

    def test_minimal_hides_info(self, captured):
        buf = captured(1)
        log = get_logger("tts-gateway.test")
        info(log, "hidden_info")
        fail(log, "shown_failure")

        out = buf.getvalue()
        assert "hidden_info" not in out
        assert "shown_failure" in out
        assert get_level() == LogLevel.MINIMAL

    def test_verbose_shows_stage_logs(self, captured):
        buf = captured(3)
        verbose(get_logger("test"), "retry_scheduled", attempt=2)
        assert "retry_scheduled" in buf.getvalue()
        assert "attempt=2" in buf.getvalue()

    def test_request_id_attached(self, captured):
        buf = captured(2)
        set_request_id("req-42")
        info(get_logger("tts-gateway.test"), "request")
        assert "(req-42)" in buf.getvalue()

    def test_logger_names_are_prefixed(self):
        assert get_logger("cache").name == "tts-gateway.cache"
        assert get_logger("tts-gateway.api").name == "tts-gateway.api"

    def test_jsonl_file_written(self, tmp_path, monkeypatch, captured):
        log_dir = tmp_path / "logs"
        monkeypatch.setenv("TTS_GATEWAY_LOG_DIR", str(log_dir))
        captured(2)

        info(get_logger("tts-gateway.test"), "persisted", chars=5)
        for handler in logging.getLogger("tts-gateway").handlers:
            handler.flush()

        lines = (log_dir / "tts-gateway.jsonl").read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[-1])["extra"] == {"chars": 5}
