"""
Tests for kizeo_sync.logging: context propagation, redaction, formatters.
"""

import json
import logging

import pytest

from kizeo_sync.logging import (
    LogContext,
    StructuredJsonFormatter,
    Timer,
    get_current_context,
    redact_sensitive,
)

pytestmark = pytest.mark.unit


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("kizeo_sync.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_log_context_nests_and_restores():
    with LogContext(agency="S40"):
        with LogContext(submission_id=1001):
            assert get_current_context() == {"agency": "S40", "submission_id": 1001}
        assert get_current_context() == {"agency": "S40"}
    assert get_current_context() == {}


def test_redaction():
    data = {"database_url": "postgresql://u:p@h/db", "nested": {"api_token": "abc"}, "agency": "S40"}
    redacted = redact_sensitive(data)

    assert redacted["database_url"] == "[REDACTED]"
    assert redacted["nested"]["api_token"] == "[REDACTED]"
    assert redacted["agency"] == "S40"


def test_json_formatter_includes_context_and_extras():
    formatter = StructuredJsonFormatter()
    with LogContext(agency="S40"):
        line = formatter.format(_record(submission_id=1001, token="secret"))

    payload = json.loads(line)
    assert payload["message"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["agency"] == "S40"
    assert payload["submission_id"] == 1001
    assert payload["token"] == "[REDACTED]"


def test_timer_measures():
    with Timer() as timer:
        pass
    assert timer.elapsed_ms >= 0
