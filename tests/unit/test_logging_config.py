"""Unit tests for logging setup."""

import json
import logging
import sys

from app.core.logging_config import JsonFormatter, PlainFormatter, RoleFilter, setup_logging


def make_record(message="Started", exc_info=None):
    record = logging.LogRecord("app.main", logging.INFO, __file__, 42, message, None, exc_info)
    RoleFilter("Server").filter(record)
    return record


class TestFormatters:
    def test_plain_format_carries_role(self):
        line = PlainFormatter().format(make_record())

        assert "[Server][INFO] app.main:42 - Started" in line

    def test_json_format(self):
        payload = json.loads(JsonFormatter().format(make_record("hello")))

        assert payload["role"] == "Server"
        assert payload["level"] == "INFO"
        assert payload["message"] == "hello"

    def test_exception_is_rendered(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = make_record(exc_info=sys.exc_info())

        assert "ValueError: bad" in PlainFormatter().format(record)


class TestSetupLogging:
    def test_idempotent(self):
        setup_logging("Server")
        setup_logging("Server")

        handlers = [h for h in logging.getLogger().handlers if h.name == "_relay_stream"]
        assert len(handlers) == 1
        assert logging.getLogger("httpx").level == logging.WARNING
