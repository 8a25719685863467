"""Tests for structured logging of election decisions."""

from __future__ import annotations

import json
import logging
import sys

import pytest

from raceblock.observability.logging import (
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    attempt_id_var,
    configure_logging,
    election_key_var,
)


def _record(message: str = "Running block", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="raceblock",
        level=logging.DEBUG,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogContext:
    """Tests for LogContext."""

    def test_sets_and_restores_context(self) -> None:
        with LogContext(election_key="cleanup", attempt_id="3f2a9c1e"):
            assert election_key_var.get() == "cleanup"
            assert attempt_id_var.get() == "3f2a9c1e"

        assert election_key_var.get() == ""
        assert attempt_id_var.get() == ""

    def test_nested_contexts(self) -> None:
        with LogContext(election_key="outer"):
            with LogContext(election_key="inner"):
                assert election_key_var.get() == "inner"
            assert election_key_var.get() == "outer"

    def test_unknown_names_ignored(self) -> None:
        with LogContext(tenant="acme"):
            assert election_key_var.get() == ""


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_fields(self) -> None:
        data = json.loads(JsonFormatter().format(_record()))

        assert data["level"] == "DEBUG"
        assert data["logger"] == "raceblock"
        assert data["message"] == "Running block"
        assert "election_key" not in data

    def test_includes_election_context(self) -> None:
        with LogContext(election_key="nightly-report", attempt_id="a1b2c3d4"):
            data = json.loads(JsonFormatter().format(_record()))

        assert data["election_key"] == "nightly-report"
        assert data["attempt_id"] == "a1b2c3d4"

    def test_includes_extra_fields(self) -> None:
        record = _record(outcome="ran", store_key="race_block_job", duration=0.25)

        data = json.loads(JsonFormatter().format(record))

        assert data["outcome"] == "ran"
        assert data["store_key"] == "race_block_job"
        assert data["duration"] == 0.25

    def test_non_serializable_extra_is_stringified(self) -> None:
        data = json.loads(JsonFormatter().format(_record(error=RuntimeError("boom"))))

        assert data["error"] == "boom"

    def test_exception_info(self) -> None:
        try:
            raise ValueError("bad value")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        data = json.loads(JsonFormatter().format(record))

        assert data["exception"]["type"] == "ValueError"
        assert data["exception"]["message"] == "bad value"


class TestConsoleFormatter:
    """Tests for ConsoleFormatter."""

    def test_appends_context(self) -> None:
        formatter = ConsoleFormatter(use_colors=False)

        with LogContext(election_key="cleanup", attempt_id="0123456789abcdef"):
            line = formatter.format(_record("Token out of sync"))

        assert "| raceblock | Token out of sync | key=cleanup attempt=01234567" in line

    def test_without_context(self) -> None:
        line = ConsoleFormatter(use_colors=False).format(_record())

        assert line.endswith("| raceblock | Running block")


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):  # type: ignore[no-untyped-def]
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self) -> None:
        configure_logging(json_format=True, level="DEBUG")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("redis").level == logging.WARNING

    def test_console_format(self) -> None:
        configure_logging(json_format=False, level="warning")

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, ConsoleFormatter)
