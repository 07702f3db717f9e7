"""Tests for structured logging module."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog

from rolodex.core.logging import (
    _NOISE_LOGGERS,
    add_otel_context,
    add_owner_context,
    configure_logging,
    get_owner_context,
    set_owner_context,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset the root logger between tests."""
    yield
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    structlog.reset_defaults()


# ---------------------------------------------------------------------------
# Owner context
# ---------------------------------------------------------------------------


class TestOwnerContext:
    def test_set_and_get(self):
        set_owner_context("owner-1")
        assert get_owner_context() == "owner-1"

    def test_default_is_none(self):
        assert get_owner_context() is None

    def test_processor_injects_owner(self):
        set_owner_context("owner-9")
        result = add_owner_context(None, "info", {"event": "test"})
        assert result["owner"] == "owner-9"

    def test_processor_handles_unset_context(self):
        result = add_owner_context(None, "info", {"event": "test"})
        assert result["owner"] is None


# ---------------------------------------------------------------------------
# add_otel_context processor
# ---------------------------------------------------------------------------


class TestAddOtelContext:
    def test_zeroed_ids_when_no_span(self):
        result = add_otel_context(None, "info", {"event": "test"})
        assert result["trace_id"] == "0" * 32
        assert result["span_id"] == "0" * 16

    def test_real_ids_when_span_active(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider()
        tracer = provider.get_tracer("test")
        with tracer.start_as_current_span("test-span"):
            result = add_otel_context(None, "info", {"event": "test"})
            assert result["trace_id"] != "0" * 32
            assert len(result["trace_id"]) == 32
            assert len(result["span_id"]) == 16
        provider.shutdown()


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_format_installs_json_renderer(self):
        configure_logging(fmt="json")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_noise_loggers_suppressed(self):
        configure_logging()
        for name in _NOISE_LOGGERS:
            assert logging.getLogger(name).level >= logging.WARNING

    def test_log_level_applied(self):
        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_log_file_receives_json_lines(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "rolodex.log"
        configure_logging(level="INFO", log_file=log_file)
        set_owner_context("owner-1")

        logging.getLogger("rolodex.test").info("Synced %d contacts", 3)
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = log_file.read_text().strip().splitlines()
        assert lines
        entry = json.loads(lines[-1])
        assert entry["event"] == "Synced 3 contacts"
        assert entry["owner"] == "owner-1"
        assert entry["logger"] == "rolodex.test"
        assert entry["level"] == "info"
