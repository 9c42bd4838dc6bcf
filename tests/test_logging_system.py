"""Tests for logging_system.py.

This test module covers:
- SessionLogger.bind / get_logger record tagging
- Per-stream buffering, max line trimming and snapshots
- discard and cleanup of stale stream buffers
- Structured event building (exceptions, bad format args)
"""

from __future__ import annotations

import logging
import time

import pytest

from llm_stream_client.core.logging_system import SessionLogger

LOGGER = SessionLogger.get_logger("llm_stream_client.tests.logging")


@pytest.fixture(autouse=True)
def _restore_max_lines():
    original = SessionLogger.max_lines
    yield
    SessionLogger.max_lines = original


# -----------------------------------------------------------------------------
# Binding and Capture
# -----------------------------------------------------------------------------


class TestBinding:
    def test_records_inside_bind_are_buffered(self) -> None:
        with SessionLogger.bind("stream_a"):
            LOGGER.warning("first %s", "event")
        LOGGER.warning("outside any stream")

        events = SessionLogger.events("stream_a")
        assert [event["message"] for event in events] == ["first event"]
        assert events[0]["stream_id"] == "stream_a"
        assert events[0]["level"] == "WARNING"
        assert list(SessionLogger.logs) == ["stream_a"]

    def test_bind_restores_previous_context(self) -> None:
        with SessionLogger.bind("outer", level=logging.DEBUG):
            with SessionLogger.bind("inner"):
                assert SessionLogger.stream_id.get() == "inner"
                assert SessionLogger.log_level.get() == logging.DEBUG
            assert SessionLogger.stream_id.get() == "outer"
        assert SessionLogger.stream_id.get() is None

    def test_get_logger_is_idempotent(self) -> None:
        logger = SessionLogger.get_logger("llm_stream_client.tests.logging")
        assert logger is LOGGER
        assert len(logger.handlers) == 1
        assert len(logger.filters) == 1

    def test_exception_text_is_captured(self) -> None:
        with SessionLogger.bind("stream_exc"):
            try:
                raise RuntimeError("kaboom")
            except RuntimeError:
                LOGGER.exception("handler failed")

        event = SessionLogger.events("stream_exc")[0]
        assert event["message"] == "handler failed"
        assert "kaboom" in event["exception"]["text"]


# -----------------------------------------------------------------------------
# Buffer Management
# -----------------------------------------------------------------------------


class TestBuffers:
    def test_max_lines_is_clamped_and_applied(self) -> None:
        SessionLogger.set_max_lines(5)
        assert SessionLogger.max_lines == 100

        SessionLogger.set_max_lines(100)
        with SessionLogger.bind("stream_many"):
            for i in range(150):
                LOGGER.warning("line %d", i)

        events = SessionLogger.events("stream_many")
        assert len(events) == 100
        assert events[0]["message"] == "line 50"

    def test_events_returns_a_snapshot(self) -> None:
        with SessionLogger.bind("stream_snap"):
            LOGGER.warning("one")
        snapshot = SessionLogger.events("stream_snap")
        with SessionLogger.bind("stream_snap"):
            LOGGER.warning("two")
        assert len(snapshot) == 1
        assert SessionLogger.events("unknown") == []

    def test_discard_drops_one_stream(self) -> None:
        for stream_id in ("keep", "drop"):
            with SessionLogger.bind(stream_id):
                LOGGER.warning("hello")

        SessionLogger.discard("drop")
        SessionLogger.discard("never-seen")

        assert set(SessionLogger.logs) == {"keep"}

    def test_cleanup_removes_only_stale_streams(self) -> None:
        for stream_id in ("old", "fresh"):
            with SessionLogger.bind(stream_id):
                LOGGER.warning("hello")
        SessionLogger._last_seen["old"] = time.time() - 7200

        SessionLogger.cleanup(max_age_seconds=3600)

        assert set(SessionLogger.logs) == {"fresh"}
        assert set(SessionLogger._last_seen) == {"fresh"}


# -----------------------------------------------------------------------------
# Event Building
# -----------------------------------------------------------------------------


def test_build_event_survives_bad_format_args() -> None:
    record = logging.LogRecord("x", logging.WARNING, __file__, 10, "%d items", ("many",), None)
    event = SessionLogger._build_event(record)
    assert event["message"] == "%d items"
    assert event["lineno"] == 10


def test_process_record_ignores_unbound_records() -> None:
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "loose", None, None)
    record.stream_id = "-"
    SessionLogger.process_record(record)
    assert SessionLogger.logs == {}
