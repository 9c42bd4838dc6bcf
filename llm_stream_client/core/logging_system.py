"""Logging system with per-stream log capture.

This module handles all logging-related functionality:
- SessionLogger: Per-stream logger with context-aware buffering
- Structured log event extraction from LogRecords
- Explicit cleanup of stale stream buffers

The SessionLogger uses a contextvar to track the stream_id so every record
emitted while a session is handling an event is tagged with the stream it
belongs to, enabling per-stream log isolation for diagnostics.
"""

from __future__ import annotations

import logging
import sys
import threading
import time
import traceback
from collections import deque
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

LOGGER = logging.getLogger(__name__)


class SessionLogger:
    """Per-stream logger that captures console output and an in-memory log buffer.

    The logger tracks the active stream via ``stream_id``. Records logged while a
    stream id is bound are appended to ``logs[stream_id]`` (a bounded deque of
    structured events) in addition to normal propagation.

    Cleanup is explicit: callers ``discard`` a stream once they have read its
    events, and ``start_stream`` runs ``cleanup`` to prune buffers that have
    been idle too long. No background task prunes logs.

    Attributes:
        stream_id: ContextVar storing the active stream id.
        log_level: ContextVar storing the minimum console level for this stream.
        logs:      Map of stream_id -> fixed-size deque of structured log events.
    """

    stream_id: ContextVar[Optional[str]] = ContextVar("stream_id", default=None)
    log_level: ContextVar[int] = ContextVar("stream_log_level", default=logging.INFO)
    max_lines: int = 2000
    console: bool = False
    logs: Dict[str, deque[dict[str, Any]]] = {}
    _last_seen: Dict[str, float] = {}
    _state_lock = threading.Lock()
    _console_formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d [stream=%(stream_id)s] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    @classmethod
    def _build_event(cls, record: logging.LogRecord) -> dict[str, Any]:
        """Return a structured log event extracted from a LogRecord."""
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(getattr(record, "msg", "") or "")

        event: dict[str, Any] = {
            "created": float(getattr(record, "created", time.time())),
            "level": str(getattr(record, "levelname", "INFO") or "INFO"),
            "logger": str(getattr(record, "name", "") or ""),
            "stream_id": getattr(record, "stream_id", None),
            "module": str(getattr(record, "module", "") or ""),
            "func": str(getattr(record, "funcName", "") or ""),
            "lineno": int(getattr(record, "lineno", 0) or 0),
        }
        if record.exc_text:
            event["exception"] = {"text": str(record.exc_text)}
        elif record.exc_info:
            event["exception"] = {"text": "".join(traceback.format_exception(*record.exc_info))}
        event["message"] = message
        return event

    @classmethod
    def get_logger(cls, name: str = __name__) -> logging.Logger:
        """Return a logger wired to the current SessionLogger context.

        Args:
            name: Logger name; defaults to the current module name.

        Returns:
            logging.Logger: A logger whose records are tagged with the active
            ``stream_id`` and copied into the in-memory ``SessionLogger.logs``
            buffer. Records still propagate to the application's handlers.
        """
        logger = logging.getLogger(name)
        if any(isinstance(f, _StreamContextFilter) for f in logger.filters):
            return logger
        logger.addFilter(_StreamContextFilter(cls))
        logger.addHandler(_StreamBufferHandler(cls))
        return logger

    @classmethod
    def set_max_lines(cls, value: int) -> None:
        """Set the maximum in-memory lines retained per stream."""
        cls.max_lines = max(100, min(200000, int(value)))

    @classmethod
    @contextmanager
    def bind(cls, stream_id: str, *, level: Optional[int] = None) -> Iterator[None]:
        """Bind ``stream_id`` (and optionally a console level) for the enclosed block."""
        id_token = cls.stream_id.set(stream_id)
        level_token = cls.log_level.set(level) if level is not None else None
        try:
            yield
        finally:
            if level_token is not None:
                cls.log_level.reset(level_token)
            cls.stream_id.reset(id_token)

    @classmethod
    def process_record(cls, record: logging.LogRecord) -> None:
        stream_id = getattr(record, "stream_id", None)
        if stream_id == "-":
            stream_id = None
        if cls.console and record.levelno >= int(getattr(record, "stream_log_level", logging.INFO)):
            sys.stdout.write(cls._console_formatter.format(record) + "\n")
            sys.stdout.flush()
        if not stream_id:
            return
        event = cls._build_event(record)
        event["stream_id"] = stream_id
        with cls._state_lock:
            buffer = cls.logs.get(stream_id)
            if buffer is None or buffer.maxlen != cls.max_lines:
                buffer = deque(buffer or (), maxlen=cls.max_lines)
                cls.logs[stream_id] = buffer
            buffer.append(event)
            cls._last_seen[stream_id] = time.time()

    @classmethod
    def events(cls, stream_id: str) -> list[dict[str, Any]]:
        """Return a snapshot of the buffered events for ``stream_id``."""
        with cls._state_lock:
            return list(cls.logs.get(stream_id, ()))

    @classmethod
    def discard(cls, stream_id: str) -> None:
        with cls._state_lock:
            cls.logs.pop(stream_id, None)
            cls._last_seen.pop(stream_id, None)

    @classmethod
    def cleanup(cls, max_age_seconds: float = 3600) -> None:
        """Remove stale stream logs to avoid unbounded growth."""
        cutoff = time.time() - max_age_seconds
        with cls._state_lock:
            stale = [sid for sid, ts in cls._last_seen.items() if ts < cutoff]
            for sid in stale:
                cls.logs.pop(sid, None)
                cls._last_seen.pop(sid, None)


class _StreamContextFilter(logging.Filter):
    """Attach the active stream id and per-stream console level to each record."""

    def __init__(self, owner: type[SessionLogger]) -> None:
        super().__init__()
        self._owner = owner

    def filter(self, record: logging.LogRecord) -> bool:
        record.stream_id = self._owner.stream_id.get() or "-"
        record.stream_log_level = self._owner.log_level.get()
        return True


class _StreamBufferHandler(logging.Handler):
    def __init__(self, owner: type[SessionLogger]) -> None:
        super().__init__(level=logging.DEBUG)
        self._owner = owner

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._owner.process_record(record)
        except Exception:
            # Logging must never break stream handling.
            self.handleError(record)
