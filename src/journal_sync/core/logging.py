"""
Logging utilities for the journal ingestion pipeline.

Provides human-readable and JSON formatters that carry journal context
(journal file, line number, envelope id, worker) and a handler that copies
warnings and errors into the event sink's log table.
"""

import copy
import json
import logging
import queue
import sys
import threading
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .sink import EventSink


# LogRecord already owns "filename", so the journal file travels as "journal"
CONTEXT_FIELDS = ("worker", "journal", "line_number", "event_id")

# Loggers of the sink backends; their records never go to the sink
SINK_LOGGER_PREFIX = "journal_sync.state"


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs JSON-structured log lines.

    Each log line includes:
    - Standard log fields (timestamp, level, message, logger)
    - Journal context fields if present (worker, journal, line_number, event_id)
    """

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_entry = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter that outputs human-readable log lines with journal context.

    Format: TIMESTAMP [LEVEL] LOGGER - MESSAGE [journal=X line_number=Y]
    """

    def __init__(self, include_timestamp: bool = True):
        if include_timestamp:
            fmt = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
        else:
            fmt = "[%(levelname)s] %(name)s - %(message)s"
        super().__init__(fmt, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with journal context."""
        base = super().format(record)

        context_parts = []
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                context_parts.append(f"{field}={value}")

        if context_parts:
            return f"{base} [{' '.join(context_parts)}]"
        return base


class SinkLogHandler(logging.Handler):
    """
    Logging handler that writes records to the event sink's log table.

    The envelope id is taken from ``extra={"event_id": ...}`` when present,
    so handler failures can be traced back to the event that caused them.
    Records from the sink backends themselves are not written back to the
    sink.
    """

    def __init__(self, sink: "EventSink", level: int = logging.WARNING):
        super().__init__(level)
        self.sink = sink
        self._local = threading.local()

    def emit(self, record: logging.LogRecord) -> None:
        """Write the record to the sink."""
        if record.name.startswith(SINK_LOGGER_PREFIX):
            return
        if getattr(self._local, "emitting", False):
            return
        self._local.emitting = True
        try:
            message = record.getMessage()
            journal = getattr(record, "journal", None)
            line_number = getattr(record, "line_number", None)
            if journal and line_number is not None:
                message = f"{message} ({journal}:{line_number})"
            self.sink.write_log(
                message[:255],
                event_id=getattr(record, "event_id", None),
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc),
            )
        except Exception:
            self.handleError(record)
        finally:
            self._local.emitting = False


class SinkQueueHandler(QueueHandler):
    """
    Queue in front of a SinkLogHandler.

    Workers only enqueue; a QueueListener thread owns every write to the
    sink, so logging never waits on a sink lock held by another worker.
    """

    def __init__(self, sink: "EventSink", level: int = logging.WARNING):
        log_queue = queue.Queue(-1)
        super().__init__(log_queue)
        self.setLevel(level)
        self.sink_handler = SinkLogHandler(sink, level=level)
        self.listener = QueueListener(log_queue, self.sink_handler, respect_handler_level=True)

    @property
    def sink(self) -> "EventSink":
        return self.sink_handler.sink

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The log table stores the message only, never the traceback
        record = copy.copy(record)
        record.msg = record.getMessage()
        record.args = None
        record.exc_info = None
        record.exc_text = None
        return record

    def start(self) -> None:
        self.listener.start()

    def stop(self) -> None:
        """Flush queued records to the sink and stop the listener thread."""
        self.listener.stop()


def configure_logging(
    level: int = logging.INFO,
    structured: bool = False,
    sink: Optional["EventSink"] = None,
    sink_level: Optional[int] = logging.WARNING,
    logger_name: str = "journal_sync",
) -> logging.Logger:
    """
    Configure logging for the journal_sync package.

    Args:
        level: Logging level for console output (default: INFO)
        structured: If True, output JSON-structured logs; if False, human-readable
        sink: Optional event sink to copy records into
        sink_level: Minimum level copied to the sink (None disables)
        logger_name: Package logger to configure

    Returns:
        The configured package logger
    """
    package_logger = logging.getLogger(logger_name)
    package_logger.setLevel(level)

    # Only add a console handler if none exist (avoid duplicate handlers)
    if not any(isinstance(h, logging.StreamHandler) for h in package_logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        if structured:
            handler.setFormatter(StructuredFormatter())
        else:
            handler.setFormatter(HumanReadableFormatter())
        package_logger.addHandler(handler)

    if sink is not None and sink_level is not None:
        detach_sink_logging(logger_name)
        sink_handler = SinkQueueHandler(sink, level=sink_level)
        sink_handler.start()
        package_logger.addHandler(sink_handler)

    return package_logger


def detach_sink_logging(logger_name: str = "journal_sync") -> None:
    """Remove the sink handler, writing out queued records first. Call before closing the sink."""
    package_logger = logging.getLogger(logger_name)
    for existing in [h for h in package_logger.handlers if isinstance(h, SinkQueueHandler)]:
        package_logger.removeHandler(existing)
        existing.stop()
