"""
Core abstractions and data models for the journal ingestion pipeline.
"""

from .models import (
    JournalFile, ProgressRecord, EventEnvelope, ParsedEvent, DispatchResult,
    SinkStats, TailState, MalformedPolicy
)
from .exceptions import (
    JournalSyncError, FileAccessError, SinkConnectionError,
    MalformedRecordError, HandlerError, ConfigError
)
from .cancellation import CancellationToken
from .sink import EventSink

__all__ = [
    "JournalFile",
    "ProgressRecord",
    "EventEnvelope",
    "ParsedEvent",
    "DispatchResult",
    "SinkStats",
    "TailState",
    "MalformedPolicy",
    "JournalSyncError",
    "FileAccessError",
    "SinkConnectionError",
    "MalformedRecordError",
    "HandlerError",
    "ConfigError",
    "CancellationToken",
    "EventSink",
]
