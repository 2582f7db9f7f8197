"""
Core data models for the journal ingestion pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class TailState(str, Enum):
    """State of the tail reader's state machine."""
    NO_FILE = "no_file"
    TAILING = "tailing"
    STOPPED = "stopped"


class MalformedPolicy(str, Enum):
    """
    What to do with a line that cannot be parsed.

    - SKIP: log it, count it as consumed and advance progress
    - BLOCK: log it and do not advance progress until it becomes parseable
    """
    SKIP = "skip"
    BLOCK = "block"


@dataclass(frozen=True)
class JournalFile:
    """
    A journal file on disk.

    Attributes:
        name: File name, unique within the journal directory
        path: Full path to the file
        created_at: Creation time reported by the filesystem
        modified_at: Last write time reported by the filesystem
    """
    name: str
    path: Path
    created_at: datetime
    modified_at: datetime


@dataclass
class ProgressRecord:
    """
    Persisted import progress for one journal file.

    Attributes:
        filename: Journal file name (primary key)
        lines_imported: Number of lines imported so far
        completed: True once the file has no further writer and is fully imported
        date_created: Creation time of the journal file, if known
    """
    filename: str
    lines_imported: int = 0
    completed: bool = False
    date_created: Optional[datetime] = None


@dataclass
class EventEnvelope:
    """
    Generic record for one journal line, keyed by (filename, line_number).

    Attributes:
        envelope_id: Store-assigned identifier
        filename: Journal file the line came from
        line_number: 1-based line ordinal within the file
        timestamp: Event timestamp (UTC)
        event_type: Type tag of the event
        raw_payload: The line exactly as read from the journal
        parsed: True once dispatch to the type handlers has been attempted
    """
    envelope_id: int
    filename: str
    line_number: int
    timestamp: datetime
    event_type: str
    raw_payload: str
    parsed: bool = False


@dataclass
class ParsedEvent:
    """
    A decoded journal line.

    Only the type tag and timestamp are extracted for routing; the full
    mapping stays in ``fields`` for type handlers to decode further.
    """
    event_type: str
    timestamp: datetime
    fields: Dict[str, Any]
    raw: str


@dataclass
class DispatchResult:
    """Outcome of dispatching one envelope to its type handlers."""
    envelope_id: int
    event_type: str
    handlers_run: int = 0
    handlers_failed: int = 0

    @property
    def matched(self) -> bool:
        """True if at least one handler was registered for the event type."""
        return self.handlers_run > 0


@dataclass
class SinkStats:
    """Counts describing the contents of an event sink."""
    journals: int = 0
    journals_completed: int = 0
    envelopes: int = 0
    envelopes_parsed: int = 0
    log_entries: int = 0

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary for display."""
        return {
            "journals": self.journals,
            "journals_completed": self.journals_completed,
            "envelopes": self.envelopes,
            "envelopes_parsed": self.envelopes_parsed,
            "log_entries": self.log_entries,
        }


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
