"""
Event sink interface for persisting journal progress and envelopes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from ..core.models import EventEnvelope, ProgressRecord, SinkStats


class EventSink(ABC):
    """
    Abstract base class for event sinks.

    Event sinks own the two durable tables the pipeline depends on: the
    per-file progress ledger and the generic event envelopes. Every write
    is keyed (by filename, or by filename and line number) and idempotent,
    which is what lets the tail reader and backfill scanner run without
    in-process locks.

    Implementations raise SinkConnectionError for any store failure and
    roll back the failed transaction.
    """

    @abstractmethod
    def create_envelope_if_absent(
        self,
        filename: str,
        line_number: int,
        timestamp: datetime,
        event_type: str,
        raw_payload: str,
    ) -> int:
        """
        Create the envelope for a journal line unless it already exists.

        Args:
            filename: Journal file name
            line_number: 1-based line ordinal
            timestamp: Event timestamp
            event_type: Event type tag
            raw_payload: The raw line

        Returns:
            Identifier of the new or existing envelope
        """
        pass

    @abstractmethod
    def mark_parsed(self, envelope_id: int) -> None:
        """
        Flag an envelope as parsed.

        Args:
            envelope_id: Envelope identifier
        """
        pass

    @abstractmethod
    def create_or_get_ledger_entry(self, filename: str, created_time: Optional[datetime]) -> int:
        """
        Create a ledger entry if absent, then return its lines imported.

        Args:
            filename: Journal file name
            created_time: Creation time of the journal file

        Returns:
            Current number of lines imported for the file
        """
        pass

    @abstractmethod
    def update_ledger_entry(self, filename: str, lines_imported: int, completed: bool) -> bool:
        """
        Persist progress for a journal file.

        The stored line count never decreases and a completed entry stays
        completed; an update that would violate either is ignored.

        Args:
            filename: Journal file name
            lines_imported: Lines imported so far
            completed: Whether the file is finished

        Returns:
            True if the entry was changed
        """
        pass

    @abstractmethod
    def get_ledger_entry(self, filename: str) -> Optional[ProgressRecord]:
        """
        Get the ledger entry for a journal file.

        Returns:
            ProgressRecord if found, None otherwise
        """
        pass

    @abstractmethod
    def list_ledger_entries(self) -> List[ProgressRecord]:
        """Get every ledger entry."""
        pass

    @abstractmethod
    def get_envelope(self, filename: str, line_number: int) -> Optional[EventEnvelope]:
        """
        Get the envelope for a journal line.

        Returns:
            EventEnvelope if found, None otherwise
        """
        pass

    @abstractmethod
    def list_envelopes(self, event_types: Optional[Iterable[str]] = None) -> List[EventEnvelope]:
        """
        Get stored envelopes, optionally restricted to some event types.

        Args:
            event_types: Event type tags to include (None = all)

        Returns:
            Envelopes ordered by filename and line number
        """
        pass

    @abstractmethod
    def write_log(
        self,
        message: str,
        event_id: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """
        Record a diagnostic message in the sink's log table.

        Args:
            message: Message text
            event_id: Optional envelope the message relates to
            timestamp: When the message was produced (defaults to now)
        """
        pass

    @abstractmethod
    def get_stats(self) -> SinkStats:
        """Get counts of ledger entries, envelopes and log entries."""
        pass

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
