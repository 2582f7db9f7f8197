"""
Per-file import progress, persisted through the event sink.
"""

import logging
from datetime import datetime
from typing import List, Optional

from ..core.exceptions import SinkConnectionError
from ..core.models import ProgressRecord
from ..core.sink import EventSink


logger = logging.getLogger(__name__)


class ProgressLedger:
    """
    Records how many lines of each journal file have been imported.

    The tail reader and backfill scanner both consult the ledger before
    importing a line, so a restarted run skips what is already stored.
    Writes go straight to the sink; SinkConnectionError propagates and the
    stored value stays at its last confirmed count.
    """

    def __init__(self, sink: EventSink):
        self.sink = sink

    def get_or_create(self, filename: str, created_time: Optional[datetime] = None) -> int:
        """
        Ensure a ledger entry exists for a file.

        Returns:
            Lines imported so far (0 for a new entry)
        """
        lines = self.sink.create_or_get_ledger_entry(filename, created_time)
        logger.debug(f"Ledger entry for {filename}: {lines} lines imported")
        return lines

    def update(self, filename: str, lines_imported: int, completed: bool = False) -> None:
        """
        Persist progress for a file.

        An entry that has disappeared from the sink is created again, so the
        caller never holds a count the sink does not.

        Raises:
            ValueError: If lines_imported is negative
            SinkConnectionError: If the write fails or the entry cannot be restored
        """
        if lines_imported < 0:
            raise ValueError(f"lines_imported must be non-negative, got {lines_imported}")
        if self.sink.update_ledger_entry(filename, lines_imported, completed):
            return

        logger.warning(f"Ledger entry for {filename} is missing; recreating it")
        self.sink.create_or_get_ledger_entry(filename, None)
        if not self.sink.update_ledger_entry(filename, lines_imported, completed):
            raise SinkConnectionError(
                f"Progress for {filename} was not persisted",
                operation="update ledger entry",
            )

    def get(self, filename: str) -> Optional[ProgressRecord]:
        return self.sink.get_ledger_entry(filename)

    def list_all(self) -> List[ProgressRecord]:
        return self.sink.list_ledger_entries()
