"""
Per-line import logic shared by the tail reader and backfill scanner.
"""

import logging
from enum import Enum
from typing import Optional

from ..core.exceptions import MalformedRecordError
from ..core.models import MalformedPolicy
from ..dispatch.dispatcher import EventDispatcher
from ..ledger.progress_ledger import ProgressLedger
from ..parsing.parser import EventParser


logger = logging.getLogger(__name__)


class LineOutcome(str, Enum):
    """Result of importing one line."""
    IMPORTED = "imported"
    MALFORMED = "malformed"   # skipped; progress advanced
    BLOCKED = "blocked"       # malformed under the block policy; progress held


class LineImporter:
    """
    Parses, dispatches and records progress for one journal line.

    The ledger is only updated after the envelope and its dispatch have
    been written, so a SinkConnectionError (which propagates) leaves the
    line to be imported again.
    """

    def __init__(
        self,
        ledger: ProgressLedger,
        dispatcher: EventDispatcher,
        parser: Optional[EventParser] = None,
        malformed_policy: MalformedPolicy = MalformedPolicy.SKIP,
    ):
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.parser = parser or EventParser()
        self.malformed_policy = MalformedPolicy(malformed_policy)

    def import_line(self, filename: str, line_number: int, line: str, worker: str = None) -> LineOutcome:
        """
        Import one line and advance the file's progress to it.

        Args:
            filename: Journal file name
            line_number: 1-based ordinal of the line
            line: Line text without its terminator
            worker: Name of the calling worker, for log context

        Returns:
            The outcome; only BLOCKED leaves progress unchanged

        Raises:
            SinkConnectionError: If the envelope or progress cannot be written
        """
        context = {"journal": filename, "line_number": line_number, "worker": worker}

        try:
            event = self.parser.parse(line)
        except MalformedRecordError as e:
            if self.malformed_policy == MalformedPolicy.BLOCK:
                logger.warning(f"Malformed line, holding progress: {e}", extra=context)
                return LineOutcome.BLOCKED
            if line.strip():
                logger.warning(f"Skipping malformed line: {e}", extra=context)
            else:
                logger.debug("Skipping blank line", extra=context)
            self.ledger.update(filename, line_number, completed=False)
            return LineOutcome.MALFORMED

        envelope_id = self.dispatcher.import_event(filename, line_number, event)
        self.ledger.update(filename, line_number, completed=False)
        logger.debug(
            f"Imported {event.event_type}",
            extra={**context, "event_id": envelope_id},
        )
        return LineOutcome.IMPORTED
