"""
Tail reader - follows the active journal file in real time.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..core.cancellation import CancellationToken
from ..core.exceptions import FileAccessError, SinkConnectionError
from ..core.models import JournalFile, TailState
from ..files.locator import FileLocator
from ..files.reader import JournalReader
from ..ledger.progress_ledger import ProgressLedger
from .line_importer import LineImporter, LineOutcome


logger = logging.getLogger(__name__)


WORKER_NAME = "tail"


@dataclass
class ActiveFileState:
    """
    Working state of the tail reader. Never persisted.

    Attributes:
        current: File being tailed
        previous: Name of the file tailed before it
        candidate: Newer file found at rollover, opened by the next step
        reader: Open reader on ``current``
        lines_imported: Ledger progress for ``current``
        pending: (line number, text) of a line read but not yet imported
    """
    current: Optional[JournalFile] = None
    previous: Optional[str] = None
    candidate: Optional[JournalFile] = None
    reader: Optional[JournalReader] = None
    lines_imported: int = 0
    pending: Optional[Tuple[int, str]] = None

    @property
    def line_count(self) -> int:
        """Lines read from ``current`` so far."""
        return self.reader.line_number if self.reader else 0


class TailReader:
    """
    Follows the most recently written journal file.

    State machine:
        NO_FILE -> TAILING   a journal file was located and opened
        TAILING -> NO_FILE   EOF reached and a newer file exists; the
                             current file is marked completed
        any     -> STOPPED   cancellation observed

    Each ``step`` does one unit of work: open a file, import or skip one
    line, or check for rollover at EOF. ``run`` loops over ``step`` and
    sleeps one poll interval whenever a step finds nothing to do.
    """

    def __init__(
        self,
        locator: FileLocator,
        ledger: ProgressLedger,
        importer: LineImporter,
        poll_interval: float = 1.0,
    ):
        self.locator = locator
        self.ledger = ledger
        self.importer = importer
        self.poll_interval = poll_interval
        self.context = ActiveFileState()
        self._state = TailState.NO_FILE

    @property
    def state(self) -> TailState:
        return self._state

    def step(self) -> bool:
        """
        Perform one iteration of the state machine.

        Returns:
            True if work was done, False if the caller should idle

        Raises:
            FileAccessError: If the directory or file cannot be read
            SinkConnectionError: If the ledger or envelope write fails
        """
        if self._state == TailState.STOPPED:
            return False
        if self._state == TailState.NO_FILE:
            return self._open_latest()
        return self._tail_once()

    def run(self, token: CancellationToken) -> None:
        """Tail until ``token`` is cancelled."""
        logger.info("Tail reader started", extra={"worker": WORKER_NAME})
        try:
            while not token.cancelled:
                try:
                    busy = self.step()
                except (FileAccessError, SinkConnectionError) as e:
                    logger.warning(f"Tail reader will retry: {e}", extra=self._log_context())
                    busy = False
                except Exception as e:
                    logger.exception(f"Unexpected error in tail reader: {e}", extra=self._log_context())
                    busy = False

                if not busy:
                    token.wait(self.poll_interval)
        finally:
            self.stop()
            logger.info("Tail reader stopped", extra={"worker": WORKER_NAME})

    def stop(self) -> None:
        """Release the open file and enter the terminal state."""
        self._release()
        self._state = TailState.STOPPED

    def get_status(self) -> Dict[str, Any]:
        ctx = self.context
        return {
            "state": self._state.value,
            "current_file": ctx.current.name if ctx.current else None,
            "previous_file": ctx.previous,
            "candidate_file": ctx.candidate.name if ctx.candidate else None,
            "lines_imported": ctx.lines_imported,
            "line_count": ctx.line_count,
            "pending_line": ctx.pending[0] if ctx.pending else None,
        }

    def _open_latest(self) -> bool:
        ctx = self.context
        latest = ctx.candidate or self.locator.locate_latest(previous=ctx.previous)
        # Cleared before opening so a vanished candidate is re-located next step
        ctx.candidate = None
        if latest is None:
            return False

        lines = self.ledger.get_or_create(latest.name, latest.created_at)
        reader = JournalReader(latest.path).open()

        ctx.current = latest
        ctx.reader = reader
        ctx.lines_imported = lines
        ctx.pending = None
        self._state = TailState.TAILING
        logger.info(
            f"Tailing {latest.name} (resuming after line {lines})",
            extra=self._log_context(),
        )
        return True

    def _tail_once(self) -> bool:
        ctx = self.context

        if ctx.pending is not None:
            line_number, line = ctx.pending
        else:
            line = ctx.reader.read_line()
            if line is None:
                return self._check_rollover()
            line_number = ctx.reader.line_number

        return self._import(line_number, line)

    def _import(self, line_number: int, line: str) -> bool:
        ctx = self.context

        # Already imported before a restart
        if line_number <= ctx.lines_imported:
            return True

        ctx.pending = (line_number, line)
        outcome = self.importer.import_line(ctx.current.name, line_number, line, worker=WORKER_NAME)
        if outcome == LineOutcome.BLOCKED:
            return False

        ctx.pending = None
        ctx.lines_imported = line_number
        return True

    def _check_rollover(self) -> bool:
        ctx = self.context
        newer = self.locator.locate_latest(current=ctx.current.name, previous=ctx.previous)
        if newer is None:
            return False

        # The producer has moved on; an unterminated last line is final
        line = ctx.reader.read_line(allow_partial=True)
        if line is not None:
            return self._import(ctx.reader.line_number, line)

        self.ledger.update(ctx.current.name, ctx.lines_imported, completed=True)
        logger.info(
            f"Finished {ctx.current.name} at line {ctx.lines_imported}; newer file {newer.name}",
            extra=self._log_context(),
        )

        ctx.previous = ctx.current.name
        ctx.current = None
        ctx.candidate = newer
        ctx.lines_imported = 0
        self._release()
        self._state = TailState.NO_FILE
        return True

    def _release(self) -> None:
        if self.context.reader is not None:
            self.context.reader.close()
            self.context.reader = None

    def _log_context(self) -> Dict[str, Any]:
        ctx = self.context
        return {
            "worker": WORKER_NAME,
            "journal": ctx.current.name if ctx.current else None,
            "line_number": ctx.pending[0] if ctx.pending else None,
        }
