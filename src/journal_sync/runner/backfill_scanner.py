"""
Backfill scanner - imports historical journal files the tail reader missed.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..core.cancellation import CancellationToken
from ..core.exceptions import FileAccessError, SinkConnectionError
from ..core.models import JournalFile
from ..files.locator import FileLocator
from ..files.reader import JournalReader
from ..ledger.progress_ledger import ProgressLedger
from .line_importer import LineImporter, LineOutcome


logger = logging.getLogger(__name__)


WORKER_NAME = "backfill"


@dataclass
class BackfillResult:
    """Counts from one backfill pass."""
    files_imported: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    lines_imported: int = 0
    cancelled: bool = False


class BackfillScanner:
    """
    Brings every journal file except the newest up to date.

    Each pass walks the files oldest-created first, skipping the most
    recently created one (it belongs to the tail reader) and any file the
    ledger already marks completed. A file is read to physical EOF and
    then marked completed. A file that fails part way is left at its last
    confirmed line for the next pass.
    """

    def __init__(
        self,
        locator: FileLocator,
        ledger: ProgressLedger,
        importer: LineImporter,
        sync_interval: float = 60.0,
    ):
        self.locator = locator
        self.ledger = ledger
        self.importer = importer
        self.sync_interval = sync_interval
        self.last_result: Optional[BackfillResult] = None

    def run_pass(self, token: Optional[CancellationToken] = None) -> BackfillResult:
        """
        Run one backfill pass.

        Cancellation is checked between files only.
        """
        result = BackfillResult()

        try:
            files = self.locator.list_files()
        except FileAccessError as e:
            logger.warning(f"Backfill cannot list journals: {e}", extra={"worker": WORKER_NAME})
            self.last_result = result
            return result

        # The most recently created file is left to the tail reader
        for journal in files[:-1]:
            if token is not None and token.cancelled:
                result.cancelled = True
                break

            context = {"worker": WORKER_NAME, "journal": journal.name}
            try:
                record = self.ledger.get(journal.name)
                if record is not None and record.completed:
                    result.files_skipped += 1
                    continue

                lines, completed = self._import_file(journal)
            except (FileAccessError, SinkConnectionError) as e:
                logger.warning(f"Backfill of {journal.name} failed, will retry: {e}", extra=context)
                result.files_failed += 1
                continue

            result.lines_imported += lines
            if completed:
                result.files_imported += 1
            else:
                result.files_failed += 1

        if result.files_imported or result.files_failed:
            logger.info(
                f"Backfill pass: {result.files_imported} files completed, "
                f"{result.files_skipped} already complete, {result.files_failed} incomplete, "
                f"{result.lines_imported} lines imported",
                extra={"worker": WORKER_NAME},
            )
        self.last_result = result
        return result

    def run(self, token: CancellationToken) -> None:
        """Run a pass every ``sync_interval`` seconds until ``token`` is cancelled."""
        logger.info("Backfill scanner started", extra={"worker": WORKER_NAME})
        while not token.cancelled:
            try:
                self.run_pass(token)
            except Exception as e:
                logger.exception(f"Unexpected error in backfill scanner: {e}", extra={"worker": WORKER_NAME})
            token.wait(self.sync_interval)
        logger.info("Backfill scanner stopped", extra={"worker": WORKER_NAME})

    def _import_file(self, journal: JournalFile):
        """
        Import a file from its resume point to EOF.

        Returns:
            (lines imported, whether the file was completed)
        """
        lines_imported = self.ledger.get_or_create(journal.name, journal.created_at)
        start = lines_imported
        logger.debug(
            f"Backfilling {journal.name} from line {lines_imported + 1}",
            extra={"worker": WORKER_NAME, "journal": journal.name},
        )

        with JournalReader(journal.path) as reader:
            # The file has no writer, so an unterminated last line is complete
            line = reader.read_line(allow_partial=True)
            while line is not None:
                line_number = reader.line_number
                if line_number > lines_imported:
                    outcome = self.importer.import_line(journal.name, line_number, line, worker=WORKER_NAME)
                    if outcome == LineOutcome.BLOCKED:
                        return lines_imported - start, False
                    lines_imported = line_number
                line = reader.read_line(allow_partial=True)

        self.ledger.update(journal.name, lines_imported, completed=True)
        logger.info(
            f"Completed {journal.name} ({lines_imported} lines)",
            extra={"worker": WORKER_NAME, "journal": journal.name},
        )
        return lines_imported - start, True
