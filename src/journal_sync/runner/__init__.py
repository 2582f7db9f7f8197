"""
Runner module for the journal ingestion workers.
"""

from .line_importer import LineImporter, LineOutcome
from .tail_reader import TailReader, ActiveFileState
from .backfill_scanner import BackfillScanner, BackfillResult
from .pipeline import JournalSyncPipeline

__all__ = [
    "LineImporter",
    "LineOutcome",
    "TailReader",
    "ActiveFileState",
    "BackfillScanner",
    "BackfillResult",
    "JournalSyncPipeline",
]
