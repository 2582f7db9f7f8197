"""
SQLite-based event sink for journal progress and envelopes.
"""

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from ..core.exceptions import SinkConnectionError
from ..core.models import EventEnvelope, ProgressRecord, SinkStats, utc_now
from ..core.sink import EventSink


logger = logging.getLogger(__name__)


class SqliteEventSink(EventSink):
    """
    SQLite-based implementation of the event sink.

    Stores the ledger, envelopes and log messages in a local SQLite
    database. A single connection is shared by both pipeline workers and
    serialised with a lock so one worker's commit never includes the
    other's half-finished statement.
    """

    def __init__(self, db_path: Path, auto_init: bool = True):
        """
        Initialize the SQLite event sink.

        Args:
            db_path: Path to the SQLite database file
            auto_init: Whether to create tables automatically
        """
        self.db_path = Path(db_path)
        self.conn = None
        self._lock = threading.RLock()
        self._connect()

        if auto_init:
            self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False
            )
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to open SQLite event sink {self.db_path}: {e}")
            raise SinkConnectionError(f"Cannot open {self.db_path}: {e}", operation="connect") from e
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to SQLite event sink: {self.db_path}")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._lock:
            cursor = self.conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS journal (
                    filename TEXT PRIMARY KEY,
                    date_created TEXT,
                    lines_imported INTEGER NOT NULL DEFAULT 0,
                    completed INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS event (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    type TEXT NOT NULL,
                    data TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    line INTEGER NOT NULL,
                    parsed INTEGER NOT NULL DEFAULT 0
                )
            """)

            # One envelope per journal line
            cursor.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS ix_event_file_line
                ON event (filename, line)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS ix_event_type
                ON event (type)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    message TEXT NOT NULL,
                    event_id INTEGER
                )
            """)

            self.conn.commit()
        logger.debug("Initialized event sink schema")

    def _fail(self, operation: str, error: Exception) -> SinkConnectionError:
        """
        Roll back and build the error raised for a failed statement.

        Called with the lock held, so it must not log: a sink log handler
        on another thread may be waiting for the same lock.
        """
        message = f"{operation} failed: {error}"
        try:
            self.conn.rollback()
        except sqlite3.Error as e:
            message += f" (rollback failed: {e})"
        return SinkConnectionError(message, operation=operation)

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

        Returns:
            Identifier of the new or existing envelope
        """
        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute("""
                    INSERT OR IGNORE INTO event (timestamp, type, data, filename, line, parsed)
                    VALUES (?, ?, ?, ?, ?, 0)
                """, (
                    _to_text(timestamp),
                    event_type,
                    raw_payload,
                    filename,
                    line_number,
                ))
                existed = cursor.rowcount == 0

                cursor.execute("""
                    SELECT id FROM event WHERE filename = ? AND line = ?
                """, (filename, line_number))
                row = cursor.fetchone()
                self.conn.commit()
            except sqlite3.Error as e:
                raise self._fail("create envelope", e) from e

        if existed:
            logger.debug(f"Envelope already exists: {filename}:{line_number}")
        return row["id"]

    def mark_parsed(self, envelope_id: int) -> None:
        """Flag an envelope as parsed."""
        with self._lock:
            try:
                self.conn.execute("""
                    UPDATE event SET parsed = 1 WHERE id = ?
                """, (envelope_id,))
                self.conn.commit()
            except sqlite3.Error as e:
                raise self._fail("mark envelope parsed", e) from e

    def create_or_get_ledger_entry(self, filename: str, created_time: Optional[datetime]) -> int:
        """
        Create a ledger entry if absent, then return its lines imported.
        """
        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute("""
                    INSERT OR IGNORE INTO journal (filename, date_created, lines_imported, completed, updated_at)
                    VALUES (?, ?, 0, 0, ?)
                """, (filename, _to_text(created_time), _to_text(utc_now())))
                created = cursor.rowcount > 0

                cursor.execute("""
                    SELECT lines_imported FROM journal WHERE filename = ?
                """, (filename,))
                row = cursor.fetchone()
                self.conn.commit()
            except sqlite3.Error as e:
                raise self._fail("create ledger entry", e) from e

        if created:
            logger.debug(f"Created ledger entry: {filename}")
        return row["lines_imported"]

    def update_ledger_entry(self, filename: str, lines_imported: int, completed: bool) -> bool:
        """
        Persist progress for a journal file.

        Returns:
            True if the entry exists and was updated
        """
        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute("""
                    UPDATE journal
                    SET lines_imported = MAX(lines_imported, ?),
                        completed = MAX(completed, ?),
                        updated_at = ?
                    WHERE filename = ?
                """, (
                    lines_imported,
                    1 if completed else 0,
                    _to_text(utc_now()),
                    filename,
                ))
                updated = cursor.rowcount > 0
                self.conn.commit()
            except sqlite3.Error as e:
                raise self._fail("update ledger entry", e) from e

        if not updated:
            logger.warning(f"No ledger entry to update for {filename}")
        return updated

    def get_ledger_entry(self, filename: str) -> Optional[ProgressRecord]:
        """Get the ledger entry for a journal file."""
        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute("""
                    SELECT * FROM journal WHERE filename = ?
                """, (filename,))
                row = cursor.fetchone()
            except sqlite3.Error as e:
                raise self._fail("get ledger entry", e) from e

        if row:
            return self._row_to_progress(row)
        return None

    def list_ledger_entries(self) -> List[ProgressRecord]:
        """Get every ledger entry."""
        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute("""
                    SELECT * FROM journal ORDER BY filename
                """)
                rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise self._fail("list ledger entries", e) from e

        return [self._row_to_progress(row) for row in rows]

    def get_envelope(self, filename: str, line_number: int) -> Optional[EventEnvelope]:
        """Get the envelope for a journal line."""
        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute("""
                    SELECT * FROM event WHERE filename = ? AND line = ?
                """, (filename, line_number))
                row = cursor.fetchone()
            except sqlite3.Error as e:
                raise self._fail("get envelope", e) from e

        if row:
            return self._row_to_envelope(row)
        return None

    def list_envelopes(self, event_types: Optional[Iterable[str]] = None) -> List[EventEnvelope]:
        """Get stored envelopes, optionally restricted to some event types."""
        query = "SELECT * FROM event"
        params: list = []

        if event_types is not None:
            types = list(event_types)
            if not types:
                return []
            query += f" WHERE type IN ({', '.join('?' for _ in types)})"
            params.extend(types)

        query += " ORDER BY filename, line"

        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute(query, params)
                rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise self._fail("list envelopes", e) from e

        return [self._row_to_envelope(row) for row in rows]

    def write_log(
        self,
        message: str,
        event_id: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Record a diagnostic message in the log table."""
        with self._lock:
            try:
                self.conn.execute("""
                    INSERT INTO log (timestamp, message, event_id) VALUES (?, ?, ?)
                """, (_to_text(timestamp or utc_now()), message, event_id))
                self.conn.commit()
            except sqlite3.Error as e:
                raise self._fail("write log", e) from e

    def get_stats(self) -> SinkStats:
        """Get counts of ledger entries, envelopes and log entries."""
        with self._lock:
            try:
                cursor = self.conn.cursor()
                cursor.execute("""
                    SELECT COUNT(*) AS total, COALESCE(SUM(completed), 0) AS done FROM journal
                """)
                journals = cursor.fetchone()
                cursor.execute("""
                    SELECT COUNT(*) AS total, COALESCE(SUM(parsed), 0) AS done FROM event
                """)
                events = cursor.fetchone()
                cursor.execute("SELECT COUNT(*) AS total FROM log")
                logs = cursor.fetchone()
            except sqlite3.Error as e:
                raise self._fail("get stats", e) from e

        return SinkStats(
            journals=journals["total"],
            journals_completed=journals["done"],
            envelopes=events["total"],
            envelopes_parsed=events["done"],
            log_entries=logs["total"],
        )

    def _row_to_progress(self, row: sqlite3.Row) -> ProgressRecord:
        """Convert a database row to a ProgressRecord object."""
        return ProgressRecord(
            filename=row["filename"],
            lines_imported=row["lines_imported"],
            completed=bool(row["completed"]),
            date_created=_from_text(row["date_created"]),
        )

    def _row_to_envelope(self, row: sqlite3.Row) -> EventEnvelope:
        """Convert a database row to an EventEnvelope object."""
        return EventEnvelope(
            envelope_id=row["id"],
            filename=row["filename"],
            line_number=row["line"],
            timestamp=_from_text(row["timestamp"]),
            event_type=row["type"],
            raw_payload=row["data"],
            parsed=bool(row["parsed"]),
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self.conn is None:
                return
            self.conn.close()
            self.conn = None
        logger.debug("Closed SQLite event sink connection")


def _to_text(value: Optional[datetime]) -> Optional[str]:
    """Store datetimes as ISO-8601 UTC text."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_text(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)
