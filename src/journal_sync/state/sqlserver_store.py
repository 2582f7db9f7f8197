"""
SQL Server-based event sink for journal progress and envelopes.

Suited to long-running installs where several tools read the imported
events; each worker thread gets its own connection.
"""

import logging
import re
import threading
from datetime import datetime, timezone
from typing import Iterable, List, Optional

try:
    import pyodbc
except ImportError:
    pyodbc = None

from ..core.exceptions import SinkConnectionError
from ..core.models import EventEnvelope, ProgressRecord, SinkStats, utc_now
from ..core.sink import EventSink


logger = logging.getLogger(__name__)


class SqlServerEventSink(EventSink):
    """
    SQL Server-based implementation of the event sink.

    Features:
    - Thread-local connections so both pipeline workers write concurrently
    - Unique constraint on (filename, line) backing envelope idempotency
    - Ledger updates that never lower lines_imported or clear completed
    """

    def __init__(
        self,
        connection_string: Optional[str] = None,
        host: str = "localhost",
        port: int = 1433,
        database: str = "EDSODS",
        username: str = "sa",
        password: Optional[str] = None,
        driver: str = "ODBC Driver 18 for SQL Server",
        schema: str = "journal",
        auto_init: bool = True,
        trust_server_certificate: bool = True,
    ):
        """
        Initialize the SQL Server event sink.

        Args:
            connection_string: Full ODBC connection string (if provided, other params ignored)
            host: SQL Server host
            port: SQL Server port
            database: Database name
            username: Database username
            password: Database password
            driver: ODBC driver name
            schema: Schema name for tables (default: 'journal')
            auto_init: Whether to create schema and tables automatically
            trust_server_certificate: Whether to trust self-signed certificates
        """
        if pyodbc is None:
            raise ImportError(
                "pyodbc is required for SqlServerEventSink. "
                "Install with: pip install pyodbc"
            )

        if not self._is_valid_identifier(schema):
            raise ValueError(f"Invalid schema name: {schema}")

        self.schema = schema
        self.auto_init = auto_init

        if connection_string:
            self.connection_string = connection_string
        else:
            trust_cert = "yes" if trust_server_certificate else "no"
            self.connection_string = (
                f"Driver={{{driver}}};"
                f"Server={host},{port};"
                f"Database={database};"
                f"UID={username};"
                f"PWD={password};"
                f"TrustServerCertificate={trust_cert}"
            )

        self._thread_local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()
        self.conn = _ThreadLocalConnectionProxy(self)
        self._connect()

        if auto_init:
            self._init_schema()

    def _is_valid_identifier(self, name: str) -> bool:
        """
        Validate that a name is a safe SQL identifier.

        - Must start with a letter or underscore
        - Can only contain letters, digits, and underscores
        - Maximum length of 128 characters (SQL Server limit)
        - Cannot be a SQL reserved word
        """
        if not name or len(name) > 128:
            return False

        if not re.match(r'^[a-zA-Z_][a-zA-Z0-9_]*$', name):
            return False

        reserved_words = {
            'select', 'insert', 'update', 'delete', 'drop', 'create', 'alter',
            'exec', 'execute', 'union', 'where', 'from', 'table', 'database',
            'schema', 'index', 'grant', 'revoke', 'truncate', 'declare', 'set'
        }
        if name.lower() in reserved_words:
            return False

        return True

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._get_conn()
            logger.debug(f"Connected to SQL Server event sink (schema: {self.schema})")
        except pyodbc.Error as e:
            logger.error(f"Failed to connect to SQL Server: {e}")
            raise SinkConnectionError(f"Cannot connect to SQL Server: {e}", operation="connect") from e

    def _get_conn(self):
        """Get (or create) a thread-local connection for safe concurrent use."""
        conn = getattr(self._thread_local, "conn", None)
        if conn is None:
            conn = pyodbc.connect(self.connection_string)
            self._thread_local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def _init_schema(self) -> None:
        """Initialize database schema and tables."""
        try:
            cursor = self.conn.cursor()

            # Schema name is whitelisted in __init__; CREATE SCHEMA cannot take parameters
            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = ?)
                BEGIN
                    EXEC('CREATE SCHEMA [{self.schema}]')
                END
            """, (self.schema,))

            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.tables t
                               JOIN sys.schemas s ON t.schema_id = s.schema_id
                               WHERE t.name = 'journal' AND s.name = ?)
                BEGIN
                    CREATE TABLE [{self.schema}].[journal] (
                        filename NVARCHAR(100) PRIMARY KEY,
                        date_created DATETIME2,
                        lines_imported INT NOT NULL DEFAULT 0,
                        completed BIT NOT NULL DEFAULT 0,
                        updated_at DATETIME2
                    )
                END
            """, (self.schema,))

            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.tables t
                               JOIN sys.schemas s ON t.schema_id = s.schema_id
                               WHERE t.name = 'event' AND s.name = ?)
                BEGIN
                    CREATE TABLE [{self.schema}].[event] (
                        id INT IDENTITY(1,1) PRIMARY KEY,
                        timestamp DATETIME2 NOT NULL,
                        type NVARCHAR(100) NOT NULL,
                        data NVARCHAR(MAX) NOT NULL,
                        filename NVARCHAR(100) NOT NULL,
                        line INT NOT NULL,
                        parsed BIT NOT NULL DEFAULT 0
                    )
                END
            """, (self.schema,))

            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.tables t
                               JOIN sys.schemas s ON t.schema_id = s.schema_id
                               WHERE t.name = 'log' AND s.name = ?)
                BEGIN
                    CREATE TABLE [{self.schema}].[log] (
                        id INT IDENTITY(1,1) PRIMARY KEY,
                        timestamp DATETIME2 NOT NULL,
                        message NVARCHAR(255) NOT NULL,
                        event_id INT NULL
                    )
                END
            """, (self.schema,))

            # One envelope per journal line
            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.indexes
                               WHERE name = 'ix_event_file_line'
                               AND object_id = OBJECT_ID('[{self.schema}].[event]'))
                BEGIN
                    CREATE UNIQUE INDEX ix_event_file_line
                    ON [{self.schema}].[event] (filename, line)
                END
            """)

            # Reprocessing selects by type
            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.indexes
                               WHERE name = 'ix_event_type'
                               AND object_id = OBJECT_ID('[{self.schema}].[event]'))
                BEGIN
                    CREATE INDEX ix_event_type
                    ON [{self.schema}].[event] (type)
                END
            """)

            self.conn.commit()
            logger.debug("Initialized SQL Server event sink schema")

        except pyodbc.Error as e:
            raise self._fail("initialize schema", e) from e

    def _fail(self, operation: str, error: Exception) -> SinkConnectionError:
        """
        Roll back and build the error raised for a failed statement.

        After a connection-level error the thread's connection is dropped
        instead, so the next call on this thread reconnects.
        """
        conn = getattr(self._thread_local, "conn", None)
        if conn is not None:
            if isinstance(error, (pyodbc.OperationalError, pyodbc.InterfaceError)):
                self._drop_conn(conn)
            else:
                try:
                    conn.rollback()
                except pyodbc.Error:
                    logger.debug(f"Rollback failed after {operation} error")
        logger.error(f"Failed to {operation}: {error}")
        return SinkConnectionError(f"{operation} failed: {error}", operation=operation)

    def _drop_conn(self, conn) -> None:
        """Forget a broken thread-local connection."""
        self._thread_local.conn = None
        with self._connections_lock:
            if conn in self._connections:
                self._connections.remove(conn)
        try:
            conn.close()
        except pyodbc.Error:
            logger.debug("Ignoring error closing broken SQL Server connection")
        logger.warning("Dropped SQL Server connection; the next call will reconnect")

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
        try:
            cursor = self.conn.cursor()
            try:
                cursor.execute(f"""
                    IF NOT EXISTS (SELECT 1 FROM [{self.schema}].[event] WHERE filename = ? AND line = ?)
                    BEGIN
                        INSERT INTO [{self.schema}].[event] (timestamp, type, data, filename, line, parsed)
                        VALUES (?, ?, ?, ?, ?, 0)
                    END
                """, (
                    filename,
                    line_number,
                    _to_naive_utc(timestamp),
                    event_type,
                    raw_payload,
                    filename,
                    line_number,
                ))
                self.conn.commit()
            except pyodbc.IntegrityError:
                # Another worker inserted the same line between the check and the insert
                logger.debug(f"Envelope already exists (race condition): {filename}:{line_number}")
                self.conn.rollback()

            cursor.execute(f"""
                SELECT id FROM [{self.schema}].[event] WHERE filename = ? AND line = ?
            """, (filename, line_number))
            row = cursor.fetchone()
        except pyodbc.Error as e:
            raise self._fail("create envelope", e) from e

        if row is None:
            raise SinkConnectionError(
                f"Envelope {filename}:{line_number} missing after insert",
                operation="create envelope",
            )
        return row[0]

    def mark_parsed(self, envelope_id: int) -> None:
        """Flag an envelope as parsed."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                UPDATE [{self.schema}].[event] SET parsed = 1 WHERE id = ?
            """, (envelope_id,))
            self.conn.commit()
        except pyodbc.Error as e:
            raise self._fail("mark envelope parsed", e) from e

    def create_or_get_ledger_entry(self, filename: str, created_time: Optional[datetime]) -> int:
        """Create a ledger entry if absent, then return its lines imported."""
        try:
            cursor = self.conn.cursor()
            try:
                cursor.execute(f"""
                    IF NOT EXISTS (SELECT 1 FROM [{self.schema}].[journal] WHERE filename = ?)
                    BEGIN
                        INSERT INTO [{self.schema}].[journal]
                            (filename, date_created, lines_imported, completed, updated_at)
                        VALUES (?, ?, 0, 0, ?)
                    END
                """, (filename, filename, _to_naive_utc(created_time), _to_naive_utc(utc_now())))
                self.conn.commit()
            except pyodbc.IntegrityError:
                logger.debug(f"Ledger entry already exists (race condition): {filename}")
                self.conn.rollback()

            cursor.execute(f"""
                SELECT lines_imported FROM [{self.schema}].[journal] WHERE filename = ?
            """, (filename,))
            row = cursor.fetchone()
        except pyodbc.Error as e:
            raise self._fail("create ledger entry", e) from e

        return row[0] if row else 0

    def update_ledger_entry(self, filename: str, lines_imported: int, completed: bool) -> bool:
        """
        Persist progress for a journal file.

        Returns:
            True if the entry exists and was updated
        """
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                UPDATE [{self.schema}].[journal]
                SET lines_imported = CASE WHEN lines_imported > ? THEN lines_imported ELSE ? END,
                    completed = CASE WHEN completed = 1 THEN 1 ELSE ? END,
                    updated_at = ?
                WHERE filename = ?
            """, (
                lines_imported,
                lines_imported,
                1 if completed else 0,
                _to_naive_utc(utc_now()),
                filename,
            ))
            updated = cursor.rowcount > 0
            self.conn.commit()
        except pyodbc.Error as e:
            raise self._fail("update ledger entry", e) from e

        if not updated:
            logger.warning(f"No ledger entry to update for {filename}")
        return updated

    def get_ledger_entry(self, filename: str) -> Optional[ProgressRecord]:
        """Get the ledger entry for a journal file."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                SELECT * FROM [{self.schema}].[journal] WHERE filename = ?
            """, (filename,))
            columns = [column[0] for column in cursor.description]
            row = cursor.fetchone()
        except pyodbc.Error as e:
            raise self._fail("get ledger entry", e) from e

        if row:
            return self._row_to_progress(dict(zip(columns, row)))
        return None

    def list_ledger_entries(self) -> List[ProgressRecord]:
        """Get every ledger entry."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                SELECT * FROM [{self.schema}].[journal] ORDER BY filename
            """)
            columns = [column[0] for column in cursor.description]
            rows = cursor.fetchall()
        except pyodbc.Error as e:
            raise self._fail("list ledger entries", e) from e

        return [self._row_to_progress(dict(zip(columns, row))) for row in rows]

    def get_envelope(self, filename: str, line_number: int) -> Optional[EventEnvelope]:
        """Get the envelope for a journal line."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                SELECT * FROM [{self.schema}].[event] WHERE filename = ? AND line = ?
            """, (filename, line_number))
            columns = [column[0] for column in cursor.description]
            row = cursor.fetchone()
        except pyodbc.Error as e:
            raise self._fail("get envelope", e) from e

        if row:
            return self._row_to_envelope(dict(zip(columns, row)))
        return None

    def list_envelopes(self, event_types: Optional[Iterable[str]] = None) -> List[EventEnvelope]:
        """Get stored envelopes, optionally restricted to some event types."""
        query = f"SELECT * FROM [{self.schema}].[event]"
        params: list = []

        if event_types is not None:
            types = list(event_types)
            if not types:
                return []
            query += f" WHERE type IN ({', '.join('?' for _ in types)})"
            params.extend(types)

        query += " ORDER BY filename, line"

        try:
            cursor = self.conn.cursor()
            cursor.execute(query, params)
            columns = [column[0] for column in cursor.description]
            rows = cursor.fetchall()
        except pyodbc.Error as e:
            raise self._fail("list envelopes", e) from e

        return [self._row_to_envelope(dict(zip(columns, row))) for row in rows]

    def write_log(
        self,
        message: str,
        event_id: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Record a diagnostic message in the log table."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                INSERT INTO [{self.schema}].[log] (timestamp, message, event_id) VALUES (?, ?, ?)
            """, (_to_naive_utc(timestamp or utc_now()), message[:255], event_id))
            self.conn.commit()
        except pyodbc.Error as e:
            raise self._fail("write log", e) from e

    def get_stats(self) -> SinkStats:
        """Get counts of ledger entries, envelopes and log entries."""
        try:
            cursor = self.conn.cursor()
            cursor.execute(f"""
                SELECT COUNT(*), COALESCE(SUM(CAST(completed AS INT)), 0)
                FROM [{self.schema}].[journal]
            """)
            journals = cursor.fetchone()
            cursor.execute(f"""
                SELECT COUNT(*), COALESCE(SUM(CAST(parsed AS INT)), 0)
                FROM [{self.schema}].[event]
            """)
            events = cursor.fetchone()
            cursor.execute(f"SELECT COUNT(*) FROM [{self.schema}].[log]")
            logs = cursor.fetchone()
        except pyodbc.Error as e:
            raise self._fail("get stats", e) from e

        return SinkStats(
            journals=journals[0],
            journals_completed=journals[1],
            envelopes=events[0],
            envelopes_parsed=events[1],
            log_entries=logs[0],
        )

    def _row_to_progress(self, row: dict) -> ProgressRecord:
        """Convert a database row to a ProgressRecord object."""
        return ProgressRecord(
            filename=row["filename"],
            lines_imported=row["lines_imported"],
            completed=bool(row["completed"]),
            date_created=_from_naive_utc(row["date_created"]),
        )

    def _row_to_envelope(self, row: dict) -> EventEnvelope:
        """Convert a database row to an EventEnvelope object."""
        return EventEnvelope(
            envelope_id=row["id"],
            filename=row["filename"],
            line_number=row["line"],
            timestamp=_from_naive_utc(row["timestamp"]),
            event_type=row["type"],
            raw_payload=row["data"],
            parsed=bool(row["parsed"]),
        )

    def close(self) -> None:
        """Close the database connections."""
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except pyodbc.Error:
                    logger.debug("Ignoring error closing SQL Server connection")
            self._connections.clear()
        logger.debug("Closed SQL Server event sink connections")


class _ThreadLocalConnectionProxy:
    """Proxy that routes cursor/commit/rollback/close to a thread-local connection."""
    def __init__(self, store: "SqlServerEventSink"):
        self._store = store

    def cursor(self):
        return self._store._get_conn().cursor()

    def commit(self):
        return self._store._get_conn().commit()

    def rollback(self):
        return self._store._get_conn().rollback()

    def close(self):
        return self._store._get_conn().close()


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """DATETIME2 has no offset; store UTC wall-clock time."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)
