"""
Event sinks: where journal progress, event envelopes and log records live.

Both backends store the same three tables:
    journal  one row per journal file (lines imported, completed)
    event    one envelope per imported line, unique on (filename, line)
    log      diagnostic records, optionally tied to an event id

SqliteEventSink is the default and needs only the standard library.
SqlServerEventSink needs pyodbc and a reachable server; it is imported
lazily by the factory so that a SQLite-only install never touches pyodbc.

Environment fallbacks used by create_event_sink:
    DB_BACKEND                        sqlite | sqlserver
    JOURNAL_SYNC_SQLITE_PATH          SQLite database file
    JOURNAL_SYNC_SQLSERVER_CONN_STR   full ODBC connection string
    JOURNAL_SYNC_SQLSERVER_PASSWORD   password (else MSSQL_SA_PASSWORD)
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from ..config.config_loader import SINK_TYPES
from ..core.sink import EventSink


logger = logging.getLogger(__name__)


DEFAULT_SQLITE_PATH = Path("local/state/journal_sync.db")


def _get_sqlserver_sink():
    from .sqlserver_store import SqlServerEventSink
    return SqlServerEventSink


def _sqlite_path(db_path: Optional[Union[str, Path]]) -> Path:
    return Path(db_path or os.environ.get("JOURNAL_SYNC_SQLITE_PATH") or DEFAULT_SQLITE_PATH)


def _sqlserver_password(password: Optional[str]) -> Optional[str]:
    if password is not None:
        return password
    return os.environ.get("JOURNAL_SYNC_SQLSERVER_PASSWORD") or os.environ.get("MSSQL_SA_PASSWORD")


def create_event_sink(
    backend: Optional[str] = None,
    db_path: Optional[Union[str, Path]] = None,
    connection_string: Optional[str] = None,
    host: str = "localhost",
    port: int = 1433,
    database: str = "EDSODS",
    username: str = "sa",
    password: Optional[str] = None,
    driver: str = "ODBC Driver 18 for SQL Server",
    schema: str = "journal",
    trust_server_certificate: bool = True,
    auto_init: bool = True,
) -> EventSink:
    """
    Open the event sink the importer writes to.

    The backend comes from the argument, then DB_BACKEND, then 'sqlite'.
    db_path only applies to SQLite; the remaining connection arguments
    only apply to SQL Server, where connection_string wins over the
    individual host/port/database fields when set.

    Raises:
        ValueError: backend is not one of SINK_TYPES
    """
    backend = (backend or os.environ.get("DB_BACKEND") or "sqlite").lower()
    if backend not in SINK_TYPES:
        raise ValueError(f"Unknown event sink backend {backend!r}, expected one of {', '.join(SINK_TYPES)}")

    if backend == "sqlite":
        path = _sqlite_path(db_path)
        logger.debug(f"Opening SQLite event sink at {path}")
        return SqliteEventSink(db_path=path, auto_init=auto_init)

    sink_class = _get_sqlserver_sink()
    connection_string = connection_string or os.environ.get("JOURNAL_SYNC_SQLSERVER_CONN_STR")
    logger.debug(
        f"Opening SQL Server event sink "
        f"({'connection string' if connection_string else f'{host}:{port}/{database}'}, schema {schema})"
    )
    return sink_class(
        connection_string=connection_string,
        host=host,
        port=port,
        database=database,
        username=username,
        password=_sqlserver_password(password),
        driver=driver,
        schema=schema,
        auto_init=auto_init,
        trust_server_certificate=trust_server_certificate,
    )


from .sqlite_store import SqliteEventSink

# SqlServerEventSink imports cleanly without pyodbc and raises on construction
from .sqlserver_store import SqlServerEventSink

__all__ = ["SqliteEventSink", "SqlServerEventSink", "create_event_sink", "DEFAULT_SQLITE_PATH"]
