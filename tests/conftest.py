"""
Shared test fixtures and configuration for pytest.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Iterable, Optional

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


logger = logging.getLogger(__name__)


# ============================================================================
# Environment detection
# ============================================================================

def _sqlserver_password() -> Optional[str]:
    return (
        os.environ.get("JOURNAL_SYNC_SQLSERVER_PASSWORD")
        or os.environ.get("MSSQL_SA_PASSWORD")
    )


def is_sqlserver_available() -> bool:
    """Check if SQL Server is available for testing."""
    password = _sqlserver_password()
    if not password:
        return False

    try:
        import pyodbc

        host = os.environ.get("JOURNAL_SYNC_SQLSERVER_HOST", "localhost")
        port = int(os.environ.get("JOURNAL_SYNC_SQLSERVER_PORT", "1433"))
        database = os.environ.get("JOURNAL_SYNC_SQLSERVER_DATABASE",
                                  os.environ.get("MSSQL_DATABASE", "EDSODS"))
        username = os.environ.get("JOURNAL_SYNC_SQLSERVER_USER", "sa")
        driver = os.environ.get("JOURNAL_SYNC_SQLSERVER_DRIVER", "ODBC Driver 18 for SQL Server")

        conn_str = (
            f"Driver={{{driver}}};"
            f"Server={host},{port};"
            f"Database={database};"
            f"UID={username};"
            f"PWD={password};"
            f"TrustServerCertificate=yes"
        )

        conn = pyodbc.connect(conn_str, timeout=5)
        conn.close()
        return True

    except Exception as e:
        logger.debug(f"SQL Server not available: {e}")
        return False


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (requires SQL Server)")


def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests if SQL Server is not available."""
    if not any("integration" in item.keywords for item in items):
        return
    if is_sqlserver_available():
        return

    skip_sqlserver = pytest.mark.skip(
        reason="SQL Server not available (set MSSQL_SA_PASSWORD and ensure SQL Server is running)"
    )

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_sqlserver)


# ============================================================================
# Helpers
# ============================================================================

def make_event(event_type: str, timestamp: str = "2024-05-01T12:00:00Z", **fields) -> str:
    """Build one journal line."""
    return json.dumps({"timestamp": timestamp, "event": event_type, **fields})


def write_journal(
    directory: Path,
    name: str,
    lines: Iterable[str],
    terminate_last: bool = True,
) -> Path:
    """
    Write a journal file.

    Files must be written in creation order: on Linux, creation time is
    the inode change time, which any later write to the file moves forward.
    """
    lines = list(lines)
    text = "\n".join(lines)
    if lines and terminate_last:
        text += "\n"
    path = directory / name
    path.write_bytes(text.encode("utf-8"))
    return path


def append_journal(path: Path, text: str) -> None:
    """Append raw text to a journal file."""
    with open(path, "ab") as f:
        f.write(text.encode("utf-8"))


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def journal_dir(tmp_path) -> Path:
    """Fixture providing an empty journal directory."""
    directory = tmp_path / "journals"
    directory.mkdir()
    return directory


@pytest.fixture
def sqlite_sink(tmp_path):
    """Fixture providing a fresh SQLite event sink."""
    from journal_sync.state import SqliteEventSink

    sink = SqliteEventSink(db_path=tmp_path / "state" / "journal_sync.db")
    yield sink
    sink.close()


@pytest.fixture
def handler_registry():
    """Fixture providing an empty handler registry."""
    from journal_sync.dispatch import HandlerRegistry

    return HandlerRegistry()


@pytest.fixture(scope="session")
def sqlserver_config() -> dict:
    """Session-scoped fixture providing SQL Server connection configuration."""
    return {
        "host": os.environ.get("JOURNAL_SYNC_SQLSERVER_HOST", "localhost"),
        "port": int(os.environ.get("JOURNAL_SYNC_SQLSERVER_PORT", "1433")),
        "database": os.environ.get("JOURNAL_SYNC_SQLSERVER_DATABASE",
                                   os.environ.get("MSSQL_DATABASE", "EDSODS")),
        "username": os.environ.get("JOURNAL_SYNC_SQLSERVER_USER", "sa"),
        "password": _sqlserver_password(),
        "driver": os.environ.get("JOURNAL_SYNC_SQLSERVER_DRIVER", "ODBC Driver 18 for SQL Server"),
        "schema": os.environ.get("JOURNAL_SYNC_SQLSERVER_SCHEMA", "test_journal"),
    }
