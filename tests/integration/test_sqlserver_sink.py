"""
Integration tests for the SQL Server event sink.

These tests verify that:
1. The schema and tables are created on first use
2. Envelope creation is idempotent per (filename, line)
3. Ledger progress never goes backwards and completion is sticky
4. Log rows keep their envelope reference
"""

import uuid
from datetime import datetime, timezone

import pytest

from journal_sync.state import SqlServerEventSink


TS = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def sqlserver_sink(sqlserver_config):
    """Fixture providing a SQL Server sink that removes its rows afterwards."""
    sink = SqlServerEventSink(**sqlserver_config)
    prefix = f"it-{uuid.uuid4().hex[:8]}"
    yield sink, prefix

    cursor = sink.conn.cursor()
    cursor.execute(f"""
        DELETE l FROM [{sink.schema}].[log] l
        JOIN [{sink.schema}].[event] e ON l.event_id = e.id
        WHERE e.filename LIKE ?
    """, (f"{prefix}%",))
    cursor.execute(f"DELETE FROM [{sink.schema}].[event] WHERE filename LIKE ?", (f"{prefix}%",))
    cursor.execute(f"DELETE FROM [{sink.schema}].[journal] WHERE filename LIKE ?", (f"{prefix}%",))
    sink.conn.commit()
    sink.close()


@pytest.mark.integration
class TestSchema:
    """Tests for schema creation."""

    @pytest.mark.parametrize("table", ["journal", "event", "log"])
    def test_table_exists(self, sqlserver_sink, table):
        """Test that each table exists in the configured schema."""
        sink, _ = sqlserver_sink
        cursor = sink.conn.cursor()

        cursor.execute("""
            SELECT 1 FROM sys.tables t
            JOIN sys.schemas s ON t.schema_id = s.schema_id
            WHERE t.name = ? AND s.name = ?
        """, (table, sink.schema))

        assert cursor.fetchone() is not None, f"Table '{sink.schema}.{table}' does not exist"

    def test_reinit_is_harmless(self, sqlserver_config):
        """Test that opening a second sink over existing tables works."""
        SqlServerEventSink(**sqlserver_config).close()
        SqlServerEventSink(**sqlserver_config).close()


@pytest.mark.integration
class TestEnvelopes:
    """Tests for envelope storage."""

    def test_create_is_idempotent(self, sqlserver_sink):
        """Test that one key only ever gets one envelope."""
        sink, prefix = sqlserver_sink
        filename = f"{prefix}.Journal.001.log"

        first = sink.create_envelope_if_absent(filename, 1, TS, "Scan", '{"event":"Scan"}')
        second = sink.create_envelope_if_absent(filename, 1, TS, "Other", '{"event":"Other"}')

        assert first == second
        envelope = sink.get_envelope(filename, 1)
        assert envelope.event_type == "Scan"
        assert envelope.timestamp == TS
        assert envelope.parsed is False

    def test_mark_parsed_and_filter(self, sqlserver_sink):
        """Test parsed flag and type filtering."""
        sink, prefix = sqlserver_sink
        filename = f"{prefix}.Journal.001.log"
        scan_id = sink.create_envelope_if_absent(filename, 1, TS, "Scan", "{}")
        sink.create_envelope_if_absent(filename, 2, TS, "Docked", "{}")

        sink.mark_parsed(scan_id)

        scans = [e for e in sink.list_envelopes(["Scan"]) if e.filename == filename]
        assert [e.envelope_id for e in scans] == [scan_id]
        assert scans[0].parsed is True


@pytest.mark.integration
class TestLedger:
    """Tests for ledger storage."""

    def test_monotonic_and_sticky(self, sqlserver_sink):
        """Test that progress never decreases and completion stays set."""
        sink, prefix = sqlserver_sink
        filename = f"{prefix}.Journal.001.log"

        assert sink.create_or_get_ledger_entry(filename, TS) == 0
        assert sink.update_ledger_entry(filename, 5, True) is True
        sink.update_ledger_entry(filename, 3, False)

        record = sink.get_ledger_entry(filename)
        assert record.lines_imported == 5
        assert record.completed is True
        assert record.date_created == TS
        assert sink.create_or_get_ledger_entry(filename, None) == 5

    def test_update_unknown_file(self, sqlserver_sink):
        """Test that updating a missing entry reports no row."""
        sink, prefix = sqlserver_sink

        assert sink.update_ledger_entry(f"{prefix}.missing.log", 1, False) is False


@pytest.mark.integration
class TestLog:
    """Tests for the log table."""

    def test_write_log_with_event(self, sqlserver_sink):
        """Test that a log row keeps its envelope reference."""
        sink, prefix = sqlserver_sink
        envelope_id = sink.create_envelope_if_absent(f"{prefix}.Journal.001.log", 1, TS, "Scan", "{}")

        sink.write_log("x" * 300, event_id=envelope_id)

        cursor = sink.conn.cursor()
        cursor.execute(f"SELECT message FROM [{sink.schema}].[log] WHERE event_id = ?", (envelope_id,))
        rows = cursor.fetchall()
        assert len(rows) == 1
        assert len(rows[0][0]) == 255
