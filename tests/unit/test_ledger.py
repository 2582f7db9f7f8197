"""
Unit tests for the progress ledger.
"""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from journal_sync.core.exceptions import SinkConnectionError
from journal_sync.ledger import ProgressLedger


class TestProgressLedger:
    """Tests for ProgressLedger backed by SQLite."""

    @pytest.fixture
    def ledger(self, sqlite_sink):
        return ProgressLedger(sqlite_sink)

    def test_get_or_create_new(self, ledger):
        """Test that a new entry starts at zero lines."""
        created = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

        assert ledger.get_or_create("Journal.001.log", created) == 0

        record = ledger.get("Journal.001.log")
        assert record.lines_imported == 0
        assert record.completed is False
        assert record.date_created == created

    def test_get_or_create_is_idempotent(self, ledger):
        """Test that repeated calls return the stored progress."""
        ledger.get_or_create("Journal.001.log")
        ledger.update("Journal.001.log", 7)

        assert ledger.get_or_create("Journal.001.log") == 7
        assert ledger.get_or_create("Journal.001.log") == 7
        assert len(ledger.list_all()) == 1

    def test_progress_never_decreases(self, ledger):
        """Test that a lower count does not overwrite a higher one."""
        ledger.get_or_create("Journal.001.log")

        ledger.update("Journal.001.log", 5)
        ledger.update("Journal.001.log", 3)

        assert ledger.get("Journal.001.log").lines_imported == 5

    def test_completed_is_sticky(self, ledger):
        """Test that completion cannot be cleared."""
        ledger.get_or_create("Journal.001.log")

        ledger.update("Journal.001.log", 10, completed=True)
        ledger.update("Journal.001.log", 10, completed=False)

        assert ledger.get("Journal.001.log").completed is True

    def test_negative_count_rejected(self, ledger):
        """Test that negative progress is a ValueError."""
        ledger.get_or_create("Journal.001.log")

        with pytest.raises(ValueError):
            ledger.update("Journal.001.log", -1)

    def test_update_missing_entry(self, ledger):
        """Test that an entry removed from the sink is recreated with the new count."""
        ledger.update("Journal.404.log", 3)

        record = ledger.get("Journal.404.log")
        assert record.lines_imported == 3
        assert record.completed is False

    def test_update_removed_entry_keeps_completion(self, ledger, sqlite_sink):
        """Test recreating an entry deleted behind the ledger's back."""
        ledger.get_or_create("Journal.001.log")
        sqlite_sink.conn.execute("DELETE FROM journal")
        sqlite_sink.conn.commit()

        ledger.update("Journal.001.log", 9, completed=True)

        record = ledger.get("Journal.001.log")
        assert record.lines_imported == 9
        assert record.completed is True

    def test_list_all(self, ledger):
        """Test listing every entry."""
        ledger.get_or_create("Journal.002.log")
        ledger.get_or_create("Journal.001.log")

        assert [r.filename for r in ledger.list_all()] == ["Journal.001.log", "Journal.002.log"]


class TestProgressLedgerFailures:
    """Tests for sink failures surfacing through the ledger."""

    def test_update_failure_propagates(self):
        """Test that a failed write is raised, not swallowed."""
        sink = Mock()
        sink.update_ledger_entry.side_effect = SinkConnectionError("down", operation="update")

        with pytest.raises(SinkConnectionError):
            ProgressLedger(sink).update("Journal.001.log", 3)

    def test_unrestorable_entry_raises(self):
        """Test that progress the sink will not keep is an error, not a silent no-op."""
        sink = Mock()
        sink.update_ledger_entry.return_value = False
        sink.create_or_get_ledger_entry.return_value = 0

        with pytest.raises(SinkConnectionError):
            ProgressLedger(sink).update("Journal.001.log", 3)

        sink.create_or_get_ledger_entry.assert_called_once_with("Journal.001.log", None)
        assert sink.update_ledger_entry.call_count == 2
