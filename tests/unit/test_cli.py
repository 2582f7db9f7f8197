"""
Unit tests for the journal-sync command line.
"""

import logging
import sys
from unittest.mock import Mock

import pytest

from conftest import make_event, write_journal
from journal_sync import sync_cli
from journal_sync.dispatch import HandlerDefinition, get_handler_registry
from journal_sync.state import SqliteEventSink


ENV_VARS = (
    "JOURNAL_SYNC_DIR",
    "DB_BACKEND",
    "JOURNAL_SYNC_SQLITE_PATH",
    "JOURNAL_SYNC_SQLSERVER_CONN_STR",
    "JOURNAL_SYNC_SQLSERVER_PASSWORD",
    "MSSQL_SA_PASSWORD",
)


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch):
    """Keep the CLI away from .env files and leftover handlers."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(sync_cli, "load_dotenv", lambda: None)
    yield
    package_logger = logging.getLogger("journal_sync")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "state" / "cli.db"
    monkeypatch.setenv("JOURNAL_SYNC_SQLITE_PATH", str(path))
    return path


HANDLER_MODULE = "journal_sync_cli_handlers"

HANDLER_SOURCE = '''
from journal_sync.dispatch import get_handler_registry

SCANNED = []


@get_handler_registry().handler("Scan", name="cli_module_scan")
def record_scan(ctx):
    SCANNED.append(ctx.event.fields["BodyName"])
'''


@pytest.fixture
def handler_module(tmp_path, monkeypatch):
    """A handler module importable from tmp_path, unregistered afterwards."""
    module_dir = tmp_path / "handlers"
    module_dir.mkdir()
    (module_dir / f"{HANDLER_MODULE}.py").write_text(HANDLER_SOURCE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(module_dir))
    yield HANDLER_MODULE
    get_handler_registry().unregister("Scan", "cli_module_scan")
    sys.modules.pop(HANDLER_MODULE, None)


@pytest.fixture
def journals(journal_dir):
    write_journal(journal_dir, "Journal.001.log", [
        make_event("Scan", BodyName="A"),
        make_event("Docked", StationName="B"),
    ])
    write_journal(journal_dir, "Journal.002.log", [make_event("Scan", BodyName="C")])
    return journal_dir


def _open(db_path):
    return SqliteEventSink(db_path=db_path)


class TestParseArgs:
    """Tests for argument parsing."""

    def test_defaults(self):
        """Test that no flags means watch mode."""
        args = sync_cli.parse_args([])

        assert args.config is None
        assert args.once is False
        assert args.reprocess is None
        assert args.stats is False

    def test_reprocess_types(self):
        """Test that --reprocess takes several types."""
        args = sync_cli.parse_args(["--reprocess", "Scan", "Docked"])

        assert args.reprocess == ["Scan", "Docked"]

    def test_invalid_backend(self):
        """Test that an unknown backend is rejected by argparse."""
        with pytest.raises(SystemExit):
            sync_cli.parse_args(["--backend", "mysql"])


class TestMain:
    """Tests for the main entry point."""

    def test_once_imports_completed_files(self, journals, db_path):
        """Test a single backfill pass from the command line."""
        assert sync_cli.main(["--journal-dir", str(journals), "--once"]) == 0

        sink = _open(db_path)
        try:
            record = sink.get_ledger_entry("Journal.001.log")
            assert record.lines_imported == 2
            assert record.completed is True
            assert sink.get_ledger_entry("Journal.002.log") is None
            assert len(sink.list_envelopes()) == 2
        finally:
            sink.close()

    def test_stats(self, journals, db_path, capsys):
        """Test that --stats reports without importing."""
        assert sync_cli.main(["--journal-dir", str(journals), "--once"]) == 0

        assert sync_cli.main(["--journal-dir", str(journals), "--stats"]) == 0

        out = capsys.readouterr().out
        assert "Journal.001.log: 2 lines (completed)" in out
        assert '"envelopes": 2' in out

    def test_reprocess(self, journals, db_path):
        """Test that --reprocess re-runs handlers for stored events."""
        assert sync_cli.main(["--journal-dir", str(journals), "--once"]) == 0

        scan_handler = Mock()
        registry = get_handler_registry()
        registry.register(HandlerDefinition(event_type="Scan", name="cli_test", func=scan_handler))
        try:
            assert sync_cli.main(["--journal-dir", str(journals), "--reprocess", "Scan"]) == 0
        finally:
            registry.unregister("Scan", "cli_test")

        assert scan_handler.call_count == 1
        assert scan_handler.call_args.args[0].event.fields["BodyName"] == "A"

    def test_invalid_config(self, tmp_path, db_path):
        """Test that a bad configuration exits with status 1."""
        config_path = tmp_path / "bad.yaml"
        config_path.write_text("journal:\n  poll_interval: -1\n", encoding="utf-8")

        assert sync_cli.main(["--config", str(config_path)]) == 1
        assert not db_path.exists()

    def test_missing_config(self, tmp_path):
        """Test that a missing configuration file exits with status 1."""
        assert sync_cli.main(["--config", str(tmp_path / "missing.yaml")]) == 1

    def test_sink_failure(self, journals, monkeypatch):
        """Test that a sink that cannot be opened exits with status 1."""
        monkeypatch.setattr(sync_cli, "build_event_sink", Mock(side_effect=ImportError("pyodbc")))

        assert sync_cli.main(["--journal-dir", str(journals), "--once"]) == 1

    def test_missing_journal_directory(self, tmp_path, db_path):
        """Test that --once tolerates a journal directory that does not exist yet."""
        assert sync_cli.main(["--journal-dir", str(tmp_path / "nowhere"), "--once"]) == 0


class TestHandlerModules:
    """Tests for loading handler modules from the command line and config."""

    def test_handlers_flag(self, journals, db_path, handler_module):
        """Test that --handlers makes the module's handlers run on import."""
        assert sync_cli.main(["--journal-dir", str(journals), "--handlers", handler_module, "--once"]) == 0

        assert sys.modules[handler_module].SCANNED == ["A"]

    def test_handlers_from_config(self, tmp_path, journals, db_path, handler_module):
        """Test that the config's handlers list is loaded before reprocessing."""
        assert sync_cli.main(["--journal-dir", str(journals), "--once"]) == 0
        config_path = tmp_path / "handlers.yaml"
        config_path.write_text(f"handlers: [{handler_module}]\n", encoding="utf-8")

        assert sync_cli.main([
            "--config", str(config_path), "--journal-dir", str(journals), "--reprocess", "Scan",
        ]) == 0

        assert sys.modules[handler_module].SCANNED == ["A"]

    def test_unknown_handler_module(self, journals, db_path):
        """Test that a module that cannot be imported exits with status 1."""
        assert sync_cli.main([
            "--journal-dir", str(journals), "--handlers", "no_such_handlers_module", "--once",
        ]) == 1
        assert not db_path.exists()
