"""
Unit tests for configuration loading.
"""

import logging
from pathlib import Path

import pytest

from journal_sync.config import JournalSyncConfig
from journal_sync.core.exceptions import ConfigError
from journal_sync.core.models import MalformedPolicy


ENV_VARS = (
    "JOURNAL_SYNC_DIR",
    "DB_BACKEND",
    "JOURNAL_SYNC_SQLITE_PATH",
    "JOURNAL_SYNC_SQLSERVER_CONN_STR",
    "JOURNAL_SYNC_SQLSERVER_PASSWORD",
    "MSSQL_SA_PASSWORD",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, text):
    path = tmp_path / "journal_sync.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    """Tests for built-in defaults."""

    def test_default_values(self):
        """Test that defaults are usable without a file."""
        config = JournalSyncConfig()

        assert config.pattern == "Journal.*.log"
        assert config.poll_interval == 1.0
        assert config.sync_interval == 60.0
        assert config.malformed_policy == MalformedPolicy.SKIP
        assert config.get("sink.type") == "sqlite"
        assert config.log_level == logging.INFO
        assert config.sink_log_level == logging.WARNING
        assert config.structured_logs is False
        assert config.get_reprocess_events() == []
        assert config.get_handler_modules() == []
        assert "~" not in str(config.journal_directory)


class TestYamlFile:
    """Tests for loading YAML files."""

    def test_partial_file_keeps_other_defaults(self, tmp_path):
        """Test that a file only overrides the keys it sets."""
        path = _write(tmp_path, "journal:\n  poll_interval: 0.25\n  malformed_policy: block\n")

        config = JournalSyncConfig(path)

        assert config.poll_interval == 0.25
        assert config.malformed_policy == MalformedPolicy.BLOCK
        assert config.pattern == "Journal.*.log"
        assert config.get("sink.sqlserver.database") == "EDSODS"

    def test_full_file(self, tmp_path):
        """Test a file setting every section."""
        path = _write(tmp_path, """
journal:
  directory: /data/journals
  pattern: "*.log"
sink:
  type: sqlserver
  sqlserver:
    host: db.local
logging:
  level: debug
  structured: true
  sink_level: null
handlers: [my.handlers.scans]
reprocess_events: [FSDJump, Scan]
""")

        config = JournalSyncConfig(path)

        assert config.journal_directory == Path("/data/journals")
        assert config.pattern == "*.log"
        assert config.get_sink_config()["type"] == "sqlserver"
        assert config.get("sink.sqlserver.host") == "db.local"
        assert config.get("sink.sqlserver.port") == 1433
        assert config.log_level == logging.DEBUG
        assert config.structured_logs is True
        assert config.sink_log_level is None
        assert config.get_reprocess_events() == ["FSDJump", "Scan"]
        assert config.get_handler_modules() == ["my.handlers.scans"]

    def test_empty_file(self, tmp_path):
        """Test that an empty file means all defaults."""
        assert JournalSyncConfig(_write(tmp_path, "")).poll_interval == 1.0

    def test_missing_file(self, tmp_path):
        """Test that a missing file is a ConfigError."""
        with pytest.raises(ConfigError):
            JournalSyncConfig(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        """Test that unparseable YAML is a ConfigError."""
        with pytest.raises(ConfigError):
            JournalSyncConfig(_write(tmp_path, "journal: [unclosed\n"))

    def test_non_mapping(self, tmp_path):
        """Test that a top-level list is rejected."""
        with pytest.raises(ConfigError):
            JournalSyncConfig(_write(tmp_path, "- journal\n"))


class TestValidation:
    """Tests for value validation."""

    @pytest.mark.parametrize("text", [
        "journal:\n  poll_interval: 0\n",
        "journal:\n  sync_interval: -5\n",
        "journal:\n  poll_interval: soon\n",
        "journal:\n  malformed_policy: explode\n",
        "journal:\n  pattern: ''\n",
        "sink:\n  type: mysql\n",
        "logging:\n  level: LOUD\n",
        "logging:\n  sink_level: QUIET\n",
        "reprocess_events: FSDJump\n",
        "reprocess_events: [1, 2]\n",
        "handlers: my.handlers\n",
    ])
    def test_invalid_values(self, tmp_path, text):
        """Test that out-of-range values raise ConfigError."""
        with pytest.raises(ConfigError):
            JournalSyncConfig(_write(tmp_path, text))


class TestEnvOverrides:
    """Tests for environment variable overrides."""

    def test_env_overrides(self, tmp_path, monkeypatch):
        """Test that environment variables win over the file."""
        monkeypatch.setenv("JOURNAL_SYNC_DIR", "/env/journals")
        monkeypatch.setenv("DB_BACKEND", "SQLServer")
        monkeypatch.setenv("JOURNAL_SYNC_SQLITE_PATH", "/env/state.db")
        monkeypatch.setenv("JOURNAL_SYNC_SQLSERVER_CONN_STR", "Driver={x}")
        monkeypatch.setenv("MSSQL_SA_PASSWORD", "fallback")
        path = _write(tmp_path, "journal:\n  directory: /file/journals\n")

        config = JournalSyncConfig(path)

        assert config.journal_directory == Path("/env/journals")
        assert config.get("sink.type") == "sqlserver"
        assert config.get("sink.sqlite.db_path") == "/env/state.db"
        assert config.get("sink.sqlserver.connection_string") == "Driver={x}"
        assert config.get("sink.sqlserver.password") == "fallback"

    def test_password_precedence(self, monkeypatch):
        """Test that the dedicated password variable beats the fallback."""
        monkeypatch.setenv("JOURNAL_SYNC_SQLSERVER_PASSWORD", "primary")
        monkeypatch.setenv("MSSQL_SA_PASSWORD", "fallback")

        assert JournalSyncConfig().get("sink.sqlserver.password") == "primary"

    def test_invalid_backend_from_env(self, monkeypatch):
        """Test that a bad DB_BACKEND is reported as a ConfigError."""
        monkeypatch.setenv("DB_BACKEND", "oracle")

        with pytest.raises(ConfigError):
            JournalSyncConfig()


class TestAccessors:
    """Tests for get and set."""

    def test_get_with_default(self):
        """Test dotted lookup with a default."""
        config = JournalSyncConfig()

        assert config.get("journal.pattern") == "Journal.*.log"
        assert config.get("journal.missing", "x") == "x"
        assert config.get("journal.pattern.deeper", "x") == "x"

    def test_set_creates_sections(self):
        """Test that set creates intermediate sections."""
        config = JournalSyncConfig()

        config.set("extra.section.value", 3)

        assert config.get("extra.section.value") == 3
