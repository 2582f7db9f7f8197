"""
Configuration loader for the journal sync pipeline.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import yaml
except ImportError:
    yaml = None

from ..core.exceptions import ConfigError
from ..core.models import MalformedPolicy


logger = logging.getLogger(__name__)


DEFAULT_JOURNAL_DIR = "~/Saved Games/Frontier Developments/Elite Dangerous"

SINK_TYPES = ("sqlite", "sqlserver")


class JournalSyncConfig:
    """
    Configuration for the journal sync pipeline.

    Loads a YAML configuration file over the built-in defaults, applies
    environment variable overrides, then validates the result.
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)

        Raises:
            ConfigError: If the file cannot be read or a value is invalid
        """
        self.config_path = Path(config_path) if config_path else None
        self.config = self._default_config()
        if self.config_path:
            _merge(self.config, self._load_config())
        self._apply_env_overrides()
        self.validate()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if yaml is None:
            raise ImportError(
                "pyyaml is required for config loading. "
                "Install with: pip install pyyaml"
            )

        if not self.config_path.exists():
            raise ConfigError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config {self.config_path}: {e}") from e

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigError(f"Config {self.config_path} must contain a mapping")
        return config

    def _default_config(self) -> Dict[str, Any]:
        """Return default configuration."""
        return {
            "journal": {
                "directory": DEFAULT_JOURNAL_DIR,
                "pattern": "Journal.*.log",
                "poll_interval": 1.0,
                "sync_interval": 60.0,
                "malformed_policy": MalformedPolicy.SKIP.value,
            },
            "sink": {
                "type": "sqlite",
                "sqlite": {
                    "db_path": "local/state/journal_sync.db",
                },
                "sqlserver": {
                    "host": "localhost",
                    "port": 1433,
                    "database": "EDSODS",
                    "user": "sa",
                    "schema": "journal",
                    "driver": "ODBC Driver 18 for SQL Server",
                },
            },
            "logging": {
                "level": "INFO",
                "structured": False,
                "sink_level": "WARNING",
            },
            "handlers": [],
            "reprocess_events": [],
        }

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to loaded config."""
        journal_dir = os.environ.get("JOURNAL_SYNC_DIR")
        if journal_dir:
            self.set("journal.directory", journal_dir)

        backend = os.environ.get("DB_BACKEND")
        if backend:
            self.set("sink.type", backend.lower())

        sqlite_path = os.environ.get("JOURNAL_SYNC_SQLITE_PATH")
        if sqlite_path:
            self.set("sink.sqlite.db_path", sqlite_path)

        conn_str = os.environ.get("JOURNAL_SYNC_SQLSERVER_CONN_STR")
        if conn_str:
            self.set("sink.sqlserver.connection_string", conn_str)

        password = (
            os.environ.get("JOURNAL_SYNC_SQLSERVER_PASSWORD")
            or os.environ.get("MSSQL_SA_PASSWORD")
        )
        if password:
            self.set("sink.sqlserver.password", password)

    def validate(self) -> None:
        """
        Check every value the pipeline depends on.

        Raises:
            ConfigError: On the first invalid value
        """
        for key in ("journal.poll_interval", "journal.sync_interval"):
            value = self.get(key)
            try:
                number = float(value)
            except (TypeError, ValueError):
                raise ConfigError(f"{key} must be a number, got {value!r}")
            if number <= 0:
                raise ConfigError(f"{key} must be positive, got {value!r}")

        policy = self.get("journal.malformed_policy")
        if policy not in [p.value for p in MalformedPolicy]:
            raise ConfigError(
                f"journal.malformed_policy must be one of "
                f"{', '.join(p.value for p in MalformedPolicy)}, got {policy!r}"
            )

        if not self.get("journal.pattern"):
            raise ConfigError("journal.pattern must not be empty")

        sink_type = self.get("sink.type")
        if sink_type not in SINK_TYPES:
            raise ConfigError(f"sink.type must be one of {', '.join(SINK_TYPES)}, got {sink_type!r}")

        _parse_level(self.get("logging.level"), "logging.level")
        sink_level = self.config.get("logging", {}).get("sink_level")
        if sink_level is not None:
            _parse_level(sink_level, "logging.sink_level")

        for key, what in (("handlers", "module paths"), ("reprocess_events", "event type names")):
            values = self.config.get(key)
            if values is None:
                self.config[key] = []
            elif not isinstance(values, list) or not all(isinstance(v, str) for v in values):
                raise ConfigError(f"{key} must be a list of {what}")

    @property
    def journal_directory(self) -> Path:
        return Path(os.path.expanduser(str(self.get("journal.directory"))))

    @property
    def pattern(self) -> str:
        return self.get("journal.pattern")

    @property
    def poll_interval(self) -> float:
        return float(self.get("journal.poll_interval"))

    @property
    def sync_interval(self) -> float:
        return float(self.get("journal.sync_interval"))

    @property
    def malformed_policy(self) -> MalformedPolicy:
        return MalformedPolicy(self.get("journal.malformed_policy"))

    @property
    def log_level(self) -> int:
        return _parse_level(self.get("logging.level"), "logging.level")

    @property
    def structured_logs(self) -> bool:
        return bool(self.get("logging.structured", False))

    @property
    def sink_log_level(self) -> Optional[int]:
        """Minimum level copied to the sink log table, or None if disabled."""
        value = self.config.get("logging", {}).get("sink_level")
        if value is None:
            return None
        return _parse_level(value, "logging.sink_level")

    def get_sink_config(self) -> Dict[str, Any]:
        """Get event sink configuration."""
        return self.config.get("sink", {})

    def get_handler_modules(self) -> List[str]:
        """Get the modules that register event handlers."""
        return list(self.config.get("handlers") or [])

    def get_reprocess_events(self) -> List[str]:
        """Get event types to reprocess at startup."""
        return list(self.config.get("reprocess_events") or [])

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dotted key, creating sections as needed."""
        keys = key.split(".")
        section = self.config
        for k in keys[:-1]:
            section = section.setdefault(k, {})
        section[keys[-1]] = value


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Recursively merge ``override`` into ``base`` in place."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)


def _parse_level(value: Any, key: str) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).upper())
    if not isinstance(level, int):
        raise ConfigError(f"{key} is not a logging level: {value!r}")
    return level
