#!/usr/bin/env python3
"""
CLI entry point for journal-sync.

Tails the active journal and backfills older files until interrupted.

Usage:
    journal-sync --config config/journal_sync.yaml
    journal-sync --journal-dir ./journals --once
    journal-sync --handlers myhandlers.scans --reprocess FSDJump Scan
    journal-sync --stats
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from journal_sync.config import JournalSyncConfig
from journal_sync.core.exceptions import ConfigError, SinkConnectionError
from journal_sync.core.logging import configure_logging, detach_sink_logging
from journal_sync.dispatch import load_handler_modules
from journal_sync.runner import JournalSyncPipeline
from journal_sync.state import create_event_sink


logger = logging.getLogger("journal_sync.cli")


def build_event_sink(config: JournalSyncConfig):
    """Build the event sink from configuration."""
    sink_config = config.get_sink_config()
    backend = sink_config.get("type", "sqlite")

    if backend == "sqlserver":
        sql = sink_config.get("sqlserver", {})
        return create_event_sink(
            backend="sqlserver",
            connection_string=sql.get("connection_string"),
            host=sql.get("host", "localhost"),
            port=int(sql.get("port", 1433)),
            database=sql.get("database", "EDSODS"),
            username=sql.get("user", "sa"),
            password=sql.get("password"),
            driver=sql.get("driver", "ODBC Driver 18 for SQL Server"),
            schema=sql.get("schema", "journal"),
        )

    return create_event_sink(
        backend="sqlite",
        db_path=sink_config.get("sqlite", {}).get("db_path"),
    )


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Import append-only event journals into a database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to configuration YAML file",
    )

    parser.add_argument(
        "--journal-dir",
        type=Path,
        help="Directory containing the journal files",
    )

    parser.add_argument(
        "--backend",
        choices=["sqlite", "sqlserver"],
        help="Event sink backend (overrides config and DB_BACKEND)",
    )

    parser.add_argument(
        "--handlers",
        nargs="+",
        metavar="MODULE",
        help="Modules that register event handlers (added to the config's handlers list)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single backfill pass and exit",
    )

    parser.add_argument(
        "--reprocess",
        nargs="+",
        metavar="TYPE",
        help="Re-run stored events of these types through their handlers and exit",
    )

    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show ledger and envelope statistics and exit",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    load_dotenv()

    try:
        config = JournalSyncConfig(config_path=args.config)
        if args.journal_dir:
            config.set("journal.directory", str(args.journal_dir))
        if args.backend:
            config.set("sink.type", args.backend)
    except ConfigError as e:
        configure_logging(level=logging.INFO)
        logger.error(f"Invalid configuration: {e}")
        return 1

    level = logging.DEBUG if args.verbose else config.log_level
    configure_logging(level=level, structured=config.structured_logs)
    logger.info("Configuration loaded")

    try:
        load_handler_modules(config.get_handler_modules() + (args.handlers or []))
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    try:
        sink = build_event_sink(config)
    except (SinkConnectionError, ImportError, ValueError) as e:
        logger.error(f"Cannot open event sink: {e}")
        return 1

    configure_logging(
        level=level,
        structured=config.structured_logs,
        sink=sink,
        sink_level=config.sink_log_level,
    )

    pipeline = JournalSyncPipeline.from_config(config, sink)

    try:
        if args.stats:
            stats = sink.get_stats()
            logger.info("Sink statistics:")
            logger.info(f"  {json.dumps(stats.to_dict())}")
            for record in pipeline.ledger.list_all():
                state = "completed" if record.completed else "in progress"
                logger.info(f"  {record.filename}: {record.lines_imported} lines ({state})")
            return 0

        if args.reprocess:
            count = pipeline.reprocess(args.reprocess)
            logger.info(f"Reprocessed {count} events")
            return 0

        startup_types = config.get_reprocess_events()
        if startup_types:
            logger.info(f"Reprocessing configured event types: {', '.join(startup_types)}")
            pipeline.reprocess(startup_types)

        if args.once:
            result = pipeline.run_backfill_once()
            logger.info(
                f"Backfill complete: {result.files_imported} files, "
                f"{result.lines_imported} lines, {result.files_failed} incomplete"
            )
            return 0

        logger.info(f"Watching {config.journal_directory} for {config.pattern}")
        pipeline.run()
        logger.info("Journal sync stopped")
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        detach_sink_logging()
        sink.close()


if __name__ == "__main__":
    sys.exit(main())
