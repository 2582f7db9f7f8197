"""
Journal sync pipeline - runs the tail reader and backfill scanner together.
"""

import logging
import signal
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from ..core.cancellation import CancellationToken
from ..core.exceptions import MalformedRecordError
from ..core.models import MalformedPolicy
from ..core.sink import EventSink
from ..dispatch.dispatcher import EventDispatcher
from ..dispatch.registry import HandlerRegistry
from ..files.locator import DEFAULT_PATTERN, FileLocator
from ..ledger.progress_ledger import ProgressLedger
from ..parsing.parser import EventParser
from .backfill_scanner import BackfillResult, BackfillScanner
from .line_importer import LineImporter
from .tail_reader import TailReader


logger = logging.getLogger(__name__)


class JournalSyncPipeline:
    """
    Control surface for journal ingestion.

    Owns the two workers and the cancellation token they share. The
    workers run on a two-thread pool and never share in-process state;
    everything they coordinate on lives in the event sink.

    Usage:
        pipeline = JournalSyncPipeline(sink, journal_dir)
        pipeline.start()
        ...
        pipeline.stop()
    """

    def __init__(
        self,
        sink: EventSink,
        journal_dir: Union[str, Path],
        pattern: str = DEFAULT_PATTERN,
        poll_interval: float = 1.0,
        sync_interval: float = 60.0,
        malformed_policy: MalformedPolicy = MalformedPolicy.SKIP,
        registry: Optional[HandlerRegistry] = None,
    ):
        self.sink = sink
        self.locator = FileLocator(journal_dir, pattern)
        self.ledger = ProgressLedger(sink)
        self.parser = EventParser()
        self.dispatcher = EventDispatcher(sink, registry)
        self.importer = LineImporter(self.ledger, self.dispatcher, self.parser, malformed_policy)
        self.tail_reader = TailReader(self.locator, self.ledger, self.importer, poll_interval)
        self.backfill_scanner = BackfillScanner(self.locator, self.ledger, self.importer, sync_interval)

        self._token = CancellationToken()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._workers: Dict[str, Future] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config, sink: EventSink, registry: Optional[HandlerRegistry] = None) -> "JournalSyncPipeline":
        """Build a pipeline from a JournalSyncConfig."""
        return cls(
            sink=sink,
            journal_dir=config.journal_directory,
            pattern=config.pattern,
            poll_interval=config.poll_interval,
            sync_interval=config.sync_interval,
            malformed_policy=config.malformed_policy,
            registry=registry,
        )

    @property
    def running(self) -> bool:
        return any(not f.done() for f in self._workers.values())

    def start(self) -> None:
        """Launch both workers. Does nothing if they are already running."""
        with self._lock:
            if self.running:
                logger.warning("Pipeline already running; start ignored")
                return

            self._token.reset()
            # A stopped tail reader starts over from the locator and ledger
            self.tail_reader = TailReader(
                self.locator, self.ledger, self.importer, self.tail_reader.poll_interval
            )
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="journal-sync")
            self._workers = {
                "tail": self._executor.submit(self.tail_reader.run, self._token),
                "backfill": self._executor.submit(self.backfill_scanner.run, self._token),
            }
            logger.info(f"Started journal sync on {self.locator.directory}")

    def stop(self, wait: bool = True) -> None:
        """
        Signal both workers to stop.

        Args:
            wait: Block until both workers have exited
        """
        logger.info("Stopping journal sync...")
        self._token.cancel()

        with self._lock:
            if self._executor is None:
                return
            self._executor.shutdown(wait=wait)
            if wait:
                for name, future in self._workers.items():
                    if future.exception() is not None:
                        logger.error(f"Worker {name} failed with error: {future.exception()}")
                self._workers = {}
                self._executor = None

    def run(self) -> None:
        """
        Run until SIGINT or SIGTERM, then stop both workers.

        Must be called from the main thread.
        """
        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handle_shutdown_signal(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown...")
            self._token.cancel()

        signal.signal(signal.SIGINT, _handle_shutdown_signal)
        signal.signal(signal.SIGTERM, _handle_shutdown_signal)

        try:
            self.start()
            # Poll so signal handlers get a chance to run
            while not self._token.wait(0.5):
                if not self.running:
                    logger.error("Both workers exited unexpectedly")
                    break
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt, initiating shutdown...")
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
            self.stop(wait=True)

    def run_backfill_once(self) -> BackfillResult:
        """Run one backfill pass on the calling thread."""
        return self.backfill_scanner.run_pass(self._token)

    def reprocess(self, event_types: Iterable[str]) -> int:
        """
        Re-run stored envelopes of the given types through their handlers.

        No envelopes are created; each one is dispatched from its stored
        raw payload and marked parsed again.

        Returns:
            Number of envelopes reprocessed
        """
        types = list(event_types)
        if not types:
            return 0

        count = 0
        failed = 0
        for envelope in self.sink.list_envelopes(types):
            context = {"journal": envelope.filename, "line_number": envelope.line_number,
                       "event_id": envelope.envelope_id}
            try:
                event = self.parser.parse(envelope.raw_payload)
            except MalformedRecordError as e:
                logger.warning(f"Cannot reprocess envelope: {e}", extra=context)
                continue

            result = self.dispatcher.dispatch(envelope.envelope_id, event)
            self.dispatcher.mark_parsed(envelope.envelope_id)
            failed += result.handlers_failed
            count += 1

        logger.info(
            f"Reprocessed {count} events of type {', '.join(types)} ({failed} handler failures)"
        )
        return count

    def get_status(self) -> Dict[str, Any]:
        """
        Get current pipeline status.

        Returns:
            Dictionary with worker liveness, tail reader state, the last
            backfill result and sink statistics
        """
        last = self.backfill_scanner.last_result
        return {
            "workers": {name: not future.done() for name, future in self._workers.items()},
            "stopping": self._token.cancelled,
            "tail": self.tail_reader.get_status(),
            "backfill": {
                "files_imported": last.files_imported,
                "files_skipped": last.files_skipped,
                "files_failed": last.files_failed,
                "lines_imported": last.lines_imported,
            } if last else None,
            "sink": self.sink.get_stats().to_dict(),
        }
