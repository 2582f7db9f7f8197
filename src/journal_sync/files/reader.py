"""
Line reader for journal files that are still being written.
"""

import codecs
import logging
from pathlib import Path
from typing import Optional, Union

from ..core.exceptions import FileAccessError


logger = logging.getLogger(__name__)


class JournalReader:
    """
    Reads complete lines from a journal file.

    The file is opened read-only without locking it, so the producer keeps
    appending while we read. A line is only returned once its terminating
    newline has been written; a partial tail is left for the next call.

    Usage:
        with JournalReader(path) as reader:
            line = reader.read_line()
            while line is not None:
                ...
                line = reader.read_line()
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.line_number = 0
        self._file = None

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self) -> "JournalReader":
        """
        Open the file at its first line.

        Raises:
            FileAccessError: If the file cannot be opened
        """
        try:
            self._file = open(self.path, "rb")
        except OSError as e:
            raise FileAccessError(f"Cannot open {self.path}: {e}", path=str(self.path)) from e
        self.line_number = 0
        logger.debug(f"Opened journal {self.path.name}")
        return self

    def read_line(self, allow_partial: bool = False) -> Optional[str]:
        """
        Read the next complete line.

        Args:
            allow_partial: Also return a final line with no newline. Only
                safe for files that are no longer being written.

        Returns:
            The line without its terminator, or None if no complete line
            is available yet

        Raises:
            FileAccessError: If the read fails
        """
        if self._file is None:
            self.open()

        try:
            start = self._file.tell()
            raw = self._file.readline()
            if not raw:
                return None
            if not raw.endswith(b"\n") and not allow_partial:
                self._file.seek(start)
                return None
        except OSError as e:
            raise FileAccessError(f"Cannot read {self.path}: {e}", path=str(self.path)) from e

        self.line_number += 1

        if start == 0 and raw.startswith(codecs.BOM_UTF8):
            raw = raw[len(codecs.BOM_UTF8):]
        raw = raw.rstrip(b"\r\n")

        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning(
                f"Undecodable bytes in {self.path.name} line {self.line_number}: {e}",
                extra={"journal": self.path.name, "line_number": self.line_number},
            )
            return raw.decode("utf-8", errors="replace")

    def close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            finally:
                self._file = None
                logger.debug(f"Closed journal {self.path.name}")

    def __enter__(self) -> "JournalReader":
        if self._file is None:
            self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
