"""
Locates journal files in the journal directory.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from ..core.exceptions import FileAccessError
from ..core.models import JournalFile


logger = logging.getLogger(__name__)


DEFAULT_PATTERN = "Journal.*.log"


class FileLocator:
    """
    Enumerates journal files matching a name pattern.

    Holds no state between calls: every query re-reads the directory, so
    the tail reader and backfill scanner can share one instance.
    """

    def __init__(self, directory: Union[str, Path], pattern: str = DEFAULT_PATTERN):
        self.directory = Path(directory)
        self.pattern = pattern

    def list_files(self) -> List[JournalFile]:
        """
        List every matching file, oldest-created first.

        Ties on creation time are broken by name.

        Raises:
            FileAccessError: If the directory cannot be listed
        """
        files = self._scan()
        files.sort(key=lambda f: (f.created_at, f.name))
        return files

    def locate_latest(
        self,
        current: Optional[str] = None,
        previous: Optional[str] = None,
    ) -> Optional[JournalFile]:
        """
        Find the most recently written journal file.

        Args:
            current: Name of the file currently being tailed
            previous: Name of the file tailed before it

        Returns:
            The newest file by last-write time (ties broken by name), or
            None if nothing matches or the newest file is ``current`` or
            ``previous``

        Raises:
            FileAccessError: If the directory cannot be listed
        """
        files = self._scan()
        if not files:
            return None

        latest = max(files, key=lambda f: (f.modified_at, f.name))
        if latest.name in (current, previous):
            return None
        return latest

    def _scan(self) -> List[JournalFile]:
        if not self.directory.is_dir():
            raise FileAccessError(
                f"Journal directory not found: {self.directory}",
                path=str(self.directory),
            )

        try:
            paths = [p for p in self.directory.glob(self.pattern) if p.is_file()]
        except ValueError as e:
            raise FileAccessError(
                f"Invalid journal pattern {self.pattern!r}: {e}",
                path=str(self.directory),
            ) from e
        except OSError as e:
            raise FileAccessError(
                f"Cannot list {self.directory}: {e}",
                path=str(self.directory),
            ) from e

        files = []
        for path in paths:
            try:
                st = path.stat()
            except FileNotFoundError:
                # Removed between listing and stat
                continue
            except OSError as e:
                raise FileAccessError(f"Cannot stat {path}: {e}", path=str(path)) from e

            files.append(JournalFile(
                name=path.name,
                path=path,
                created_at=_to_datetime(getattr(st, "st_birthtime", st.st_ctime)),
                modified_at=_to_datetime(st.st_mtime),
            ))

        return files


def _to_datetime(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)
