"""
Cooperative cancellation shared by the pipeline workers.
"""

import threading
from typing import Optional


class CancellationToken:
    """
    Stop signal observed by the tail reader and backfill scanner.

    Workers poll ``cancelled`` at their yield points and use ``wait`` for
    idle periods, so a stop request interrupts an idle sleep immediately.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def reset(self) -> None:
        """Clear a previous cancellation so the token can be reused."""
        self._event.clear()

    @property
    def cancelled(self) -> bool:
        """True once cancellation has been requested."""
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Sleep for up to ``timeout`` seconds, waking early on cancellation.

        Returns:
            True if cancellation was requested
        """
        return self._event.wait(timeout)
