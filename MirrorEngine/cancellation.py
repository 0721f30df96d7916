"""
Cooperative cancellation for sync runs.

A CancellationToken is created once per runner and passed explicitly to
every component that does long work. Components poll it at safe points
(between directories, between files, before submitting a unit) and stop
starting new work once it is set. Work that is already running is allowed
to finish.

Cancellation can come from:
- another thread in the same process:   token.cancel()
- another process (e.g. a second CLI):  CancelSentinel(app_dir).request()

The sentinel is a small file in the app data directory. The token polls
for it, latches the cancelled state when it appears, and deletes it so the
next run starts clean.

Usage:
    token = CancellationToken(sentinel=CancelSentinel(app_dir))
    token.reset()          # at the start of a run
    ...
    token.check()          # raises SyncCancelled once cancelled
"""

import logging
import os
import threading
from pathlib import Path
from typing import Optional

from .errors import SyncCancelled

logger = logging.getLogger(__name__)

SENTINEL_FILENAME = "cancel.request"


class CancelSentinel:
    """Out-of-process cancel request stored as a file in the app directory."""

    def __init__(self, app_dir: str | Path):
        self.path = Path(app_dir) / SENTINEL_FILENAME

    def request(self) -> None:
        """Ask a running sync (in any process) to stop."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()), encoding="utf-8")
        logger.info(f"Cancel requested via {self.path}")

    def is_requested(self) -> bool:
        return self.path.exists()

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove cancel sentinel {self.path}: {e}")


class CancellationToken:
    """Thread-safe, latching cancel flag with an optional file sentinel."""

    def __init__(self, sentinel: Optional[CancelSentinel] = None):
        self._event = threading.Event()
        self._sentinel = sentinel

    def cancel(self) -> None:
        """Set the flag. Stays set until reset()."""
        if not self._event.is_set():
            logger.info("Cancellation requested")
        self._event.set()

    def reset(self) -> None:
        """Clear the flag and any stale sentinel. Called at the start of each run."""
        self._event.clear()
        if self._sentinel is not None:
            self._sentinel.clear()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._sentinel is not None and self._sentinel.is_requested():
            self._sentinel.clear()
            self.cancel()
            return True
        return False

    def check(self) -> None:
        """Raise SyncCancelled if cancellation has been requested."""
        if self.is_cancelled():
            raise SyncCancelled()
