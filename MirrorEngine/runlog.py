"""
Run log - A human-readable report written to <target>/sync-log.txt.

A logging.FileHandler is attached to the "MirrorEngine.runlog" logger for
the duration of a run. Everything written through RunLog lands in the file
(and, through propagation, in whatever console logging the caller set up).

Usage:
    with RunLog(target_root) as run_log:
        run_log.write("Sync started")
        run_log.section("Failures", failed_paths)
"""

import logging
from pathlib import Path
from typing import Iterable

RUN_LOG_FILENAME = "sync-log.txt"

_LOGGER_NAME = "MirrorEngine.runlog"


class RunLog:
    def __init__(self, target_root: str | Path):
        self.path = Path(target_root) / RUN_LOG_FILENAME
        self._logger = logging.getLogger(_LOGGER_NAME)
        self._handler: logging.FileHandler | None = None

    def __enter__(self) -> "RunLog":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.path, mode="w", encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        handler.setLevel(logging.INFO)
        self._logger.addHandler(handler)
        self._logger.setLevel(logging.INFO)
        self._handler = handler

    def close(self) -> None:
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None

    def write(self, message: str) -> None:
        self._logger.info(message)

    def error(self, message: str) -> None:
        self._logger.error(message)

    def section(self, header: str, lines: Iterable[str]) -> None:
        lines = list(lines)
        self._logger.info(f"{header} ({len(lines)})")
        for line in lines:
            self._logger.info(f"  {line}")
