"""Progress events delivered to an optional UI sink."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class ProgressEvent:
    """One progress update."""

    primary: str = ""  # Stage text, e.g. "Scanning files"
    secondary: str = ""  # Detail text, e.g. the file being processed
    percent: Optional[float] = None  # 0-100, None if unknown
    completed: bool = False  # True exactly once, at the end of a run


ProgressSink = Callable[[ProgressEvent], None]


class ProgressReporter:
    """
    Forwards events to a sink, if there is one.

    A failing sink is logged and otherwise ignored; progress reporting must
    never stop a sync.
    """

    def __init__(self, sink: Optional[ProgressSink] = None):
        self._sink = sink

    def report(
        self,
        primary: str = "",
        secondary: str = "",
        percent: Optional[float] = None,
        completed: bool = False,
    ) -> None:
        if self._sink is None:
            return
        try:
            self._sink(ProgressEvent(primary, secondary, percent, completed))
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    def stage(self, primary: str) -> None:
        logger.info(primary)
        self.report(primary=primary)

    def step(self, current: int, total: int, secondary: str = "") -> None:
        percent = (current * 100.0 / total) if total else 100.0
        self.report(secondary=secondary, percent=min(percent, 100.0))
