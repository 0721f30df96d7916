"""
Deletion Sweeper - Removes target files that are no longer wanted.

Runs before any new file is written, so a sweep can never remove something
written by the current run.

Two modes:
- full rebuild: empty the whole target folder (settings that shape every
  file changed, so nothing on disk can be trusted)
- incremental:  delete engine-owned files (audio + playlists) that are not in
  the desired set, then remove any folder left empty

Leftover ".partial" files from an interrupted run are always removed, unless
a desired file (a user playlist named "X.partial.m3u") carries the same name.
Bookkeeping files (JSON status, logs) are never touched by an incremental
sweep.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .addressing import is_partial
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """What a sweep deleted."""

    full_rebuild: bool = False
    deleted_files: list[str] = field(default_factory=list)
    deleted_dirs: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        if self.full_rebuild:
            return "Target folder emptied for full rebuild"
        parts = [f"{len(self.deleted_files)} files", f"{len(self.deleted_dirs)} empty folders"]
        if self.errors:
            parts.append(f"{len(self.errors)} errors")
        return "Deleted " + ", ".join(parts)


class DeletionSweeper:
    """
    Usage:
        report = DeletionSweeper(token).sweep(target, plan.desired, plan.full_rebuild, {".mp3", ".m3u"})
    """

    def __init__(self, token: Optional[CancellationToken] = None):
        self.token = token or CancellationToken()

    def sweep(
        self,
        target_root: str | Path,
        desired: set[str],
        full_rebuild: bool,
        owned_extensions: set[str],
    ) -> SweepReport:
        target_root = Path(target_root)
        report = SweepReport(full_rebuild=full_rebuild)

        if full_rebuild:
            self._empty_folder(target_root, report)
        else:
            self._delete_unwanted(target_root, desired, owned_extensions, report)

        logger.info(report.summary)
        return report

    def _empty_folder(self, target_root: Path, report: SweepReport) -> None:
        self.token.check()
        if target_root.exists():
            for child in sorted(target_root.iterdir()):
                try:
                    if child.is_dir() and not child.is_symlink():
                        shutil.rmtree(child)
                        report.deleted_dirs.append(str(child))
                    else:
                        child.unlink()
                        report.deleted_files.append(str(child))
                except OSError as e:
                    report.errors.append(f"Failed to delete {child}: {e}")
                    logger.error(f"Failed to delete {child}: {e}")
        target_root.mkdir(parents=True, exist_ok=True)

    def _delete_unwanted(
        self,
        target_root: Path,
        desired: set[str],
        owned_extensions: set[str],
        report: SweepReport,
    ) -> None:
        if not target_root.exists():
            return

        desired_norm = {os.path.normpath(p) for p in desired}
        owned = {e.lower() for e in owned_extensions}

        for root, _, files in os.walk(target_root):
            self.token.check()
            for filename in sorted(files):
                path = os.path.normpath(os.path.join(root, filename))
                ext = Path(filename).suffix.lower()
                if path in desired_norm:
                    continue
                if is_partial(filename) or ext in owned:
                    self._delete_file(Path(path), target_root, report)

    def _delete_file(self, path: Path, target_root: Path, report: SweepReport) -> None:
        try:
            path.unlink()
            report.deleted_files.append(str(path))
            logger.debug(f"Deleted {path}")
        except OSError as e:
            report.errors.append(f"Failed to delete {path}: {e}")
            logger.error(f"Failed to delete {path}: {e}")
            return

        parent = path.parent
        if parent == target_root:
            return
        try:
            if not any(parent.iterdir()):
                parent.rmdir()
                report.deleted_dirs.append(str(parent))
                logger.debug(f"Removed empty folder {parent}")
        except OSError as e:
            report.errors.append(f"Failed to remove folder {parent}: {e}")
            logger.error(f"Failed to remove folder {parent}: {e}")
