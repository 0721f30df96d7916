"""
Sync status files stored in the target folder.

- syncstatus.json:        which playlists, albums and tracks to mirror
- transcodingstatus.json: what the last run did (fingerprint, per-file
                          ledger, errors) so the next run can decide whether
                          the existing target can be reused

A selection that has never been configured means "mirror everything". Once
configured it stays so, even after every entry has been pruned.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TYPE_CHECKING

from .settings import RunFingerprint

if TYPE_CHECKING:
    from .model import ContentModel

logger = logging.getLogger(__name__)

SELECTION_FILENAME = "syncstatus.json"
RUN_STATUS_FILENAME = "transcodingstatus.json"


def _write_json_atomic(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_suffix(".json.tmp")
    with open(temp_file, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    temp_file.replace(path)


def _read_json(path: Path) -> Optional[dict]:
    """Read a JSON file; a corrupt file is backed up and treated as missing."""
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in {path}: {e}")
        backup = path.with_suffix(".json.bak")
        path.replace(backup)
        logger.warning(f"Backed up corrupt file to {backup}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path}: expected an object")
        return None
    return data


# ── Selection ───────────────────────────────────────────────────────────────


@dataclass
class SyncSelection:
    """
    Per-item sync flags keyed by playlist path, album name and track path.

    While `configured` is False the whole library is mirrored. It turns True
    as soon as anything is selected, and a configured selection whose
    entries have all been pruned mirrors nothing.
    """

    playlists: dict[str, bool] = field(default_factory=dict)
    albums: dict[str, bool] = field(default_factory=dict)
    tracks: dict[str, bool] = field(default_factory=dict)
    configured: bool = False

    def __post_init__(self):
        if self.playlists or self.albums or self.tracks:
            self.configured = True

    @property
    def mirror_all(self) -> bool:
        """True if nothing has ever been configured (mirror everything)."""
        return not self.configured

    def selected_playlists(self) -> list[str]:
        return [p for p, on in self.playlists.items() if on]

    def selected_albums(self) -> list[str]:
        return [a for a, on in self.albums.items() if on]

    def selected_tracks(self) -> list[str]:
        return [t for t, on in self.tracks.items() if on]

    def select_all(self, model: "ContentModel") -> None:
        """Flag every playlist and album in the model."""
        for path in model.playlist_paths:
            self.playlists[path] = True
        for album in model.albums:
            self.albums[album] = True
        self.configured = True

    def delete_obsolete(self, model: "ContentModel") -> int:
        """
        Drop entries for playlists/tracks whose source is gone and albums no
        longer in the model. The selection stays configured even if this
        empties it.

        Returns:
            Number of entries removed.
        """
        before = len(self.playlists) + len(self.albums) + len(self.tracks)
        self.playlists = {p: v for p, v in self.playlists.items() if os.path.exists(p)}
        self.tracks = {t: v for t, v in self.tracks.items() if os.path.exists(t)}
        self.albums = {a: v for a, v in self.albums.items() if a in model.albums}
        removed = before - (len(self.playlists) + len(self.albums) + len(self.tracks))
        if removed:
            logger.info(f"Removed {removed} obsolete selection entries")
        return removed

    def to_dict(self) -> dict:
        return {
            "configured": self.configured,
            "playlists": self.playlists,
            "albums": self.albums,
            "tracks": self.tracks,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncSelection":
        return cls(
            playlists={k: bool(v) for k, v in data.get("playlists", {}).items()},
            albums={k: bool(v) for k, v in data.get("albums", {}).items()},
            tracks={k: bool(v) for k, v in data.get("tracks", {}).items()},
            configured=bool(data.get("configured", False)),
        )


class SelectionStore:
    """Reads and writes <target>/syncstatus.json."""

    def __init__(self, target_root: str | Path):
        self.path = Path(target_root) / SELECTION_FILENAME

    def load(self) -> SyncSelection:
        data = _read_json(self.path)
        if data is None:
            return SyncSelection()
        return SyncSelection.from_dict(data)

    def save(self, selection: SyncSelection) -> None:
        _write_json_atomic(self.path, selection.to_dict())


# ── Run status ──────────────────────────────────────────────────────────────


@dataclass
class LedgerEntry:
    """Outcome of one target file in the last run."""

    source_path: str
    success: bool
    bytes: int = 0
    error: str = ""

    def to_dict(self) -> dict:
        return {"source_path": self.source_path, "success": self.success,
                "bytes": self.bytes, "error": self.error}

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerEntry":
        return cls(
            source_path=data.get("source_path", ""),
            success=bool(data.get("success", False)),
            bytes=int(data.get("bytes", 0)),
            error=data.get("error", ""),
        )


@dataclass
class RunStatus:
    """What a sync run did."""

    fingerprint: Optional[RunFingerprint] = None
    ledger: dict[str, LedgerEntry] = field(default_factory=dict)  # target path → entry
    errors: list[str] = field(default_factory=list)
    completed: bool = False
    cancelled: bool = False
    started: str = ""
    finished: str = ""

    def __post_init__(self):
        if not self.started:
            self.started = datetime.now(timezone.utc).isoformat()

    @property
    def successes(self) -> list[str]:
        return sorted(t for t, e in self.ledger.items() if e.success)

    @property
    def failures(self) -> list[str]:
        return sorted(t for t, e in self.ledger.items() if not e.success)

    def finish(self, cancelled: bool = False) -> None:
        self.completed = not cancelled
        self.cancelled = cancelled
        self.finished = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint.to_dict() if self.fingerprint else None,
            "ledger": {t: e.to_dict() for t, e in self.ledger.items()},
            "errors": self.errors,
            "completed": self.completed,
            "cancelled": self.cancelled,
            "started": self.started,
            "finished": self.finished,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunStatus":
        fp = data.get("fingerprint")
        return cls(
            fingerprint=RunFingerprint.from_dict(fp) if fp else None,
            ledger={t: LedgerEntry.from_dict(e) for t, e in data.get("ledger", {}).items()},
            errors=list(data.get("errors", [])),
            completed=bool(data.get("completed", False)),
            cancelled=bool(data.get("cancelled", False)),
            started=data.get("started", ""),
            finished=data.get("finished", ""),
        )


class RunStatusStore:
    """Reads and writes <target>/transcodingstatus.json."""

    def __init__(self, target_root: str | Path):
        self.path = Path(target_root) / RUN_STATUS_FILENAME

    def load(self) -> Optional[RunStatus]:
        data = _read_json(self.path)
        if data is None:
            return None
        try:
            return RunStatus.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring run status {self.path}: {e}")
            return None

    def save(self, status: RunStatus) -> None:
        _write_json_atomic(self.path, status.to_dict())
        logger.debug(f"Saved run status to {self.path}")
