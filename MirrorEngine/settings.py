"""
Sync settings with JSON persistence, plus the run fingerprint.

Settings are stored in the user's app data directory:
  Windows: %APPDATA%/MirrorEngine/settings.json
  macOS:   ~/Library/Application Support/MirrorEngine/settings.json
  Linux:   ~/.config/MirrorEngine/settings.json

The same directory holds the cancel sentinel (see cancellation.py).

A RunFingerprint captures the settings that shape every target file. It is
stored with each run's status; when the next run's fingerprint differs in
any field, the target is rebuilt from scratch.
"""

import json
import logging
import os
import shutil
import sys
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import SettingsError

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"

# Extension written for every converted file
CONVERT_TARGET_EXTENSION = "mp3"


def default_app_dir() -> str:
    """Get the platform-appropriate app data directory."""
    if sys.platform == "win32":
        base = os.environ.get("APPDATA", os.path.expanduser("~"))
    elif sys.platform == "darwin":
        base = os.path.join(os.path.expanduser("~"), "Library", "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", os.path.join(os.path.expanduser("~"), ".config"))
    return os.path.join(base, "MirrorEngine")


class FileAction(Enum):
    """What to do with a source audio file of a given type."""

    CONVERT = "convert"  # Transcode with ffmpeg to CONVERT_TARGET_EXTENSION
    COPY = "copy"  # Copy bytes as-is, keeping the extension


@dataclass(frozen=True)
class FileTypeAction:
    file_type: str  # Extension without dot, lowercase: "flac"
    action: FileAction

    def to_dict(self) -> dict:
        return {"file_type": self.file_type, "action": self.action.value}

    @classmethod
    def from_dict(cls, data: dict) -> "FileTypeAction":
        return cls(
            file_type=str(data["file_type"]).lower().lstrip("."),
            action=FileAction(data["action"]),
        )


def _default_actions() -> list[FileTypeAction]:
    return [
        FileTypeAction("flac", FileAction.CONVERT),
        FileTypeAction("mp3", FileAction.COPY),
    ]


@dataclass
class Settings:
    """Everything a sync run needs to know."""

    # ── Folders ─────────────────────────────────────────────────────────────
    source_folder: str = ""
    target_folder: str = ""

    # ── Transcoding ─────────────────────────────────────────────────────────
    # ffmpeg audio bitrate for converted files, e.g. "192k", "256k", "320k".
    bit_rate: str = "256k"

    # Path to the ffmpeg binary (empty = search PATH and common locations).
    ffmpeg_path: str = ""

    # Number of simultaneous copy/transcode workers.
    # 0 = auto (CPU count, capped at 8), 1 = sequential.
    concurrency: int = 0

    # FFmpeg timeout in seconds per file.
    transcode_timeout: int = 300

    # Per file type: convert or copy. Types not listed are ignored by the scanner.
    file_type_actions: list[FileTypeAction] = field(default_factory=_default_actions)

    # ── Paths ───────────────────────────────────────────────────────────────
    # App data directory (empty = platform default). Holds the cancel sentinel.
    app_dir: str = ""

    # ── Derived ─────────────────────────────────────────────────────────────

    @property
    def resolved_app_dir(self) -> Path:
        return Path(self.app_dir or default_app_dir())

    @property
    def workers(self) -> int:
        if self.concurrency <= 0:
            return min(os.cpu_count() or 4, 8)
        return self.concurrency

    @property
    def audio_extensions(self) -> set[str]:
        """Dotted, lowercase extensions the scanner should pick up."""
        return {f".{a.file_type}" for a in self.file_type_actions}

    def action_for(self, path: str | Path) -> Optional[FileAction]:
        ext = Path(path).suffix.lower().lstrip(".")
        for a in self.file_type_actions:
            if a.file_type == ext:
                return a.action
        return None

    def target_extension(self, path: str | Path) -> str:
        """Extension (no dot) the target copy of a source file will have."""
        if self.action_for(path) == FileAction.CONVERT:
            return CONVERT_TARGET_EXTENSION
        return Path(path).suffix.lower().lstrip(".")

    def resolve_ffmpeg(self) -> Optional[str]:
        from .transcoder import find_ffmpeg

        if self.ffmpeg_path:
            if Path(self.ffmpeg_path).exists():
                return self.ffmpeg_path
            return shutil.which(self.ffmpeg_path)
        return find_ffmpeg()

    # ── Validation ──────────────────────────────────────────────────────────

    def validate(self, require_ffmpeg: bool = True) -> None:
        """
        Check everything a run needs before any work starts.

        Raises:
            SettingsError listing every problem found.
        """
        problems: list[str] = []

        if not self.source_folder:
            problems.append("Source folder is not set")
        elif not Path(self.source_folder).is_dir():
            problems.append(f"Source folder does not exist: {self.source_folder}")

        if not self.target_folder:
            problems.append("Target folder is not set")
        elif not Path(self.target_folder).is_dir():
            problems.append(f"Target folder does not exist: {self.target_folder}")

        if self.source_folder and self.target_folder:
            src = Path(self.source_folder).resolve()
            dst = Path(self.target_folder).resolve()
            if src == dst:
                problems.append("Source and target folders must be different")
            elif src in dst.parents or dst in src.parents:
                problems.append("Source and target folders must not contain each other")

        if not self.bit_rate:
            problems.append("Bit rate is not set")

        if self.concurrency < 0:
            problems.append(f"Concurrency must be 0 (auto) or more, got {self.concurrency}")

        if not self.file_type_actions:
            problems.append("No file types are configured")

        needs_ffmpeg = any(a.action == FileAction.CONVERT for a in self.file_type_actions)
        if require_ffmpeg and needs_ffmpeg and self.resolve_ffmpeg() is None:
            if self.ffmpeg_path:
                problems.append(f"ffmpeg not found at {self.ffmpeg_path}")
            else:
                problems.append("ffmpeg not found (set ffmpeg_path or add it to PATH)")

        if problems:
            raise SettingsError(problems)

    # ── Persistence ─────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        data = asdict(self)
        data["file_type_actions"] = [a.to_dict() for a in self.file_type_actions]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        defaults = cls()
        kwargs = {}
        for key in ("source_folder", "target_folder", "bit_rate", "ffmpeg_path", "app_dir"):
            if key in data:
                kwargs[key] = str(data[key])
        for key in ("concurrency", "transcode_timeout"):
            if key in data:
                kwargs[key] = int(data[key])
        if "file_type_actions" in data:
            kwargs["file_type_actions"] = [FileTypeAction.from_dict(a) for a in data["file_type_actions"]]
        else:
            kwargs["file_type_actions"] = defaults.file_type_actions
        return cls(**kwargs)

    def save(self, path: Optional[str | Path] = None) -> Path:
        """Write settings atomically (temp file + rename)."""
        path = Path(path) if path else self.resolved_app_dir / SETTINGS_FILENAME
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except Exception:
            try:
                os.remove(tmp)
            except OSError:
                pass
            raise
        return path


def load_settings(path: Optional[str | Path] = None) -> Settings:
    """Load settings from disk, returning defaults if missing or corrupt."""
    path = Path(path) if path else Path(default_app_dir()) / SETTINGS_FILENAME
    if not path.exists():
        return Settings()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return Settings.from_dict(data)
    except (json.JSONDecodeError, KeyError, ValueError, TypeError, OSError) as e:
        logger.warning(f"Could not read settings from {path}: {e}")
        return Settings()


# ── Run fingerprint ─────────────────────────────────────────────────────────

FINGERPRINT_VERSION = 1


@dataclass(frozen=True)
class RunFingerprint:
    """
    The settings that determine every target file's name and content.

    Compared field by field; any difference means the existing target
    cannot be reused and must be rebuilt.
    """

    version: int
    bit_rate: str
    actions: tuple[tuple[str, str], ...]
    source_folder: str
    target_folder: str

    @classmethod
    def from_settings(cls, settings: Settings) -> "RunFingerprint":
        actions = tuple(sorted((a.file_type, a.action.value) for a in settings.file_type_actions))
        return cls(
            version=FINGERPRINT_VERSION,
            bit_rate=settings.bit_rate,
            actions=actions,
            source_folder=str(Path(settings.source_folder).resolve()),
            target_folder=str(Path(settings.target_folder).resolve()),
        )

    def differences(self, other: Optional["RunFingerprint"]) -> list[str]:
        """Names of fields that differ (all fields when other is None)."""
        names = ["version", "bit_rate", "actions", "source_folder", "target_folder"]
        if other is None:
            return names
        return [n for n in names if getattr(self, n) != getattr(other, n)]

    def matches(self, other: Optional["RunFingerprint"]) -> bool:
        return not self.differences(other)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "bit_rate": self.bit_rate,
            "actions": [list(a) for a in self.actions],
            "source_folder": self.source_folder,
            "target_folder": self.target_folder,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunFingerprint":
        return cls(
            version=int(data.get("version", 0)),
            bit_rate=data.get("bit_rate", ""),
            actions=tuple(tuple(a) for a in data.get("actions", [])),
            source_folder=data.get("source_folder", ""),
            target_folder=data.get("target_folder", ""),
        )
