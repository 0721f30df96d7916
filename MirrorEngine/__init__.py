"""
MirrorEngine - Mirror a FLAC/MP3 library into a content-addressed target folder

Core components:
- LibraryScanner: Walks the source folder, reads (or reuses cached) tags
- ContentModel: Tracks, playlists, albums and the target ↔ source mapping
- SyncPlanner: Decides what should exist in the target and what is stale
- DeletionSweeper: Removes obsolete target files before anything is written
- TranscodeOrchestrator: Copies/converts tracks on a bounded worker pool
- Audits: Post-run consistency checks written to the run log
- SyncRunner: Drives a complete run

Support:
- address(): Content-addressed names for target folders and files
- CancellationToken: Cooperative cancellation (in-process or via sentinel file)
- Settings / RunFingerprint: Configuration and run-to-run invalidation
"""

from .addressing import address, track_target_path, playlist_target_path, playlist_line
from .cancellation import CancellationToken, CancelSentinel
from .errors import MirrorError, SettingsError, SyncCancelled, MetadataError
from .settings import Settings, FileAction, FileTypeAction, RunFingerprint, load_settings
from .tags import TrackMetadata, MutagenTagIO, EditableField
from .progress import ProgressEvent, ProgressReporter
from .library import LibraryScanner, ScanResult
from .model import ContentModel, PlaylistEntry, MetadataStore, build_content_model
from .status import SyncSelection, SelectionStore, RunStatus, RunStatusStore
from .planner import SyncPlanner, SyncPlan, SyncItem, ItemKind, SyncReason
from .sweeper import DeletionSweeper, SweepReport
from .transcoder import (
    TranscodeOrchestrator,
    SubprocessRunner,
    ProcessResult,
    UnitResult,
    build_command,
    find_ffmpeg,
    is_ffmpeg_available,
)
from .audits import AuditResult, run_audits
from .sync import SyncRunner, SyncResult

__all__ = [
    # Addressing
    "address",
    "track_target_path",
    "playlist_target_path",
    "playlist_line",
    # Cancellation
    "CancellationToken",
    "CancelSentinel",
    # Errors
    "MirrorError",
    "SettingsError",
    "SyncCancelled",
    "MetadataError",
    # Settings
    "Settings",
    "FileAction",
    "FileTypeAction",
    "RunFingerprint",
    "load_settings",
    # Tags
    "TrackMetadata",
    "MutagenTagIO",
    "EditableField",
    # Progress
    "ProgressEvent",
    "ProgressReporter",
    # Scanning & model
    "LibraryScanner",
    "ScanResult",
    "ContentModel",
    "PlaylistEntry",
    "MetadataStore",
    "build_content_model",
    # Status files
    "SyncSelection",
    "SelectionStore",
    "RunStatus",
    "RunStatusStore",
    # Planning & sweeping
    "SyncPlanner",
    "SyncPlan",
    "SyncItem",
    "ItemKind",
    "SyncReason",
    "DeletionSweeper",
    "SweepReport",
    # Transcoding
    "TranscodeOrchestrator",
    "SubprocessRunner",
    "ProcessResult",
    "UnitResult",
    "build_command",
    "find_ffmpeg",
    "is_ffmpeg_available",
    # Audits
    "AuditResult",
    "run_audits",
    # Runner
    "SyncRunner",
    "SyncResult",
]
