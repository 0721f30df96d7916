"""
Library Scanner - Walks the source folder for audio files and playlists.

Audio files are recognized by extension (the file types in the settings'
action table). Playlists are ".m3u" files. Everything else is ignored.

Tag reading is the slow part of a scan, so metadata from the previous run
is reused for any file whose modification time has not changed.

Usage:
    scanner = LibraryScanner("D:/Music", MutagenTagIO(), {".flac", ".mp3"})
    result = scanner.scan(cached_metadata=previous.tracks)
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from .addressing import PLAYLIST_EXTENSION
from .cancellation import CancellationToken
from .playlist import normalize_path
from .progress import ProgressReporter
from .tags import TagIO, TrackMetadata

logger = logging.getLogger(__name__)

DEFAULT_AUDIO_EXTENSIONS = {".flac", ".mp3"}


@dataclass
class ScanResult:
    """Everything found under the source folder."""

    audio_paths: list[str] = field(default_factory=list)
    playlist_paths: list[str] = field(default_factory=list)
    metadata_by_path: dict[str, TrackMetadata] = field(default_factory=dict)

    # Counters for logging
    cache_hits: int = 0
    tags_read: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)


class LibraryScanner:
    """Scanner for the source library."""

    def __init__(
        self,
        root_path: str | Path,
        tag_io: TagIO,
        audio_extensions: Optional[set[str]] = None,
        token: Optional[CancellationToken] = None,
        progress: Optional[ProgressReporter] = None,
    ):
        self.root_path = Path(root_path)
        self.tag_io = tag_io
        self.audio_extensions = {e.lower() for e in (audio_extensions or DEFAULT_AUDIO_EXTENSIONS)}
        self.token = token or CancellationToken()
        self.progress = progress or ProgressReporter()

    def _walk(self):
        """os.walk in sorted order so scans are deterministic."""
        for root, dirs, files in os.walk(self.root_path):
            self.token.check()
            dirs.sort()
            yield root, sorted(files)

    def count_files(self) -> int:
        """Count audio and playlist files (for progress totals)."""
        count = 0
        for _, files in self._walk():
            for filename in files:
                ext = Path(filename).suffix.lower()
                if ext in self.audio_extensions or ext == PLAYLIST_EXTENSION:
                    count += 1
        return count

    def scan(self, cached_metadata: Optional[dict[str, TrackMetadata]] = None) -> ScanResult:
        """
        Scan the source folder.

        Args:
            cached_metadata: Metadata from the previous run, keyed by source
                path. Entries whose mtime matches the file are reused as-is.

        Raises:
            SyncCancelled if the token is cancelled mid-scan.
        """
        cached_metadata = cached_metadata or {}
        result = ScanResult()

        for root, files in self._walk():
            self.progress.report(secondary=f"Scanning {root}")
            for filename in files:
                self.token.check()
                ext = Path(filename).suffix.lower()
                file_path = normalize_path(os.path.join(root, filename))

                if ext == PLAYLIST_EXTENSION:
                    result.playlist_paths.append(file_path)
                elif ext in self.audio_extensions:
                    result.audio_paths.append(file_path)
                    metadata = self._read_metadata(file_path, cached_metadata.get(file_path), result)
                    if metadata is not None:
                        result.metadata_by_path[file_path] = metadata

        logger.info(
            f"Scanned {self.root_path}: {len(result.audio_paths)} audio files, "
            f"{len(result.playlist_paths)} playlists "
            f"({result.cache_hits} cached, {result.tags_read} read, {len(result.failures)} failed)"
        )
        return result

    def _read_metadata(
        self,
        file_path: str,
        cached: Optional[TrackMetadata],
        result: ScanResult,
    ) -> Optional[TrackMetadata]:
        try:
            mtime = os.stat(file_path).st_mtime
        except OSError as e:
            logger.warning(f"Cannot stat {file_path}: {e}")
            result.failures.append((file_path, str(e)))
            return None

        if cached is not None and cached.mtime == mtime:
            result.cache_hits += 1
            return cached

        try:
            metadata = self.tag_io.read_tags(file_path)
        except Exception as e:
            logger.warning(f"Failed to read tags from {file_path}: {e}")
            result.failures.append((file_path, str(e)))
            return None

        result.tags_read += 1
        logger.debug(f"Read tags: {file_path}")
        return replace(metadata, mtime=mtime)
