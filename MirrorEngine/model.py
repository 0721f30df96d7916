"""
Content Model - The in-memory picture of the source library.

Built from a scan, it holds:
- tracks:     source path → TrackMetadata
- playlists:  source path → ordered entries (track path, position from 1)
- albums:     album name → track paths (ordered by disc, track, path)
- the target mapping: target path ↔ source path for every track and playlist

The model is persisted to <target>/metadata.json after every run so the next
scan can reuse tag data, and so editing operations (deleting a track,
renaming a playlist, editing a tag) can work without rescanning.

Usage:
    model = build_content_model(scan_result, settings)
    MetadataStore(settings.target_folder).save(model)
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .addressing import playlist_line, playlist_target_path, track_target_path
from .errors import MetadataError
from .library import ScanResult
from .playlist import create_playlist, normalize_path, read_playlist, rewrite_playlist
from .settings import Settings
from .tags import EditableField, TagIO, TrackMetadata

logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"
METADATA_VERSION = 1


@dataclass
class PlaylistEntry:
    """One track reference in a playlist."""

    track_path: str
    position: int  # 1-based

    def to_dict(self) -> dict:
        return {"track_path": self.track_path, "position": self.position}

    @classmethod
    def from_dict(cls, data: dict) -> "PlaylistEntry":
        return cls(track_path=data["track_path"], position=int(data["position"]))


def _entries_from_paths(track_paths: list[str]) -> list[PlaylistEntry]:
    return [PlaylistEntry(p, i) for i, p in enumerate(track_paths, start=1)]


def load_playlist_entries(playlist_path: str) -> list[PlaylistEntry]:
    """Read a playlist from disk, keeping only tracks that exist."""
    existing = [p for p in read_playlist(playlist_path) if os.path.exists(p)]
    return _entries_from_paths(existing)


@dataclass
class ContentModel:
    """Tracks, playlists, albums and the target mapping for one library."""

    source_folder: str = ""
    target_folder: str = ""

    # Source extension → target extension, e.g. {"flac": "mp3", "mp3": "mp3"}
    extension_map: dict[str, str] = field(default_factory=dict)

    tracks: dict[str, TrackMetadata] = field(default_factory=dict)
    playlist_paths: list[str] = field(default_factory=list)
    playlists: dict[str, list[PlaylistEntry]] = field(default_factory=dict)

    # Derived by reindex()
    albums: dict[str, list[str]] = field(default_factory=dict)
    target_to_source: dict[str, str] = field(default_factory=dict)
    source_to_target: dict[str, str] = field(default_factory=dict)

    # ── Derived data ────────────────────────────────────────────────────────

    def target_extension(self, source_path: str) -> str:
        ext = Path(source_path).suffix.lower().lstrip(".")
        return self.extension_map.get(ext, ext)

    def track_target(self, source_path: str) -> str:
        metadata = self.tracks[source_path]
        return str(track_target_path(
            self.target_folder, metadata.album, source_path, self.target_extension(source_path)
        ))

    def playlist_target(self, source_path: str) -> str:
        return str(playlist_target_path(self.target_folder, source_path))

    def playlist_line_for(self, track_path: str) -> Optional[str]:
        """The target playlist line for a track, or None if it has no metadata."""
        metadata = self.tracks.get(track_path)
        if metadata is None:
            return None
        return playlist_line(metadata.album, track_path, self.target_extension(track_path))

    def reindex(self) -> None:
        """Recompute albums and the target mapping from tracks and playlists."""
        albums: dict[str, list[str]] = {}
        for path, metadata in self.tracks.items():
            albums.setdefault(metadata.album, []).append(path)
        for album, paths in albums.items():
            paths.sort(key=lambda p: (
                self.tracks[p].disc_number or 0,
                self.tracks[p].track_number or 0,
                p,
            ))
        self.albums = dict(sorted(albums.items()))

        target_to_source: dict[str, str] = {}
        candidates = [(self.track_target(p), p) for p in sorted(self.tracks)]
        candidates += [(self.playlist_target(p), p) for p in sorted(self.playlist_paths)]
        for target, path in candidates:
            if target in target_to_source:
                logger.warning(
                    f"Target name collision: {path} and {target_to_source[target]} "
                    f"both map to {target}; keeping the first"
                )
                continue
            target_to_source[target] = path

        self.target_to_source = target_to_source
        self.source_to_target = {s: t for t, s in target_to_source.items()}

    def playlists_containing(self, track_path: str) -> list[str]:
        return [p for p, entries in self.playlists.items()
                if any(e.track_path == track_path for e in entries)]

    @property
    def track_count(self) -> int:
        return len(self.tracks)

    # ── Editing ─────────────────────────────────────────────────────────────

    def delete_playlist(self, playlist_path: str, delete_file: bool = False) -> None:
        """Remove a playlist from the model (and optionally from disk)."""
        logger.info(f"Deleting playlist {playlist_path}")
        if delete_file:
            try:
                os.remove(playlist_path)
            except OSError as e:
                logger.error(f"Could not delete {playlist_path}: {e}")
        self.playlist_paths = [p for p in self.playlist_paths if p != playlist_path]
        self.playlists.pop(playlist_path, None)
        self.reindex()

    def rename_playlist(self, old_path: str, new_path: str) -> None:
        """Move a playlist's entries to a new path (the file itself is renamed by the caller)."""
        logger.info(f"Renaming playlist {old_path} → {new_path}")
        new_path = normalize_path(new_path)
        self.playlist_paths = [p for p in self.playlist_paths if p != old_path]
        if new_path not in self.playlist_paths:
            self.playlist_paths.append(new_path)
        entries = self.playlists.pop(old_path, None)
        if entries is not None:
            self.playlists[new_path] = entries
        self.reindex()

    def upsert_playlist(self, playlist_path: str) -> None:
        """(Re)load a playlist from disk into the model."""
        playlist_path = normalize_path(playlist_path)
        logger.info(f"Upserting playlist {playlist_path}")
        if playlist_path not in self.playlist_paths:
            self.playlist_paths.append(playlist_path)
        self.playlists[playlist_path] = load_playlist_entries(playlist_path)
        self.reindex()

    def create_playlist(self, name: str, track_paths: list[str]) -> str:
        """Write a new source playlist of the given tracks and add it to the model."""
        path = create_playlist(self.source_folder, name, [normalize_path(t) for t in track_paths])
        self.upsert_playlist(path)
        return path

    def delete_track_references(self, track_path: str) -> list[str]:
        """
        Remove a track from every playlist, renumbering positions.

        Each playlist that changed is rewritten on disk.

        Returns:
            Paths of the playlists that were rewritten.
        """
        changed = []
        for playlist_path, entries in self.playlists.items():
            kept = [e.track_path for e in entries if e.track_path != track_path]
            if len(kept) != len(entries):
                self.playlists[playlist_path] = _entries_from_paths(kept)
                rewrite_playlist(kept, playlist_path)
                changed.append(playlist_path)
        return changed

    def delete_track(self, track_path: str, delete_file: bool = False) -> list[str]:
        """
        Remove a track from the model and from every playlist that lists it.

        Returns:
            Paths of the playlists that were rewritten.
        """
        logger.info(f"Deleting track {track_path}")
        if delete_file:
            try:
                os.remove(track_path)
            except OSError as e:
                logger.error(f"Could not delete {track_path}: {e}")
        self.tracks.pop(track_path, None)
        changed = self.delete_track_references(track_path)
        self.reindex()
        return changed

    def apply_field_edit(self, track_path: str, field_name: EditableField, value: str, tag_io: TagIO) -> TrackMetadata:
        """Write an edited tag to the file and update the model to match."""
        metadata = self.tracks.get(track_path)
        if metadata is None:
            raise KeyError(f"Unknown track: {track_path}")

        tag_io.write_tags(track_path, field_name.tag_updates(value))
        updated = field_name.apply(metadata, value)
        try:
            updated.mtime = os.stat(track_path).st_mtime
        except OSError as e:
            logger.warning(f"Cannot stat {track_path} after tag edit: {e}")
        self.tracks[track_path] = updated
        self.reindex()
        logger.info(f"Set {field_name.value} of {track_path} to {value!r}")
        return updated

    # ── Serialization ───────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "version": METADATA_VERSION,
            "source_folder": self.source_folder,
            "target_folder": self.target_folder,
            "extension_map": self.extension_map,
            "tracks": {p: m.to_dict() for p, m in self.tracks.items()},
            "playlist_paths": self.playlist_paths,
            "playlists": {p: [e.to_dict() for e in entries] for p, entries in self.playlists.items()},
            "albums": self.albums,
            "target_to_source": self.target_to_source,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContentModel":
        version = data.get("version")
        if version != METADATA_VERSION:
            raise MetadataError(f"Unsupported metadata version: {version}")
        model = cls(
            source_folder=data.get("source_folder", ""),
            target_folder=data.get("target_folder", ""),
            extension_map=dict(data.get("extension_map", {})),
            tracks={p: TrackMetadata.from_dict(m) for p, m in data.get("tracks", {}).items()},
            playlist_paths=list(data.get("playlist_paths", [])),
            playlists={
                p: [PlaylistEntry.from_dict(e) for e in entries]
                for p, entries in data.get("playlists", {}).items()
            },
        )
        model.reindex()
        return model


def build_content_model(scan: ScanResult, settings: Settings) -> ContentModel:
    """Build the model for a fresh scan."""
    extension_map = {
        a.file_type: settings.target_extension(f"x.{a.file_type}")
        for a in settings.file_type_actions
    }
    model = ContentModel(
        source_folder=normalize_path(settings.source_folder),
        target_folder=normalize_path(settings.target_folder),
        extension_map=extension_map,
        tracks=dict(scan.metadata_by_path),
        playlist_paths=list(scan.playlist_paths),
        playlists={p: load_playlist_entries(p) for p in scan.playlist_paths},
    )
    model.reindex()
    logger.info(
        f"Content model: {model.track_count} tracks, {len(model.albums)} albums, "
        f"{len(model.playlist_paths)} playlists"
    )
    return model


class MetadataStore:
    """
    Reads and writes <target>/metadata.json.

    Usage:
        store = MetadataStore("/mnt/player")
        previous = store.load()   # None if missing or unreadable
        store.save(model)
    """

    def __init__(self, target_root: str | Path):
        self.path = Path(target_root) / METADATA_FILENAME

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[ContentModel]:
        if not self.path.exists():
            logger.info(f"No metadata file at {self.path}")
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            model = ContentModel.from_dict(data)
            logger.info(f"Loaded metadata with {model.track_count} tracks")
            return model

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in metadata file: {e}")
            backup = self.path.with_suffix(".json.bak")
            self.path.replace(backup)
            logger.warning(f"Backed up corrupt metadata to {backup}")
            return None

        except (MetadataError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring metadata file {self.path}: {e}")
            return None

    def save(self, model: ContentModel) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix(".json.tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(model.to_dict(), f, indent=2, ensure_ascii=False)
        temp_file.replace(self.path)
        logger.debug(f"Saved metadata to {self.path}")
