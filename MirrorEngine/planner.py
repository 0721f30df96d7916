"""
Sync Planner - Decides which target files must exist and which must be written.

Given the content model, the user's selection and the previous run's
fingerprint, the planner computes:

- desired:      every target path that should exist after the run
- to_sync:      desired items that are missing or stale, sorted by target path
- full_rebuild: True when the previous run's fingerprint is missing or differs
                (then every desired item is written from scratch)
- obsolete:     target audio/playlist files on disk that are not desired

Staleness rules for an existing target file:
- source modified after target                      → stale
- target is zero bytes                              → stale
- copied (not converted) and sizes differ           → stale
- playlist that references a track being written,
  or a track whose target file is missing           → stale

Selection rules:
- a selection that was never configured mirrors everything; one whose
  entries were all pruned mirrors nothing
- a selected playlist pulls in all its tracks
- a selected album pulls in all its tracks
- every playlist that references a desired track is desired too
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from .addressing import PLAYLIST_EXTENSION
from .cancellation import CancellationToken
from .model import ContentModel
from .settings import CONVERT_TARGET_EXTENSION, FileAction, RunFingerprint, Settings
from .status import SyncSelection

logger = logging.getLogger(__name__)


# ─── Enums & Data Classes ─────────────────────────────────────────────────────


class ItemKind(Enum):
    TRACK = "track"
    PLAYLIST = "playlist"


class SyncReason(Enum):
    """Why an item is being written."""

    REBUILD = "full rebuild"
    MISSING = "target missing"
    SOURCE_NEWER = "source newer than target"
    EMPTY_TARGET = "target is empty"
    SIZE_MISMATCH = "size differs from source"
    TRACKS_CHANGED = "referenced tracks changed"


@dataclass
class SyncItem:
    """A single file to write."""

    kind: ItemKind
    source_path: str
    target_path: str
    reason: SyncReason
    action: Optional[FileAction] = None  # None for playlists

    @property
    def copy_codec(self) -> bool:
        """True when a convert action would not change the codec (e.g. mp3 → mp3)."""
        return Path(self.source_path).suffix.lower().lstrip(".") == CONVERT_TARGET_EXTENSION

    @property
    def description(self) -> str:
        return f"{Path(self.source_path).name} ({self.reason.value})"


@dataclass
class SyncPlan:
    """Complete sync plan."""

    fingerprint: RunFingerprint
    full_rebuild: bool = False
    rebuild_reasons: list[str] = field(default_factory=list)

    desired: set[str] = field(default_factory=set)
    desired_tracks: set[str] = field(default_factory=set)  # source paths
    desired_playlists: set[str] = field(default_factory=set)  # source paths

    to_sync: list[SyncItem] = field(default_factory=list)
    obsolete: list[str] = field(default_factory=list)

    @property
    def tracks_to_sync(self) -> list[SyncItem]:
        return [i for i in self.to_sync if i.kind == ItemKind.TRACK]

    @property
    def playlists_to_sync(self) -> list[SyncItem]:
        return [i for i in self.to_sync if i.kind == ItemKind.PLAYLIST]

    @property
    def is_empty(self) -> bool:
        return not self.to_sync and not self.obsolete

    @property
    def summary(self) -> str:
        lines = []
        if self.full_rebuild:
            lines.append(f"  Full rebuild: {', '.join(self.rebuild_reasons)}")
        lines.append(f"  {len(self.desired)} target files desired")
        if self.tracks_to_sync:
            lines.append(f"  {len(self.tracks_to_sync)} tracks to write")
        if self.playlists_to_sync:
            lines.append(f"  {len(self.playlists_to_sync)} playlists to write")
        if self.obsolete:
            lines.append(f"  {len(self.obsolete)} obsolete files to delete")
        return "Sync plan:\n" + "\n".join(lines)


def target_file_extensions(model: ContentModel) -> set[str]:
    """Dotted extensions of the files the engine owns in the target."""
    exts = {f".{e}" for e in model.extension_map.values()}
    exts.add(PLAYLIST_EXTENSION)
    return exts


def find_target_files(target_root: str | Path, extensions: set[str]) -> list[str]:
    """All engine-owned files currently in the target, sorted."""
    found = []
    for root, _, files in os.walk(target_root):
        for filename in files:
            if Path(filename).suffix.lower() in extensions:
                found.append(os.path.normpath(os.path.join(root, filename)))
    return sorted(found)


# ─── Planner ──────────────────────────────────────────────────────────────────


class SyncPlanner:
    """
    Computes a SyncPlan.

    Usage:
        planner = SyncPlanner(settings)
        plan = planner.plan(model, selection, previous_fingerprint)
    """

    def __init__(self, settings: Settings, token: Optional[CancellationToken] = None):
        self.settings = settings
        self.token = token or CancellationToken()

    def plan(
        self,
        model: ContentModel,
        selection: SyncSelection,
        previous_fingerprint: Optional[RunFingerprint],
    ) -> SyncPlan:
        fingerprint = RunFingerprint.from_settings(self.settings)
        reasons = fingerprint.differences(previous_fingerprint)
        plan = SyncPlan(
            fingerprint=fingerprint,
            full_rebuild=bool(reasons),
            rebuild_reasons=["no previous run"] if previous_fingerprint is None else reasons,
        )
        if plan.full_rebuild:
            logger.info(f"Full rebuild required: {', '.join(plan.rebuild_reasons)}")

        plan.desired_tracks, plan.desired_playlists = self._resolve_selection(model, selection)
        plan.desired = (
            {model.source_to_target[t] for t in plan.desired_tracks}
            | {model.source_to_target[p] for p in plan.desired_playlists}
        )

        # Tracks first, so playlists can see which of their tracks are changing
        syncing_targets: set[str] = set()
        for source in sorted(plan.desired_tracks, key=lambda s: model.source_to_target[s]):
            self.token.check()
            target = model.source_to_target[source]
            action = self.settings.action_for(source) or FileAction.COPY
            reason = self._track_reason(source, target, action, plan.full_rebuild)
            if reason is not None:
                plan.to_sync.append(SyncItem(ItemKind.TRACK, source, target, reason, action))
                syncing_targets.add(target)

        for source in sorted(plan.desired_playlists, key=lambda s: model.source_to_target[s]):
            self.token.check()
            target = model.source_to_target[source]
            reason = self._playlist_reason(model, source, target, plan, syncing_targets)
            if reason is not None:
                plan.to_sync.append(SyncItem(ItemKind.PLAYLIST, source, target, reason))

        plan.to_sync.sort(key=lambda i: i.target_path)

        if not plan.full_rebuild and Path(model.target_folder).exists():
            on_disk = find_target_files(model.target_folder, target_file_extensions(model))
            plan.obsolete = [p for p in on_disk if p not in plan.desired]

        logger.info(plan.summary)
        return plan

    # ── Selection ───────────────────────────────────────────────────────────

    def _resolve_selection(self, model: ContentModel, selection: SyncSelection) -> tuple[set[str], set[str]]:
        mapped = model.source_to_target

        if selection.mirror_all:
            tracks = {t for t in model.tracks if t in mapped}
            playlists = {p for p in model.playlist_paths if p in mapped}
            return tracks, playlists

        tracks: set[str] = set()
        playlists: set[str] = set()

        for playlist in selection.selected_playlists():
            if playlist in model.playlists:
                playlists.add(playlist)
                tracks.update(e.track_path for e in model.playlists[playlist])

        for album in selection.selected_albums():
            tracks.update(model.albums.get(album, []))

        for track in selection.selected_tracks():
            if track in model.tracks:
                tracks.add(track)

        tracks = {t for t in tracks if t in mapped}

        # Back-propagate: a playlist that lists a desired track is desired
        for playlist, entries in model.playlists.items():
            if any(e.track_path in tracks for e in entries):
                playlists.add(playlist)

        playlists = {p for p in playlists if p in mapped}
        return tracks, playlists

    # ── Staleness ───────────────────────────────────────────────────────────

    @staticmethod
    def _compare(source: str, target: str, sizes_must_match: bool) -> Optional[SyncReason]:
        try:
            target_stat = os.stat(target)
        except FileNotFoundError:
            return SyncReason.MISSING
        source_stat = os.stat(source)

        if target_stat.st_size == 0:
            return SyncReason.EMPTY_TARGET
        if source_stat.st_mtime > target_stat.st_mtime:
            return SyncReason.SOURCE_NEWER
        if sizes_must_match and source_stat.st_size != target_stat.st_size:
            return SyncReason.SIZE_MISMATCH
        return None

    def _track_reason(self, source: str, target: str, action: FileAction, full_rebuild: bool) -> Optional[SyncReason]:
        if full_rebuild:
            return SyncReason.REBUILD
        try:
            return self._compare(source, target, sizes_must_match=(action == FileAction.COPY))
        except OSError as e:
            logger.warning(f"Cannot compare {source} with {target}: {e}")
            return SyncReason.MISSING

    def _playlist_reason(
        self,
        model: ContentModel,
        source: str,
        target: str,
        plan: SyncPlan,
        syncing_targets: set[str],
    ) -> Optional[SyncReason]:
        if plan.full_rebuild:
            return SyncReason.REBUILD
        try:
            reason = self._compare(source, target, sizes_must_match=False)
        except OSError as e:
            logger.warning(f"Cannot compare {source} with {target}: {e}")
            return SyncReason.MISSING
        if reason is not None:
            return reason

        for entry in model.playlists.get(source, []):
            if entry.track_path not in plan.desired_tracks:
                continue
            track_target = model.source_to_target.get(entry.track_path)
            if track_target in syncing_targets or not os.path.exists(track_target):
                return SyncReason.TRACKS_CHANGED
        return None
