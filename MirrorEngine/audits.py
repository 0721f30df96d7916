"""
Audits - Read-only consistency checks run after a sync.

Every check returns an AuditResult: a header and a list of human-readable
lines (empty = pass). Findings are written to the run log for a human to
review; they never fail a sync and nothing is changed on disk.

Checks:
- source playlist tracks that do not exist
- target playlist lines that do not resolve to a file
- tracks that are not in any playlist
- source media with no file in the target folder
- playlists whose order differs from (disc, track) tag order
- playlists whose tracks do not share exactly one genre
- albums with gaps in disc or track numbering
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from .model import ContentModel
from .playlist import read_playlist

logger = logging.getLogger(__name__)


@dataclass
class AuditResult:
    header: str
    lines: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.lines


def source_playlist_tracks_missing(model: ContentModel) -> AuditResult:
    """Tracks listed in a source playlist file that do not exist on disk."""
    lines = []
    for playlist_path in model.playlist_paths:
        for track_path in read_playlist(playlist_path):
            if not os.path.exists(track_path):
                lines.append(f'Playlist "{playlist_path}": Track "{track_path}" does not exist')
    return AuditResult("Source Playlist Tracks Do Not Exist", lines)


def target_playlist_tracks_missing(model: ContentModel) -> AuditResult:
    """Lines of written target playlists that point at nothing."""
    lines = []
    for playlist_path in model.playlist_paths:
        target = model.source_to_target.get(playlist_path)
        if target is None or not os.path.exists(target):
            continue
        for track_path in read_playlist(target):
            if not os.path.exists(track_path):
                lines.append(f'Track "{track_path}" referenced in playlist "{target}" does not exist')
    return AuditResult("Target Playlist Tracks Do Not Exist", lines)


def tracks_not_in_playlists(model: ContentModel) -> AuditResult:
    in_playlists = {e.track_path for entries in model.playlists.values() for e in entries}
    lines = [f'"{path}"' for path in sorted(model.tracks) if path not in in_playlists]
    return AuditResult("Tracks Not In Any Playlist", lines)


def source_media_not_in_target(model: ContentModel, desired: Optional[set[str]] = None) -> AuditResult:
    """
    Source playlists/tracks with no target mapping, and mapped targets that
    are missing on disk. When desired is given, only those targets are checked.
    """
    lines = []
    for playlist_path in model.playlist_paths:
        if playlist_path not in model.source_to_target:
            lines.append(f'Playlist "{playlist_path}" not found')
    for track_path in sorted(model.tracks):
        if track_path not in model.source_to_target:
            lines.append(f'Track "{track_path}" not found')
    for target, source in sorted(model.target_to_source.items()):
        if desired is not None and target not in desired:
            continue
        if not os.path.exists(target):
            lines.append(f'Source media file "{source}" with target path "{target}" not found')
    return AuditResult("Source Media Not In Target Folder", lines)


def _tag_order_key(model: ContentModel, track_path: str) -> tuple[int, int]:
    metadata = model.tracks.get(track_path)
    if metadata is None:
        return (0, 0)
    return (metadata.disc_number or 0, metadata.track_number or 0)


def playlist_tracks_out_of_order(model: ContentModel) -> AuditResult:
    """Playlists whose file order differs from a sort by (disc, track)."""
    lines = []
    for playlist_path, entries in sorted(model.playlists.items()):
        order = [e.track_path for e in entries]
        expected = sorted(order, key=lambda p: _tag_order_key(model, p))
        if order != expected:
            for position, (actual, wanted) in enumerate(zip(order, expected), start=1):
                if actual != wanted:
                    lines.append(
                        f'Playlist "{playlist_path}": position {position} is "{actual}", '
                        f'expected "{wanted}"'
                    )
                    break
    return AuditResult("Playlist Tracks Out Of Order", lines)


def playlist_genres_inconsistent(model: ContentModel) -> AuditResult:
    """Playlists whose tracks do not share exactly one genre."""
    lines = []
    for playlist_path, entries in sorted(model.playlists.items()):
        genres = {model.tracks[e.track_path].genre for e in entries if e.track_path in model.tracks}
        if not genres or len(genres) == 1:
            continue
        names = ", ".join(f'"{g}"' if g else "(none)" for g in sorted(genres))
        lines.append(f'Playlist "{playlist_path}" has {len(genres)} genres: {names}')
    return AuditResult("Playlists With Multiple Genres", lines)


def album_numbering_gaps(model: ContentModel) -> AuditResult:
    """Albums missing a disc in 1..N or a track in 1..M within a disc."""
    lines = []
    for album, paths in sorted(model.albums.items()):
        discs: dict[int, set[int]] = {}
        for path in paths:
            metadata = model.tracks[path]
            if metadata.track_number is None:
                continue
            discs.setdefault(metadata.disc_number or 1, set()).add(metadata.track_number)
        if not discs:
            continue

        for disc in range(1, max(discs) + 1):
            if disc not in discs:
                lines.append(f'Album "{album}": missing disc {disc}')
                continue
            tracks = discs[disc]
            for track in range(1, max(tracks) + 1):
                if track not in tracks:
                    lines.append(f'Album "{album}": disc {disc} is missing track {track}')
    return AuditResult("Album Disc/Track Gaps", lines)


def run_audits(model: ContentModel, desired: Optional[set[str]] = None) -> list[AuditResult]:
    results = [
        source_playlist_tracks_missing(model),
        target_playlist_tracks_missing(model),
        tracks_not_in_playlists(model),
        source_media_not_in_target(model, desired),
        playlist_tracks_out_of_order(model),
        playlist_genres_inconsistent(model),
        album_numbering_gaps(model),
    ]
    for result in results:
        if result.lines:
            logger.info(f"Audit: {result.header}: {len(result.lines)} findings")
    return results


def format_audit(result: AuditResult) -> str:
    underline = "-" * len(result.header)
    body = "\n".join(result.lines) if result.lines else "(none)"
    return f"{result.header}\n{underline}\n{body}\n"
