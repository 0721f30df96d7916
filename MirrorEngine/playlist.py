"""
Playlist I/O - M3U reading, target playlist writing and verification.

Source playlists are plain M3U: one path per line, blank lines and lines
starting with "#" ignored. Relative entries are resolved against the
playlist's own folder.

Target playlists reference the content-addressed layout with relative
lines ("../Music/<albumToken>/<trackToken>.<ext>") and CRLF line endings,
so they work when the target folder is copied to a device as a whole.
"""

import logging
import os
import re
from pathlib import Path
from typing import Callable, Iterable, Optional, TYPE_CHECKING

from .addressing import PLAYLIST_EXTENSION, PLAYLISTS_FOLDER

if TYPE_CHECKING:
    from .model import ContentModel

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "#"
LINE_ENDING = "\r\n"

_UNSAFE_CHARS = re.compile(r'[\x00-\x1f<>:"/\\|?*]')
DEFAULT_PLAYLIST_NAME = "Playlist"


def normalize_path(path: str | Path) -> str:
    """Canonical string form used for every source path key."""
    return os.path.normpath(os.path.abspath(str(path)))


def read_playlist(path: str | Path) -> list[str]:
    """
    Read the track paths listed in a playlist, in file order.

    Returns an empty list (and logs a warning) if the playlist is missing.
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Playlist not found: {path}")
        return []

    with open(path, "r", encoding="utf-8-sig", errors="replace") as f:
        text = f.read()

    entries = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(COMMENT_PREFIX):
            continue
        entry = Path(line)
        if not entry.is_absolute():
            entry = path.parent / entry
        entries.append(normalize_path(entry))
    return entries


def _write_lines(path: Path, lines: Iterable[str]) -> None:
    """Write lines with CRLF endings, atomically (temp file + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    try:
        with open(tmp, "w", encoding="utf-8", newline="") as f:
            for line in lines:
                f.write(line + LINE_ENDING)
        os.replace(tmp, path)
    except Exception:
        try:
            os.remove(tmp)
        except OSError:
            pass
        raise


def write_target_playlist(
    source_path: str | Path,
    target_path: str | Path,
    model: "ContentModel",
    include: Optional[set[str]] = None,
    record_error: Optional[Callable[[str], None]] = None,
) -> int:
    """
    Write the target copy of a source playlist.

    Entries with no known metadata are reported through record_error and
    left out. When include is given, entries whose target path is not in
    it (tracks not selected for this target) are left out silently.

    Returns:
        Number of lines written.
    """
    lines = []
    for entry in read_playlist(source_path):
        line = model.playlist_line_for(entry)
        if line is None:
            message = f'Playlist "{source_path}": cannot retrieve metadata for track "{entry}"'
            logger.warning(message)
            if record_error:
                record_error(message)
            continue
        if include is not None and model.source_to_target.get(entry) not in include:
            continue
        lines.append(line)

    _write_lines(Path(target_path), lines)
    logger.debug(f"Wrote {len(lines)} entries to {target_path}")
    return len(lines)


def rewrite_playlist(track_paths: list[str], source_path: str | Path) -> None:
    """Regenerate a source playlist from an explicit, ordered list of tracks."""
    logger.info(f"Rewriting playlist {source_path} with {len(track_paths)} tracks")
    _write_lines(Path(source_path), track_paths)


def safe_file_name(name: str) -> str:
    """Replace characters that are not allowed in file names on common filesystems."""
    name = _UNSAFE_CHARS.sub("_", name)
    name = re.sub(r"\s+", " ", name).strip().rstrip(".")
    return name or DEFAULT_PLAYLIST_NAME


def create_playlist(source_folder: str | Path, name: str, track_paths: list[str]) -> str:
    """
    Write a new source playlist at <source>/Playlists/<name>.m3u.

    An existing playlist with the same name is replaced.

    Returns:
        Normalized path of the playlist file.
    """
    path = Path(source_folder) / PLAYLISTS_FOLDER / f"{safe_file_name(name)}{PLAYLIST_EXTENSION}"
    logger.info(f"Creating playlist {path} with {len(track_paths)} tracks")
    _write_lines(path, track_paths)
    return normalize_path(path)


def verify_target_playlist(target_path: str | Path, errors: list[str]) -> int:
    """
    Check that every line of a target playlist resolves to an existing file.

    Problems are appended to errors as human-readable messages.

    Returns:
        Number of problems found.
    """
    target_path = Path(target_path)
    if not target_path.exists():
        errors.append(f'Playlist "{target_path}" does not exist in target folder')
        return 1

    problems = 0
    for resolved in read_playlist(target_path):
        if not os.path.exists(resolved):
            errors.append(f'Playlist "{target_path.name}": file "{resolved}" does not exist in target folder')
            problems += 1
    return problems
