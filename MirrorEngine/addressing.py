"""
Path Addressor - Content-addressed names for the target layout.

Every album folder and track file in the target is named by a keyed hash
of its album name / filename stem, so names are always filesystem safe,
fixed length, and stable across runs and machines:

    <target>/Music/<address(album)>/<address(stem)>.<ext>
    <target>/Playlists/<original playlist name>.m3u

Playlists written into the target reference tracks with relative lines:

    ../Music/<albumToken>/<trackToken>.<ext>
"""

import hashlib
import hmac
from pathlib import Path

MUSIC_FOLDER = "Music"
PLAYLISTS_FOLDER = "Playlists"
PLAYLIST_EXTENSION = ".m3u"

_GROUP_SIZE = 4


def address(text: str) -> str:
    """
    Hash text into a 79-char token: 64 hex digits in dash-separated groups of 4.

    The token is HMAC-SHA256 keyed with the UTF-8 text over an empty
    message. Pure; equal inputs give equal tokens in every process.
    """
    digest = hmac.new((text or "").encode("utf-8"), b"", hashlib.sha256).hexdigest()
    groups = [digest[i:i + _GROUP_SIZE] for i in range(0, len(digest), _GROUP_SIZE)]
    return "-".join(groups)


def _normalize_ext(ext: str) -> str:
    return ext.lower().lstrip(".")


def track_target_path(target_root: str | Path, album: str, source_path: str | Path, target_ext: str) -> Path:
    """Target location of a track: Music/<albumToken>/<trackToken>.<ext>."""
    stem = Path(source_path).stem
    return (
        Path(target_root)
        / MUSIC_FOLDER
        / address(album)
        / f"{address(stem)}.{_normalize_ext(target_ext)}"
    )


def album_target_folder(target_root: str | Path, album: str) -> Path:
    return Path(target_root) / MUSIC_FOLDER / address(album)


def playlist_target_path(target_root: str | Path, source_path: str | Path) -> Path:
    """Target location of a playlist: Playlists/<original filename>."""
    return Path(target_root) / PLAYLISTS_FOLDER / Path(source_path).name


def playlist_line(album: str, source_path: str | Path, target_ext: str) -> str:
    """The line a target playlist uses to reference a track (always forward slashes)."""
    stem = Path(source_path).stem
    return f"../{MUSIC_FOLDER}/{address(album)}/{address(stem)}.{_normalize_ext(target_ext)}"


PARTIAL_MARKER = ".partial"


def partial_path(target_path: str | Path) -> Path:
    """Temporary name a file is written under until it is complete: <stem>.partial.<ext>."""
    target_path = Path(target_path)
    return target_path.with_name(f"{target_path.stem}{PARTIAL_MARKER}{target_path.suffix}")


def is_partial(path: str | Path) -> bool:
    path = Path(path)
    return path.suffix == PARTIAL_MARKER or path.stem.endswith(PARTIAL_MARKER)
