"""
Tag I/O - Read and edit the metadata MirrorEngine cares about.

Only the fields used for naming, grouping and auditing are kept:
album, title, disc/track numbers, genre, artist, album artist, composer,
date. Everything else in a file's tags is ignored.

Uses mutagen's "easy" interface so FLAC (Vorbis comments) and MP3 (ID3)
share the same key names.

Editable fields form a closed set (EditableField). Each member knows which
tag keys it writes and how it updates the in-memory metadata.
"""

import logging
from dataclasses import dataclass, asdict, replace
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

import mutagen

logger = logging.getLogger(__name__)


@dataclass
class TrackMetadata:
    """Metadata for one source audio file."""

    album: str = ""
    title: str = ""
    disc_number: Optional[int] = None
    track_number: Optional[int] = None
    genre: str = ""
    artist: str = ""
    album_artist: str = ""
    composer: str = ""
    date: str = ""

    # Source file mtime when these tags were read (cache key)
    mtime: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TrackMetadata":
        return cls(
            album=data.get("album") or "",
            title=data.get("title") or "",
            disc_number=data.get("disc_number"),
            track_number=data.get("track_number"),
            genre=data.get("genre") or "",
            artist=data.get("artist") or "",
            album_artist=data.get("album_artist") or "",
            composer=data.get("composer") or "",
            date=data.get("date") or "",
            mtime=float(data.get("mtime") or 0.0),
        )


def parse_number(value) -> Optional[int]:
    """Parse "3", "03" or "3/12" into 3. Returns None if not a number."""
    if value is None:
        return None
    text = str(value).strip()
    if "/" in text:
        text = text.split("/", 1)[0]
    try:
        return int(text)
    except ValueError:
        return None


class TagIO(Protocol):
    """What the scanner and model need from a tag library."""

    def read_tags(self, path: str | Path) -> TrackMetadata:
        ...

    def write_tags(self, path: str | Path, updates: dict[str, str]) -> None:
        ...


class MutagenTagIO:
    """TagIO backed by mutagen."""

    def read_tags(self, path: str | Path) -> TrackMetadata:
        """
        Read tags from an audio file.

        Raises:
            ValueError if mutagen does not recognize the file.
        """
        audio = mutagen.File(path, easy=True)
        if audio is None:
            raise ValueError(f"Unrecognized audio file: {path}")

        def get_first(key: str) -> str:
            val = audio.get(key) if audio.tags is not None else None
            if val and len(val) > 0:
                return str(val[0])
            return ""

        return TrackMetadata(
            album=get_first("album"),
            title=get_first("title"),
            disc_number=parse_number(get_first("discnumber")),
            track_number=parse_number(get_first("tracknumber")),
            genre=get_first("genre"),
            artist=get_first("artist"),
            album_artist=get_first("albumartist") or get_first("album artist"),
            composer=get_first("composer"),
            date=get_first("date") or get_first("year"),
        )

    def write_tags(self, path: str | Path, updates: dict[str, str]) -> None:
        """Write easy-key updates. An empty value removes the key."""
        audio = mutagen.File(path, easy=True)
        if audio is None:
            raise ValueError(f"Unrecognized audio file: {path}")
        if audio.tags is None:
            audio.add_tags()

        for key, value in updates.items():
            if value:
                audio[key] = [value]
            elif key in audio:
                del audio[key]

        audio.save()
        logger.debug(f"Wrote {sorted(updates)} to {path}")


# ── Editable fields ─────────────────────────────────────────────────────────


def _pad_number(value: str) -> str:
    number = parse_number(value)
    if number is None:
        return ""
    return f"{number:03d}"


class EditableField(Enum):
    """The closed set of metadata fields a user may edit."""

    TITLE = "title"
    ALBUM = "album"
    TRACK_NUMBER = "track_number"
    DISC_NUMBER = "disc_number"
    GENRE = "genre"
    ARTIST = "artist"
    ALBUM_ARTIST = "album_artist"
    COMPOSER = "composer"
    DATE = "date"

    def tag_updates(self, value: str) -> dict[str, str]:
        """The tag keys (mutagen easy names) and values written for an edit."""
        value = (value or "").strip()
        if self is EditableField.TITLE:
            return {"title": value}
        elif self is EditableField.ALBUM:
            return {"album": value}
        elif self is EditableField.TRACK_NUMBER:
            return {"tracknumber": _pad_number(value)}
        elif self is EditableField.DISC_NUMBER:
            return {"discnumber": _pad_number(value)}
        elif self is EditableField.GENRE:
            return {"genre": value}
        elif self is EditableField.ARTIST:
            return {"artist": value}
        elif self is EditableField.ALBUM_ARTIST:
            return {"albumartist": value}
        elif self is EditableField.COMPOSER:
            return {"composer": value}
        elif self is EditableField.DATE:
            return {"date": value}
        raise ValueError(f"Unhandled field: {self}")

    def apply(self, metadata: TrackMetadata, value: str) -> TrackMetadata:
        """Return a copy of metadata with this field set to value."""
        value = (value or "").strip()
        if self in (EditableField.TRACK_NUMBER, EditableField.DISC_NUMBER):
            return replace(metadata, **{self.value: parse_number(value)})
        return replace(metadata, **{self.value: value})
