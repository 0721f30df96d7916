import os
import threading
import time
from pathlib import Path

import pytest

from MirrorEngine.playlist import normalize_path
from MirrorEngine.settings import Settings
from MirrorEngine.tags import TrackMetadata
from MirrorEngine.transcoder import ProcessResult


class FakeTagIO:
    """Tags kept in a dict instead of in the files."""

    def __init__(self):
        self.tags: dict[str, TrackMetadata] = {}
        self.reads: list[str] = []
        self.writes: list[tuple[str, dict]] = []

    def set(self, path, **fields) -> None:
        self.tags[normalize_path(path)] = TrackMetadata(**fields)

    def read_tags(self, path) -> TrackMetadata:
        path = normalize_path(path)
        self.reads.append(path)
        if path not in self.tags:
            raise ValueError(f"corrupt file: {path}")
        return self.tags[path]

    def write_tags(self, path, updates) -> None:
        self.writes.append((normalize_path(path), dict(updates)))
        # Editing a file changes its mtime
        st = os.stat(path)
        os.utime(path, (st.st_atime, st.st_mtime + 1))


class FakeRunner:
    """Stands in for ffmpeg: writes the output file named last on the command line."""

    def __init__(self, fail_on: tuple[str, ...] = (), delay: float = 0.0):
        self.fail_on = fail_on
        self.delay = delay
        self.commands: list[list[str]] = []
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()

    def execute(self, cmd: list[str]) -> ProcessResult:
        with self._lock:
            self.commands.append(cmd)
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        try:
            if self.delay:
                time.sleep(self.delay)
            source = cmd[cmd.index("-i") + 1]
            if any(name in source for name in self.fail_on):
                return ProcessResult(returncode=1, stderr="Invalid data found when processing input")
            Path(cmd[-1]).write_bytes(b"ID3 converted " + Path(source).read_bytes())
            return ProcessResult(returncode=0)
        finally:
            with self._lock:
                self.running -= 1


def write_audio(path: Path, content: bytes = b"fLaC audio data") -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return normalize_path(path)


def write_m3u(path: Path, entries: list) -> str:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#EXTM3U\n" + "\n".join(str(e) for e in entries) + "\n", encoding="utf-8")
    return normalize_path(path)


@pytest.fixture
def tag_io():
    return FakeTagIO()


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def source_dir(tmp_path):
    d = tmp_path / "source"
    d.mkdir()
    return d


@pytest.fixture
def target_dir(tmp_path):
    d = tmp_path / "target"
    d.mkdir()
    return d


@pytest.fixture
def settings(tmp_path, source_dir, target_dir):
    ffmpeg = tmp_path / "bin" / "ffmpeg"
    ffmpeg.parent.mkdir()
    ffmpeg.write_text("")
    return Settings(
        source_folder=str(source_dir),
        target_folder=str(target_dir),
        bit_rate="256k",
        ffmpeg_path=str(ffmpeg),
        concurrency=2,
        app_dir=str(tmp_path / "app"),
    )
