import json
import os
from pathlib import Path

import pytest

from conftest import FakeRunner, write_audio, write_m3u

from MirrorEngine.addressing import address
from MirrorEngine.cancellation import CancellationToken, CancelSentinel
from MirrorEngine.errors import SettingsError
from MirrorEngine.status import RunStatusStore, SelectionStore, SyncSelection
from MirrorEngine.sync import SyncRunner

BOOKKEEPING = {"metadata.json", "transcodingstatus.json", "syncstatus.json", "sync-log.txt"}


def _tree(root):
    """Relative path → bytes for every engine-written media file."""
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in Path(root).rglob("*")
        if p.is_file() and p.name not in BOOKKEEPING
    }


@pytest.fixture
def simple_library(source_dir, tag_io):
    song = write_audio(source_dir / "Test Album" / "01 Song.flac")
    tag_io.set(song, album="Test Album", title="Song", track_number=1, disc_number=1)
    playlist = write_m3u(source_dir / "Favorites.m3u", [song])
    return song, playlist


def test_end_to_end(simple_library, settings, tag_io, runner, target_dir):
    song, playlist = simple_library
    events = []
    result = SyncRunner(settings, tag_io, runner, progress_callback=events.append).run()

    assert result.success, result.errors
    assert result.full_rebuild
    assert result.tracks_written == 1
    assert result.playlists_written == 1

    album_dir = target_dir / "Music" / address("Test Album")
    assert [p.name for p in album_dir.iterdir()] == [f"{address('01 Song')}.mp3"]
    assert [p.name for p in (target_dir / "Playlists").iterdir()] == ["Favorites.m3u"]
    assert (target_dir / "Playlists" / "Favorites.m3u").read_text(encoding="utf-8") == (
        f"../Music/{address('Test Album')}/{address('01 Song')}.mp3\r\n"
    )

    metadata = json.loads((target_dir / "metadata.json").read_text(encoding="utf-8"))
    assert metadata["target_to_source"] == {
        str(album_dir / f"{address('01 Song')}.mp3"): song,
        str(target_dir / "Playlists" / "Favorites.m3u"): playlist,
    }

    assert (target_dir / "syncstatus.json").exists()
    assert "Sync completed" in (target_dir / "sync-log.txt").read_text(encoding="utf-8")

    status = RunStatusStore(target_dir).load()
    assert status.completed and not status.cancelled
    assert len(status.successes) == 2

    completed = [e for e in events if e.completed]
    assert len(completed) == 1
    assert events[-1].completed


def test_second_run_is_a_no_op(simple_library, settings, tag_io, runner, target_dir):
    SyncRunner(settings, tag_io, runner).run()
    before = _tree(target_dir)
    commands = len(runner.commands)
    reads = len(tag_io.reads)

    result = SyncRunner(settings, tag_io, runner).run()

    assert result.success
    assert not result.full_rebuild
    assert result.tracks_written == 0
    assert result.playlists_written == 0
    assert result.files_deleted == 0
    assert len(runner.commands) == commands
    # Tags came from the metadata cache
    assert len(tag_io.reads) == reads
    assert _tree(target_dir) == before


def test_bit_rate_change_rebuilds(simple_library, settings, tag_io, runner, target_dir):
    SyncRunner(settings, tag_io, runner).run()
    (target_dir / "Music" / "stray.mp3").write_bytes(b"junk")

    settings.bit_rate = "320k"
    result = SyncRunner(settings, tag_io, runner).run()

    assert result.full_rebuild
    assert result.tracks_written == 1
    assert "320k" in runner.commands[-1]
    assert not (target_dir / "Music" / "stray.mp3").exists()
    assert (target_dir / "metadata.json").exists()


def test_removed_source_is_swept(simple_library, source_dir, settings, tag_io, runner, target_dir):
    song, playlist = simple_library
    other = write_audio(source_dir / "Other" / "x.mp3", b"ID3 x")
    tag_io.set(other, album="Other")
    SyncRunner(settings, tag_io, runner).run()
    other_target = target_dir / "Music" / address("Other") / f"{address('x')}.mp3"
    assert other_target.exists()

    os.remove(other)
    result = SyncRunner(settings, tag_io, runner).run()

    assert result.files_deleted == 1
    assert not other_target.exists()
    assert not other_target.parent.exists()


def test_partial_failure(source_dir, settings, tag_io, target_dir):
    paths = []
    for name in ("good1", "bad", "good2"):
        path = write_audio(source_dir / "Album" / f"{name}.flac")
        tag_io.set(path, album="Album")
        paths.append(path)
    runner = FakeRunner(fail_on=("bad",))

    result = SyncRunner(settings, tag_io, runner).run()

    assert not result.success
    assert result.tracks_written == 2
    assert result.tracks_failed == 1
    assert [src for src, _ in result.errors] == [paths[1]]
    status = RunStatusStore(target_dir).load()
    assert len(status.failures) == 1
    assert len(status.successes) == 2

    # The next run retries only the failed file
    retry = SyncRunner(settings, tag_io, FakeRunner()).run()
    assert retry.success
    assert retry.tracks_written == 1


def test_dangling_playlist_entry_is_reported(simple_library, source_dir, settings, tag_io, runner):
    song, _ = simple_library
    missing = str(source_dir / "Test Album" / "02 Gone.flac")
    write_m3u(source_dir / "Broken.m3u", [song, missing])

    result = SyncRunner(settings, tag_io, runner).run()

    audit = next(a for a in result.audits if a.header == "Source Playlist Tracks Do Not Exist")
    assert any("02 Gone.flac" in line for line in audit.lines)
    assert any("02 Gone.flac" in message for _, message in result.errors)
    assert result.playlists_written == 2


def test_selection_limits_target(source_dir, settings, tag_io, runner, target_dir):
    keep = write_audio(source_dir / "Keep" / "k.flac")
    skip = write_audio(source_dir / "Skip" / "s.flac")
    tag_io.set(keep, album="Keep")
    tag_io.set(skip, album="Skip")
    SelectionStore(target_dir).save(SyncSelection(albums={"Keep": True, "Skip": False}))

    SyncRunner(settings, tag_io, runner).run()

    assert (target_dir / "Music" / address("Keep")).exists()
    assert not (target_dir / "Music" / address("Skip")).exists()
    # Selection survives the full rebuild
    assert SelectionStore(target_dir).load().albums == {"Keep": True, "Skip": False}


def test_cancel_mid_run(source_dir, settings, tag_io, target_dir):
    for i in range(6):
        path = write_audio(source_dir / "Album" / f"{i:02d}.flac")
        tag_io.set(path, album="Album", track_number=i + 1)

    class CancellingRunner(FakeRunner):
        def execute(self, cmd):
            CancelSentinel(settings.app_dir).request()
            return super().execute(cmd)

    settings.concurrency = 1
    result = SyncRunner(settings, tag_io, CancellingRunner(delay=0.02)).run()

    assert result.cancelled
    assert not result.success
    assert result.errors == []
    assert [p for p in target_dir.rglob("*") if ".partial" in p.name] == []
    status = RunStatusStore(target_dir).load()
    assert status.cancelled
    written = len(status.successes)
    assert 1 <= written < 6

    # Resuming picks up where the cancelled run stopped
    resumed = SyncRunner(settings, tag_io, FakeRunner()).run()
    assert not resumed.cancelled
    assert not resumed.full_rebuild
    assert resumed.tracks_written == 6 - written


def test_cancel_before_sweep_leaves_target_alone(simple_library, settings, tag_io, runner, target_dir):
    (target_dir / "keep.mp3").write_bytes(b"x")
    token = CancellationToken()

    def cancel_on_first_event(event):
        token.cancel()

    runner_ = SyncRunner(settings, tag_io, runner, token=token, progress_callback=cancel_on_first_event)
    result = runner_.run()

    assert result.cancelled
    assert (target_dir / "keep.mp3").exists()
    assert RunStatusStore(target_dir).load() is None


def test_invalid_settings_raise_before_any_work(settings, tag_io, runner, target_dir, tmp_path):
    settings.source_folder = str(tmp_path / "missing")
    (target_dir / "keep.mp3").write_bytes(b"x")
    with pytest.raises(SettingsError):
        SyncRunner(settings, tag_io, runner).run()
    assert (target_dir / "keep.mp3").exists()


def test_selection_does_not_widen_when_selected_playlist_is_removed(source_dir, settings, tag_io, runner, target_dir):
    a = write_audio(source_dir / "A" / "a.flac")
    b = write_audio(source_dir / "B" / "b.flac")
    tag_io.set(a, album="A")
    tag_io.set(b, album="B")
    only_a = write_m3u(source_dir / "OnlyA.m3u", [a])
    SelectionStore(target_dir).save(SyncSelection(playlists={only_a: True}))

    SyncRunner(settings, tag_io, runner).run()
    assert (target_dir / "Music" / address("A")).exists()

    os.remove(only_a)
    result = SyncRunner(settings, tag_io, runner).run()

    assert result.success, result.errors
    assert not (target_dir / "Music" / address("B")).exists()
    assert not (target_dir / "Music" / address("A")).exists()
    selection = SelectionStore(target_dir).load()
    assert selection.playlists == {}
    assert not selection.mirror_all


def test_interrupt_is_recorded_as_cancelled(source_dir, settings, tag_io, runner, target_dir):
    for i in range(4):
        path = write_audio(source_dir / "Album" / f"{i:02d}.flac")
        tag_io.set(path, album="Album", track_number=i + 1)

    def interrupt_on_first_file(event):
        if event.secondary.startswith("1 of"):
            raise KeyboardInterrupt

    settings.concurrency = 1
    sync = SyncRunner(settings, tag_io, runner, progress_callback=interrupt_on_first_file)
    with pytest.raises(KeyboardInterrupt):
        sync.run()

    assert sync.token.is_cancelled()
    assert len(runner.commands) == 1
    status = RunStatusStore(target_dir).load()
    assert status.cancelled
