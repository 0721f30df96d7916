from conftest import write_audio, write_m3u

from MirrorEngine.audits import (
    album_numbering_gaps,
    format_audit,
    playlist_genres_inconsistent,
    playlist_tracks_out_of_order,
    run_audits,
    source_media_not_in_target,
    source_playlist_tracks_missing,
    target_playlist_tracks_missing,
    tracks_not_in_playlists,
)
from MirrorEngine.model import ContentModel, load_playlist_entries
from MirrorEngine.tags import TrackMetadata


def _model(target_dir, tracks, playlists=()):
    model = ContentModel(
        target_folder=str(target_dir),
        extension_map={"flac": "mp3", "mp3": "mp3"},
        tracks=tracks,
        playlist_paths=list(playlists),
        playlists={p: load_playlist_entries(p) for p in playlists},
    )
    model.reindex()
    return model


def test_gap_detection_reports_only_missing_track(target_dir):
    tracks = {
        f"/m/{n}.flac": TrackMetadata(album="Gappy", disc_number=1, track_number=n)
        for n in (1, 2, 4)
    }
    result = album_numbering_gaps(_model(target_dir, tracks))
    assert result.lines == ['Album "Gappy": disc 1 is missing track 3']


def test_gap_detection_missing_disc(target_dir):
    tracks = {
        "/m/a.flac": TrackMetadata(album="Box", disc_number=1, track_number=1),
        "/m/b.flac": TrackMetadata(album="Box", disc_number=3, track_number=1),
    }
    assert album_numbering_gaps(_model(target_dir, tracks)).lines == ['Album "Box": missing disc 2']


def test_gap_detection_ignores_unnumbered(target_dir):
    tracks = {"/m/a.flac": TrackMetadata(album="Loose")}
    assert album_numbering_gaps(_model(target_dir, tracks)).passed


def test_dangling_source_reference(source_dir, target_dir):
    present = write_audio(source_dir / "here.flac")
    missing = str(source_dir / "gone.flac")
    playlist = write_m3u(source_dir / "List.m3u", [present, missing])
    model = _model(target_dir, {present: TrackMetadata(album="A")}, [playlist])

    result = source_playlist_tracks_missing(model)
    assert result.lines == [f'Playlist "{playlist}": Track "{missing}" does not exist']


def test_target_playlist_dangling(source_dir, target_dir):
    track = write_audio(source_dir / "t.flac")
    playlist = write_m3u(source_dir / "List.m3u", [track])
    model = _model(target_dir, {track: TrackMetadata(album="A")}, [playlist])

    target_playlist = target_dir / "Playlists" / "List.m3u"
    target_playlist.parent.mkdir()
    target_playlist.write_text("../Music/nowhere/x.mp3\r\n", encoding="utf-8")

    result = target_playlist_tracks_missing(model)
    assert len(result.lines) == 1
    assert "x.mp3" in result.lines[0]


def test_tracks_not_in_playlists(source_dir, target_dir):
    a = write_audio(source_dir / "a.flac")
    b = write_audio(source_dir / "b.flac")
    playlist = write_m3u(source_dir / "L.m3u", [a])
    model = _model(target_dir, {a: TrackMetadata(), b: TrackMetadata()}, [playlist])
    assert tracks_not_in_playlists(model).lines == [f'"{b}"']


def test_source_media_not_in_target(source_dir, target_dir):
    a = write_audio(source_dir / "a.flac")
    model = _model(target_dir, {a: TrackMetadata(album="A")})
    result = source_media_not_in_target(model)
    assert len(result.lines) == 1
    assert a in result.lines[0]

    # Not desired: not expected in the target
    assert source_media_not_in_target(model, desired=set()).passed


def test_out_of_order(source_dir, target_dir):
    one = write_audio(source_dir / "1.flac")
    two = write_audio(source_dir / "2.flac")
    in_order = write_m3u(source_dir / "Good.m3u", [one, two])
    reversed_ = write_m3u(source_dir / "Bad.m3u", [two, one])
    tracks = {
        one: TrackMetadata(album="A", disc_number=1, track_number=1),
        two: TrackMetadata(album="A", disc_number=1, track_number=2),
    }
    result = playlist_tracks_out_of_order(_model(target_dir, tracks, [in_order, reversed_]))
    assert len(result.lines) == 1
    assert "Bad.m3u" in result.lines[0]
    # Audit only: the playlist itself is untouched
    assert open(reversed_, encoding="utf-8").read().splitlines()[1:] == [two, one]


def test_genres(source_dir, target_dir):
    a = write_audio(source_dir / "a.flac")
    b = write_audio(source_dir / "b.flac")
    c = write_audio(source_dir / "c.flac")
    mixed = write_m3u(source_dir / "Mixed.m3u", [a, b])
    pure = write_m3u(source_dir / "Pure.m3u", [a, c])
    tracks = {
        a: TrackMetadata(genre="Jazz"),
        b: TrackMetadata(genre="Rock"),
        c: TrackMetadata(genre="Jazz"),
    }
    result = playlist_genres_inconsistent(_model(target_dir, tracks, [mixed, pure]))
    assert result.lines == [f'Playlist "{mixed}" has 2 genres: "Jazz", "Rock"']


def test_run_audits_and_format(target_dir):
    results = run_audits(_model(target_dir, {}))
    assert len(results) == 7
    assert all(r.passed for r in results)
    text = format_audit(results[0])
    assert text.splitlines()[0] == results[0].header
    assert "(none)" in text
