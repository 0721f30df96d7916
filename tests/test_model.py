import json
import os

import pytest

from conftest import write_audio, write_m3u

from MirrorEngine.addressing import address
from MirrorEngine.library import LibraryScanner
from MirrorEngine.model import ContentModel, MetadataStore, build_content_model
from MirrorEngine.playlist import read_playlist
from MirrorEngine.tags import EditableField


@pytest.fixture
def library(source_dir, tag_io, settings):
    a1 = write_audio(source_dir / "Alpha" / "01 One.flac")
    a2 = write_audio(source_dir / "Alpha" / "02 Two.flac")
    b1 = write_audio(source_dir / "Beta" / "01 Uno.mp3")
    tag_io.set(a1, album="Alpha", track_number=1, disc_number=1, genre="Rock")
    tag_io.set(a2, album="Alpha", track_number=2, disc_number=1, genre="Rock")
    tag_io.set(b1, album="Beta", track_number=1, genre="Jazz")
    mix = write_m3u(source_dir / "Mix.m3u", [a2, b1, source_dir / "gone.flac", a1])
    scan = LibraryScanner(source_dir, tag_io, settings.audio_extensions).scan()
    model = build_content_model(scan, settings)
    return model, {"a1": a1, "a2": a2, "b1": b1, "mix": mix}


def test_build(library, target_dir):
    model, p = library
    assert model.track_count == 3
    assert model.albums == {"Alpha": [p["a1"], p["a2"]], "Beta": [p["b1"]]}
    # Missing track filtered out, positions from 1
    assert [(e.track_path, e.position) for e in model.playlists[p["mix"]]] == [
        (p["a2"], 1), (p["b1"], 2), (p["a1"], 3),
    ]


def test_target_mapping(library, target_dir):
    model, p = library
    a1_target = model.source_to_target[p["a1"]]
    assert a1_target == str(target_dir / "Music" / address("Alpha") / f"{address('01 One')}.mp3")
    b1_target = model.source_to_target[p["b1"]]
    assert b1_target.endswith(f"{address('01 Uno')}.mp3")
    assert model.source_to_target[p["mix"]] == str(target_dir / "Playlists" / "Mix.m3u")
    assert len(model.target_to_source) == 4
    assert all(model.source_to_target[s] == t for t, s in model.target_to_source.items())


def test_delete_track_cascades_and_rewrites(library):
    model, p = library
    changed = model.delete_track(p["b1"])

    assert changed == [p["mix"]]
    assert p["b1"] not in model.tracks
    assert p["b1"] not in model.source_to_target
    assert "Beta" not in model.albums
    assert [(e.track_path, e.position) for e in model.playlists[p["mix"]]] == [(p["a2"], 1), (p["a1"], 2)]
    # Source playlist rewritten in place
    assert read_playlist(p["mix"]) == [p["a2"], p["a1"]]


def test_delete_track_can_remove_file(library):
    model, p = library
    model.delete_track(p["a1"], delete_file=True)
    assert not os.path.exists(p["a1"])


def test_delete_and_rename_playlist(library, source_dir, target_dir):
    model, p = library
    new_path = str(source_dir / "Renamed.m3u")
    model.rename_playlist(p["mix"], new_path)
    assert new_path in model.playlists
    assert p["mix"] not in model.playlists
    assert model.source_to_target[new_path] == str(target_dir / "Playlists" / "Renamed.m3u")

    model.delete_playlist(new_path)
    assert model.playlists == {}
    assert model.playlist_paths == []
    assert not any(t.endswith(".m3u") for t in model.target_to_source)


def test_upsert_playlist(library, source_dir):
    model, p = library
    new = write_m3u(source_dir / "New.m3u", [p["a1"]])
    model.upsert_playlist(new)
    assert [e.track_path for e in model.playlists[new]] == [p["a1"]]

    write_m3u(source_dir / "New.m3u", [p["b1"], p["a1"]])
    model.upsert_playlist(new)
    assert [e.track_path for e in model.playlists[new]] == [p["b1"], p["a1"]]
    assert model.playlist_paths.count(new) == 1


def test_apply_field_edit_moves_target(library, tag_io):
    model, p = library
    old_target = model.source_to_target[p["a1"]]
    updated = model.apply_field_edit(p["a1"], EditableField.ALBUM, "Gamma", tag_io)

    assert tag_io.writes == [(p["a1"], {"album": "Gamma"})]
    assert updated.album == "Gamma"
    assert model.albums["Gamma"] == [p["a1"]]
    assert model.source_to_target[p["a1"]] != old_target
    assert address("Gamma") in model.source_to_target[p["a1"]]


def test_apply_field_edit_unknown_track(library, tag_io):
    model, _ = library
    with pytest.raises(KeyError):
        model.apply_field_edit("/nope.flac", EditableField.TITLE, "x", tag_io)


def test_store_round_trip(library, target_dir):
    model, _ = library
    store = MetadataStore(target_dir)
    store.save(model)
    loaded = store.load()
    assert loaded.tracks == model.tracks
    assert loaded.playlists == model.playlists
    assert loaded.target_to_source == model.target_to_source
    assert loaded.albums == model.albums


def test_store_backs_up_corrupt_file(target_dir):
    (target_dir / "metadata.json").write_text("{broken", encoding="utf-8")
    assert MetadataStore(target_dir).load() is None
    assert (target_dir / "metadata.json.bak").exists()


def test_store_ignores_unknown_version(target_dir):
    (target_dir / "metadata.json").write_text(json.dumps({"version": 99}), encoding="utf-8")
    assert MetadataStore(target_dir).load() is None


def test_model_reindex_is_order_independent(library):
    model, _ = library
    shuffled = ContentModel(
        source_folder=model.source_folder,
        target_folder=model.target_folder,
        extension_map=model.extension_map,
        tracks=dict(reversed(list(model.tracks.items()))),
        playlist_paths=model.playlist_paths,
        playlists=model.playlists,
    )
    shuffled.reindex()
    assert shuffled.target_to_source == model.target_to_source
    assert shuffled.albums == model.albums


def test_playlist_name_collision_keeps_first(source_dir, tag_io, settings, caplog):
    track = write_audio(source_dir / "Alpha" / "01.flac")
    tag_io.set(track, album="Alpha")
    first = write_m3u(source_dir / "a" / "Road.m3u", [track])
    second = write_m3u(source_dir / "b" / "Road.m3u", [track])
    scan = LibraryScanner(source_dir, tag_io, settings.audio_extensions).scan()

    with caplog.at_level("WARNING", logger="MirrorEngine.model"):
        model = build_content_model(scan, settings)

    target = model.playlist_target(first)
    assert model.target_to_source[target] == first
    assert first in model.source_to_target
    assert second not in model.source_to_target
    assert any("collision" in r.getMessage() and second in r.getMessage() for r in caplog.records)


def test_create_playlist_adds_to_model(library, source_dir):
    model, p = library
    path = model.create_playlist("Favourites", [p["b1"], p["a1"]])

    assert path == str(source_dir / "Playlists" / "Favourites.m3u")
    assert [e.track_path for e in model.playlists[path]] == [p["b1"], p["a1"]]
    assert model.source_to_target[path].endswith(os.path.join("Playlists", "Favourites.m3u"))
