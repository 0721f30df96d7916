import argparse
import logging
import sys
from pathlib import Path

from MirrorEngine import (
    CancelSentinel,
    EditableField,
    MetadataStore,
    MutagenTagIO,
    SettingsError,
    SyncRunner,
    load_settings,
    run_audits,
)
from MirrorEngine.audits import format_audit
from MirrorEngine.playlist import normalize_path
from MirrorEngine.settings import SETTINGS_FILENAME, default_app_dir


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mirrorengine",
        description="Mirror a FLAC/MP3 library and its playlists into a content-addressed target folder.",
    )
    p.add_argument(
        "--settings",
        default=None,
        help=f"Path to settings JSON (default: {Path(default_app_dir()) / SETTINGS_FILENAME}).",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")

    sub = p.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Run a sync.")
    sync.add_argument("--source", help="Source library folder.")
    sync.add_argument("--target", help="Target folder.")
    sync.add_argument("--bit-rate", help='ffmpeg bitrate for converted files, e.g. "256k".')
    sync.add_argument("--concurrency", type=int, help="Parallel workers (0 = auto).")
    sync.add_argument("--ffmpeg", help="Path to the ffmpeg binary.")
    sync.add_argument("--save", action="store_true", help="Save the overrides back to the settings file.")

    sub.add_parser("cancel", help="Ask a running sync (in another process) to stop.")

    audit = sub.add_parser("audit", help="Run the audits against the last sync's metadata.")
    audit.add_argument("--target", help="Target folder (default: from settings).")

    edit = sub.add_parser("edit", help="Edit one tag of a source track.")
    edit.add_argument("track", help="Source track path.")
    edit.add_argument("field", choices=[f.value for f in EditableField])
    edit.add_argument("value")

    new = sub.add_parser("new-playlist", help="Create a source playlist from a list of tracks.")
    new.add_argument("name", help="Playlist name (unsafe characters are replaced).")
    new.add_argument("tracks", nargs="+", help="Source track paths, in order.")

    delete = sub.add_parser("delete-track", help="Delete a source track and remove it from every playlist.")
    delete.add_argument("track", help="Source track path.")
    return p


def cmd_sync(args, settings) -> int:
    if args.source:
        settings.source_folder = args.source
    if args.target:
        settings.target_folder = args.target
    if args.bit_rate:
        settings.bit_rate = args.bit_rate
    if args.concurrency is not None:
        settings.concurrency = args.concurrency
    if args.ffmpeg:
        settings.ffmpeg_path = args.ffmpeg
    if args.save:
        settings.save(args.settings)

    def show(event):
        if event.primary:
            print(event.primary)
        elif event.secondary and event.percent is not None:
            print(f"  [{event.percent:5.1f}%] {event.secondary}")

    runner = SyncRunner(settings, progress_callback=show)
    try:
        result = runner.run()
    except SettingsError as e:
        print(str(e), file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("Sync interrupted; running units were allowed to finish.", file=sys.stderr)
        return 130

    print(result.summary)
    if result.cancelled:
        return 130
    return 0 if result.success else 1


def cmd_audit(args, settings) -> int:
    target = args.target or settings.target_folder
    model = MetadataStore(target).load()
    if model is None:
        print(f"No metadata found in {target}; run a sync first.", file=sys.stderr)
        return 1
    for result in run_audits(model):
        print(format_audit(result))
    return 0


def _load_model(settings):
    model = MetadataStore(settings.target_folder).load()
    if model is None:
        print(f"No metadata found in {settings.target_folder}; run a sync first.", file=sys.stderr)
    return model


def cmd_edit(args, settings) -> int:
    model = _load_model(settings)
    if model is None:
        return 1
    track = normalize_path(args.track)
    try:
        model.apply_field_edit(track, EditableField(args.field), args.value, MutagenTagIO())
    except KeyError as e:
        print(str(e), file=sys.stderr)
        return 1
    MetadataStore(settings.target_folder).save(model)
    return 0


def cmd_delete_track(args, settings) -> int:
    model = _load_model(settings)
    if model is None:
        return 1
    changed = model.delete_track(normalize_path(args.track), delete_file=True)
    for playlist in changed:
        print(f"Rewrote {playlist}")
    MetadataStore(settings.target_folder).save(model)
    return 0


def cmd_new_playlist(args, settings) -> int:
    model = _load_model(settings)
    if model is None:
        return 1
    path = model.create_playlist(args.name, args.tracks)
    print(f"Created {path}")
    MetadataStore(settings.target_folder).save(model)
    return 0


def main(argv=None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = load_settings(args.settings)

    if args.command == "sync":
        return cmd_sync(args, settings)
    if args.command == "cancel":
        CancelSentinel(settings.resolved_app_dir).request()
        return 0
    if args.command == "audit":
        return cmd_audit(args, settings)
    if args.command == "edit":
        return cmd_edit(args, settings)
    if args.command == "delete-track":
        return cmd_delete_track(args, settings)
    if args.command == "new-playlist":
        return cmd_new_playlist(args, settings)
    return 2


if __name__ == "__main__":
    sys.exit(main())
