"""
Sync Runner - Drives one complete mirror run.

Flow:
1. Validate settings (fatal problems raise SettingsError before any work)
2. Load the previous run's status and metadata (metadata is a tag cache)
3. Scan the source folder and build the content model
4. Load the selection and drop entries for things that no longer exist
5. Plan: desired set, stale items, full rebuild if the fingerprint changed
6. Sweep obsolete target files (always before anything is written)
7. Persist metadata, selection and the new fingerprint
8. Copy/convert tracks on the worker pool, then write playlists
9. Verify target playlists, run audits, write the run log
10. Persist final status and metadata

Cancellation (CancellationToken) stops the run at the next safe point and is
reported as SyncResult.cancelled, separately from errors.

Usage:
    runner = SyncRunner(settings, progress_callback=print)
    result = runner.run()
    print(result.summary)
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .audits import AuditResult, format_audit, run_audits
from .cancellation import CancellationToken, CancelSentinel
from .errors import SyncCancelled
from .library import LibraryScanner
from .model import ContentModel, MetadataStore, build_content_model
from .planner import SyncPlan, SyncPlanner, target_file_extensions
from .playlist import verify_target_playlist, write_target_playlist
from .progress import ProgressReporter, ProgressSink
from .runlog import RunLog
from .settings import Settings
from .status import LedgerEntry, RunStatus, RunStatusStore, SelectionStore, SyncSelection
from .sweeper import DeletionSweeper
from .tags import MutagenTagIO, TagIO
from .transcoder import ProcessRunner, SubprocessRunner, TranscodeOrchestrator, UnitResult

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Result of a sync run."""

    success: bool
    cancelled: bool = False
    full_rebuild: bool = False
    tracks_written: int = 0
    tracks_failed: int = 0
    playlists_written: int = 0
    files_deleted: int = 0
    bytes_written: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)
    audits: list[AuditResult] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def summary(self) -> str:
        lines = []
        if self.full_rebuild:
            lines.append("  Rebuilt target folder")
        if self.files_deleted:
            lines.append(f"  Deleted {self.files_deleted} obsolete files")
        if self.tracks_written:
            lines.append(f"  Wrote {self.tracks_written} tracks ({self.bytes_written / (1024 * 1024):.1f} MB)")
        if self.tracks_failed:
            lines.append(f"  {self.tracks_failed} tracks failed")
        if self.playlists_written:
            lines.append(f"  Wrote {self.playlists_written} playlists")
        if self.errors:
            lines.append(f"  {len(self.errors)} errors occurred")
        findings = sum(len(a.lines) for a in self.audits)
        if findings:
            lines.append(f"  {findings} audit findings (see log)")

        if self.cancelled:
            status = "Sync cancelled"
        elif self.success:
            status = "Sync completed"
        else:
            status = "Sync completed with errors"

        if not lines:
            return f"{status}: no changes made."
        return f"{status}:\n" + "\n".join(lines)


class SyncRunner:
    """
    Runs the mirror for one Settings object.

    The token is owned by the runner; call runner.cancel() from another
    thread, or CancelSentinel(app_dir).request() from another process.
    """

    def __init__(
        self,
        settings: Settings,
        tag_io: Optional[TagIO] = None,
        process_runner: Optional[ProcessRunner] = None,
        token: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressSink] = None,
    ):
        self.settings = settings
        self.tag_io = tag_io or MutagenTagIO()
        self.process_runner = process_runner or SubprocessRunner(settings.transcode_timeout)
        self.token = token or CancellationToken(CancelSentinel(settings.resolved_app_dir))
        self.progress = ProgressReporter(progress_callback)

        self.target_root = Path(settings.target_folder)
        self.metadata_store = MetadataStore(self.target_root)
        self.selection_store = SelectionStore(self.target_root)
        self.status_store = RunStatusStore(self.target_root)

    def cancel(self) -> None:
        self.token.cancel()

    # ── Public API ──────────────────────────────────────────────────────────

    def run(self) -> SyncResult:
        """
        Run one sync.

        Raises:
            SettingsError if the settings are unusable (nothing is touched).
        """
        self.settings.validate()
        self.token.reset()

        start = time.monotonic()
        result = SyncResult(success=True)
        status: Optional[RunStatus] = None
        run_log: Optional[RunLog] = None

        try:
            self.progress.stage("Reading previous run")
            previous_status = self.status_store.load()
            previous_model = self.metadata_store.load()

            model = self._scan(previous_model)
            selection = self._load_selection(model)
            plan = self._plan(model, selection, previous_status)
            result.full_rebuild = plan.full_rebuild

            self.progress.stage("Deleting obsolete files")
            report = DeletionSweeper(self.token).sweep(
                self.target_root, plan.desired, plan.full_rebuild, target_file_extensions(model)
            )
            result.files_deleted = len(report.deleted_files)
            for message in report.errors:
                result.errors.append(("sweep", message))

            # Target may have just been emptied: write bookkeeping back first
            status = RunStatus(fingerprint=plan.fingerprint)
            self.metadata_store.save(model)
            self.selection_store.save(selection)
            self.status_store.save(status)

            run_log = RunLog(self.target_root)
            run_log.open()
            self._log_header(run_log, model, plan)

            self._sync_tracks(plan, status, result)
            self._sync_playlists(model, plan, status, result)
            self._verify(model, plan, result)

            self.progress.stage("Running audits")
            result.audits = run_audits(model, plan.desired)

            status.errors = [f"{item}: {message}" for item, message in result.errors]
            status.finish()
            self.status_store.save(status)
            self.metadata_store.save(model)

            result.success = not result.has_errors
            self._log_footer(run_log, status, result, start)

        except SyncCancelled:
            logger.info("Sync cancelled")
            self._record_cancel(result, status, run_log)

        except KeyboardInterrupt:
            logger.info("Sync interrupted")
            self.token.cancel()
            self._record_cancel(result, status, run_log)
            raise

        finally:
            if run_log is not None:
                run_log.close()
            self.progress.report(primary=result.summary.splitlines()[0], percent=100.0, completed=True)

        logger.info(result.summary)
        return result

    def _record_cancel(self, result: SyncResult, status: Optional[RunStatus], run_log: Optional[RunLog]) -> None:
        result.cancelled = True
        result.success = False
        if status is not None:
            status.errors = [f"{item}: {message}" for item, message in result.errors]
            status.finish(cancelled=True)
            self.status_store.save(status)
        if run_log is not None:
            run_log.write("Sync cancelled")

    # ── Stages ──────────────────────────────────────────────────────────────

    def _scan(self, previous_model: Optional[ContentModel]) -> ContentModel:
        self.progress.stage("Scanning files")
        scanner = LibraryScanner(
            self.settings.source_folder,
            self.tag_io,
            self.settings.audio_extensions,
            self.token,
            self.progress,
        )
        cached = previous_model.tracks if previous_model is not None else None
        scan = scanner.scan(cached_metadata=cached)
        self.token.check()
        return build_content_model(scan, self.settings)

    def _load_selection(self, model: ContentModel) -> SyncSelection:
        selection = self.selection_store.load()
        selection.delete_obsolete(model)
        return selection

    def _plan(self, model: ContentModel, selection: SyncSelection, previous_status: Optional[RunStatus]) -> SyncPlan:
        self.progress.stage("Planning")
        previous_fingerprint = previous_status.fingerprint if previous_status is not None else None
        return SyncPlanner(self.settings, self.token).plan(model, selection, previous_fingerprint)

    def _sync_tracks(self, plan: SyncPlan, status: RunStatus, result: SyncResult) -> None:
        items = plan.tracks_to_sync
        if not items:
            return
        self.progress.stage(f"Copying and converting {len(items):,} tracks")

        orchestrator = TranscodeOrchestrator(
            self.process_runner,
            self.settings.workers,
            self.token,
            self.settings.resolve_ffmpeg() or "ffmpeg",
            self.settings.bit_rate,
            self.progress,
        )
        unit_results = orchestrator.run(items)
        for unit in unit_results:
            self._record_unit(unit, status, result)

        # Units skipped because of cancellation have no result
        self.token.check()

    def _record_unit(self, unit: UnitResult, status: RunStatus, result: SyncResult) -> None:
        status.ledger[unit.target_path] = LedgerEntry(
            source_path=unit.source_path,
            success=unit.success,
            bytes=unit.bytes,
            error=unit.error_message,
        )
        if unit.success:
            result.tracks_written += 1
            result.bytes_written += unit.bytes
        else:
            result.tracks_failed += 1
            result.errors.append((unit.source_path, unit.error_message))

    def _sync_playlists(self, model: ContentModel, plan: SyncPlan, status: RunStatus, result: SyncResult) -> None:
        items = plan.playlists_to_sync
        if not items:
            return
        self.progress.stage(f"Writing {len(items):,} playlists")

        for i, item in enumerate(items, start=1):
            self.token.check()
            self.progress.step(i, len(items), f"Writing playlist {Path(item.source_path).name}")
            try:
                write_target_playlist(
                    item.source_path,
                    item.target_path,
                    model,
                    include=plan.desired,
                    record_error=lambda message, src=item.source_path: result.errors.append((src, message)),
                )
            except OSError as e:
                logger.error(f"Failed to write playlist {item.target_path}: {e}")
                result.errors.append((item.source_path, f"Failed to write playlist: {e}"))
                status.ledger[item.target_path] = LedgerEntry(item.source_path, False, error=str(e))
                continue
            size = Path(item.target_path).stat().st_size
            status.ledger[item.target_path] = LedgerEntry(item.source_path, True, bytes=size)
            result.playlists_written += 1

    def _verify(self, model: ContentModel, plan: SyncPlan, result: SyncResult) -> None:
        self.progress.stage("Verifying playlists")
        problems: list[str] = []
        for source in sorted(plan.desired_playlists):
            self.token.check()
            verify_target_playlist(model.source_to_target[source], problems)
        for message in problems:
            result.errors.append(("verify", message))

    # ── Run log ─────────────────────────────────────────────────────────────

    def _log_header(self, run_log: RunLog, model: ContentModel, plan: SyncPlan) -> None:
        run_log.write(f"Sync started: {self.settings.source_folder} → {self.settings.target_folder}")
        run_log.write(f"Bit rate: {self.settings.bit_rate}, workers: {self.settings.workers}")
        run_log.write(
            f"{model.track_count} tracks, {len(model.albums)} albums, "
            f"{len(model.playlist_paths)} playlists in source"
        )
        for line in plan.summary.splitlines():
            run_log.write(line)

    def _log_footer(self, run_log: RunLog, status: RunStatus, result: SyncResult, start: float) -> None:
        run_log.section("Successes", status.successes)
        run_log.section("Failures", status.failures)
        run_log.section("Errors", [f"{item}: {message}" for item, message in result.errors])
        for audit in result.audits:
            for line in format_audit(audit).splitlines():
                run_log.write(line)
        elapsed = (time.monotonic() - start) / 60.0
        run_log.write(f"Elapsed time: {elapsed:.2f} minutes")
        for line in result.summary.splitlines():
            run_log.write(line)
