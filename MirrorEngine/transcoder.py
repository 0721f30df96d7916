"""
Transcoder - Copy or convert audio files into the target with bounded concurrency.

Conversions use FFmpeg:
- FLAC (or any "convert" type) → MP3 at the configured bitrate
- MP3 with a "convert" action   → stream copy (no re-encode)

Files with a "copy" action are copied byte for byte.

Every output is written under a temporary ".partial" name and renamed into
place only when complete, so an interrupted run never leaves a truncated
file under a final name.

The orchestrator runs at most `concurrency` units at once. On cancellation
it stops starting new units; units already running are allowed to finish.
"""

import logging
import os
import shutil
import subprocess
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Protocol

from .addressing import partial_path
from .cancellation import CancellationToken
from .planner import SyncItem
from .progress import ProgressReporter
from .settings import FileAction

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300  # 5 minutes per file


def find_ffmpeg() -> Optional[str]:
    """Find ffmpeg binary. Returns path or None."""
    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg:
        return ffmpeg

    # Common installation locations
    common_paths = [
        # Windows
        r"C:\Program Files\ffmpeg\bin\ffmpeg.exe",
        r"C:\ffmpeg\bin\ffmpeg.exe",
        # macOS (Homebrew)
        "/usr/local/bin/ffmpeg",
        "/opt/homebrew/bin/ffmpeg",
        # Linux
        "/usr/bin/ffmpeg",
    ]

    for path in common_paths:
        if Path(path).exists():
            return path

    return None


def is_ffmpeg_available() -> bool:
    """Check if ffmpeg is available."""
    return find_ffmpeg() is not None


def build_command(
    ffmpeg: str,
    source_path: str | Path,
    output_path: str | Path,
    bit_rate: str,
    copy_codec: bool = False,
) -> list[str]:
    """
    Build the ffmpeg command line for one conversion.

    copy_codec=True stream-copies audio that is already in the target codec
    instead of re-encoding it.
    """
    cmd = [ffmpeg, "-y", "-i", str(source_path)]
    if copy_codec:
        cmd += ["-codec", "copy"]
    else:
        cmd += ["-b:a", bit_rate]
    cmd.append(str(output_path))
    return cmd


# ── Process collaborator ────────────────────────────────────────────────────


@dataclass
class ProcessResult:
    """Outcome of one external process."""

    returncode: int
    stdout: str = ""
    stderr: str = ""


class ProcessRunner(Protocol):
    def execute(self, cmd: list[str]) -> ProcessResult:
        ...


class SubprocessRunner:
    """Runs commands with subprocess.run, one process per call."""

    def __init__(self, timeout: int = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def execute(self, cmd: list[str]) -> ProcessResult:
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",  # Handle non-UTF8 bytes gracefully
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return ProcessResult(returncode=-1, stderr=f"Timed out after {self.timeout}s")
        except OSError as e:
            return ProcessResult(returncode=-1, stderr=str(e))
        return ProcessResult(result.returncode, result.stdout or "", result.stderr or "")


# ── Orchestrator ────────────────────────────────────────────────────────────


@dataclass
class UnitResult:
    """Result of copying or converting one track."""

    item: SyncItem
    success: bool
    bytes: int = 0
    error_message: str = ""

    @property
    def source_path(self) -> str:
        return self.item.source_path

    @property
    def target_path(self) -> str:
        return self.item.target_path


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")


class TranscodeOrchestrator:
    """
    Runs copy/convert units on a bounded thread pool.

    Usage:
        orchestrator = TranscodeOrchestrator(SubprocessRunner(), 4, token, ffmpeg, "256k")
        results = orchestrator.run(plan.tracks_to_sync)
    """

    def __init__(
        self,
        runner: ProcessRunner,
        concurrency: int,
        token: Optional[CancellationToken] = None,
        ffmpeg_path: str = "ffmpeg",
        bit_rate: str = "256k",
        progress: Optional[ProgressReporter] = None,
    ):
        self.runner = runner
        self.concurrency = max(1, concurrency)
        self.token = token or CancellationToken()
        self.ffmpeg_path = ffmpeg_path
        self.bit_rate = bit_rate
        self.progress = progress or ProgressReporter()

    # ── Public API ──────────────────────────────────────────────────────────

    def run(self, items: list[SyncItem]) -> list[UnitResult]:
        """
        Process items and return one result per unit that ran, sorted by target path.

        At most `concurrency` units are handed to the pool at a time and the
        token is checked before each new one, so nothing starts once it is
        cancelled. Units that were never started have no result.

        An interrupt (Ctrl-C) cancels the token, lets running units finish
        and is then re-raised.
        """
        if not items:
            return []

        total = len(items)
        results: list[UnitResult] = []
        pending = iter(items)
        in_flight: dict[Future, SyncItem] = {}
        logger.info(f"Processing {total} files with {self.concurrency} workers")

        pool = ThreadPoolExecutor(max_workers=self.concurrency)
        try:
            self._submit_next(pool, pending, in_flight)
            while in_flight:
                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    item = in_flight.pop(future)
                    results.append(self._collect(future, item))
                    self.progress.step(
                        len(results), total,
                        f"{len(results):,} of {total:,} files processed: {Path(item.source_path).name}",
                    )
                self._submit_next(pool, pending, in_flight)
        except BaseException:
            self.token.cancel()
            raise
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

        if len(results) < total:
            logger.info(f"Skipped {total - len(results)} files after cancellation")
        results.sort(key=lambda r: r.target_path)
        return results

    def _submit_next(self, pool: ThreadPoolExecutor, pending: Iterator[SyncItem], in_flight: dict[Future, SyncItem]) -> None:
        while len(in_flight) < self.concurrency and not self.token.is_cancelled():
            item = next(pending, None)
            if item is None:
                return
            in_flight[pool.submit(self._process, item)] = item

    @staticmethod
    def _collect(future: Future, item: SyncItem) -> UnitResult:
        try:
            return future.result()
        except Exception as e:
            logger.error(f"Worker exception for {item.source_path}: {e}")
            return UnitResult(item, False, error_message=f"Worker error: {e}")

    # ── Units (run in worker threads) ───────────────────────────────────────

    def _process(self, item: SyncItem) -> UnitResult:
        target = Path(item.target_path)
        temp = partial_path(target)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return UnitResult(item, False, error_message=f"Cannot create folder: {e}")

        if item.action == FileAction.CONVERT:
            result = self._convert(item, temp)
        else:
            result = self._copy(item, temp)

        if not result.success:
            _discard(temp)
            logger.warning(f"FAILURE: {item.source_path} → {item.target_path}: {result.error_message}")
            return result

        try:
            os.replace(temp, target)
            result.bytes = target.stat().st_size
        except OSError as e:
            _discard(temp)
            return UnitResult(item, False, error_message=f"Cannot finalize {target}: {e}")

        logger.debug(f"Wrote {target} ({result.bytes} bytes)")
        return result

    def _copy(self, item: SyncItem, temp: Path) -> UnitResult:
        try:
            shutil.copyfile(item.source_path, temp)
        except OSError as e:
            return UnitResult(item, False, error_message=str(e))
        return UnitResult(item, True)

    def _convert(self, item: SyncItem, temp: Path) -> UnitResult:
        cmd = build_command(self.ffmpeg_path, item.source_path, temp, self.bit_rate, item.copy_codec)
        logger.debug(f"Running: {' '.join(cmd)}")
        outcome = self.runner.execute(cmd)

        if outcome.returncode != 0:
            return UnitResult(item, False, error_message=f"ffmpeg failed ({outcome.returncode}): {outcome.stderr[-500:]}")
        if not temp.exists():
            return UnitResult(item, False, error_message="Output file not created")
        return UnitResult(item, True)
