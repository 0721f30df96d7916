"""
Exception types raised by MirrorEngine.

Per-item failures (a bad tag, a failed transcode, a dangling playlist
entry) are never raised; they are logged and collected into the run's
error list. Only conditions that stop a whole run surface as exceptions.
"""


class MirrorError(RuntimeError):
    """Base class for all MirrorEngine errors."""


class SettingsError(MirrorError):
    """Settings are incomplete or point at things that don't exist."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("Invalid settings:\n" + "\n".join(f"  {p}" for p in self.problems))


class SyncCancelled(MirrorError):
    """The run was cancelled through its CancellationToken."""

    def __init__(self, message: str = "Sync was cancelled by user"):
        super().__init__(message)


class MetadataError(MirrorError):
    """A persisted bookkeeping file is unreadable or has an unknown version."""
