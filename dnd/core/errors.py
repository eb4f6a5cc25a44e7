# dnd/core/errors.py
"""
Typed errors for the spool daemon.

Each fatal error carries the process exit status it maps to.  The service
layer catches ``DndError`` subtypes at startup/shutdown and converts them to
exit statuses without embedding that mapping in the components themselves.
Per-entry problems (``MalformedRecord``) never leave the dispatch engine.
"""
from __future__ import annotations


class DndError(Exception):
    """Base class for all daemon errors."""

    exit_code: int = 1

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class StorageUnavailable(DndError):
    """Spool tree cannot be created or written (3)."""

    exit_code = 3


class AlreadyRunning(DndError):
    """Lock file names a live process (4)."""

    exit_code = 4

    def __init__(self, pid: int):
        self.pid = pid
        super().__init__(f"Another instance (pid: {pid}) seems to be running")


class LockWriteFailed(DndError):
    """Lock file cannot be written (5)."""

    exit_code = 5


class SpoolStorageError(DndError):
    """A state transition could not be persisted (6)."""

    exit_code = 6


class MoveFailed(SpoolStorageError):
    """Rename into a state directory failed."""

    def __init__(self, path, target, reason: str):
        self.path = path
        self.target = target
        super().__init__(f"Cannot move {path} to {target}: {reason}")


class OutcomeAppendFailed(SpoolStorageError):
    """Diagnostic block could not be appended to an entry."""


class DaemonizeFailed(DndError):
    """fork()/setsid() failed (7)."""

    exit_code = 7


class MalformedRecord(DndError):
    """Spool file cannot be opened, read or decoded."""

    def __init__(self, path, reason: str):
        self.path = path
        super().__init__(f"Cannot parse {path}: {reason}")
