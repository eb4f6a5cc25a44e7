# dnd/infra/pid_lock.py
"""
Single-instance lock based on a pid file.

The file holds the owner's pid as decimal text.  A file naming a live process
blocks a second start; a file naming a dead process is a crash leftover and is
overwritten with a warning.  Only a graceful shutdown removes it.
"""
from __future__ import annotations

import os
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from dnd.core.errors import AlreadyRunning, LockWriteFailed
from dnd.infra.logging_config import get_logger

logger = get_logger(__name__)


class LockState(str, Enum):
    ABSENT = "absent"
    STALE = "stale"
    RUNNING = "running"


@dataclass(frozen=True)
class LockStatus:
    state: LockState
    pid: int | None = None


def pid_alive(pid: int) -> bool:
    """Probe with signal 0. Anything but ESRCH counts as alive."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except OSError:
        # EPERM: exists but owned by someone else
        return True
    return True


class ProcessLock:
    """
    Pid-file lock held by one daemon instance.

    Usage:
        lock = ProcessLock(settings.pid_file)
        lock.acquire()      # raises AlreadyRunning
        ...
        lock.remove()
    """

    def __init__(self, path: str | Path, pid: int | None = None):
        self.path = Path(path)
        self.pid = pid if pid is not None else os.getpid()

    def read(self) -> int | None:
        """Recorded pid, or None if the file is missing or garbled."""
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning(f"Cannot read pidfile {self.path}: {exc}")
            return None
        try:
            return int(text.splitlines()[0]) if text else None
        except ValueError:
            logger.warning(f"Garbled pidfile {self.path}: {text[:20]!r}")
            return None

    def running(self) -> int | None:
        """Pid of a live owner other than us, if any."""
        pid = self.read()
        if pid is None or pid == self.pid:
            return None
        return pid if pid_alive(pid) else None

    def status(self) -> LockStatus:
        pid = self.read()
        if pid is None:
            return LockStatus(LockState.ABSENT)
        if pid_alive(pid):
            return LockStatus(LockState.RUNNING, pid)
        return LockStatus(LockState.STALE, pid)

    def acquire(self) -> None:
        """
        Take the lock for ``self.pid``.

        The first attempt creates the file with O_EXCL, so of two instances
        starting against an absent lock only one wins.  An existing file is
        replaced only when it does not name another live process.

        Raises:
            AlreadyRunning: the file names another live process
            LockWriteFailed: the file cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LockWriteFailed(f"Cannot write pidfile {self.path}: {exc}") from exc

        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            owner = self.running()
            if owner is not None:
                raise AlreadyRunning(owner) from None
            self.write()
            return
        except OSError as exc:
            raise LockWriteFailed(f"Cannot write pidfile {self.path}: {exc}") from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(f"{self.pid}\n")
        except OSError as exc:
            self.remove()
            raise LockWriteFailed(f"Cannot write pidfile {self.path}: {exc}") from exc

    def write(self) -> None:
        """
        Persist ``self.pid``, warning if a stale file is being replaced.

        Raises:
            LockWriteFailed: the file cannot be written
        """
        old = self.read()
        if old is not None and old != self.pid:
            logger.warning(
                f'Stale pidfile: "{self.path}" (pid: {old}). Previous instance may have crashed.'
            )
        self._write_pid()

    def rebind(self, pid: int) -> None:
        """Record a new owner pid (the child after fork)."""
        self.pid = pid
        self._write_pid()

    def _write_pid(self) -> None:
        tmp = self.path.parent / f".tmp.{self.path.name}.{self.pid}"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(f"{self.pid}\n", encoding="utf-8")
            tmp.replace(self.path)
        except OSError as exc:
            raise LockWriteFailed(f"Cannot write pidfile {self.path}: {exc}") from exc

    def remove(self) -> None:
        """Delete the pid file. Missing file is fine."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def signal_owner(self, sig: int = signal.SIGTERM) -> bool:
        """Send ``sig`` to the recorded pid. False if nothing live to signal."""
        pid = self.read()
        if pid is None or not pid_alive(pid):
            return False
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            return False
        logger.info(f"Sent signal {signal.Signals(sig).name} to pid {pid}")
        return True
