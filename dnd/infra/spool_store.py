# dnd/infra/spool_store.py
"""
Filesystem spool: the durable queue and its state directories.

Layout:
    <root>/queue/       pending entries (the only place new files are created)
    <root>/sent/        executed locally
    <root>/failed/      terminal failures, diagnostic appended
    <root>/dispatched/  relayed to a peer, note appended

``os.rename`` within one filesystem is the only atomicity primitive: an entry
is either fully in its old directory or fully in the new one.
"""
from __future__ import annotations

import os
import socket
import tempfile
import time
from pathlib import Path

from dnd.core.errors import MoveFailed, OutcomeAppendFailed, StorageUnavailable
from dnd.core.record import SpoolState
from dnd.infra.logging_config import get_logger

logger = get_logger(__name__)

ENTRY_PREFIX = "dnd_notify_"


def timestamp() -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())


def is_hidden(name: str | Path) -> bool:
    """Dot-files are in-progress writes and never entries."""
    return Path(name).name.startswith(".")


class SpoolStore:
    """Owns every filesystem operation on the spool tree."""

    def __init__(
        self,
        root: str | Path,
        *,
        dir_mode: int = 0o775,
        hostname: str | None = None,
    ):
        self.root = Path(root)
        self.dir_mode = dir_mode
        self.hostname = hostname or socket.gethostname()

    def state_dir(self, state: SpoolState) -> Path:
        return self.root / SpoolState(state).value

    @property
    def queue_dir(self) -> Path:
        return self.state_dir(SpoolState.QUEUE)

    def ensure_layout(self) -> None:
        """
        Create the root and the four state directories if missing.

        Raises:
            StorageUnavailable: a directory cannot be created
        """
        for d in [self.root] + [self.state_dir(s) for s in SpoolState]:
            if d.is_dir():
                continue
            try:
                d.mkdir(parents=True, exist_ok=True)
                # mkdir mode is filtered by umask; group write must survive it
                os.chmod(d, self.dir_mode)
            except OSError as exc:
                raise StorageUnavailable(f"Cannot create spool directory {d}: {exc}") from exc
            logger.info(f"Created spool directory {d}")

    def create_queued(self, content: str, target_dir: str | Path | None = None) -> Path:
        """
        Write ``content`` to a new, uniquely named file in the queue.

        The content goes to a hidden, O_EXCL-reserved temp file first and is
        renamed to its visible name only after fsync.  On any failure the temp
        file is removed, so neither the watcher nor the startup scan ever sees
        a partial entry.

        Raises:
            StorageUnavailable: the file cannot be created or written
        """
        directory = Path(target_dir) if target_dir is not None else self.queue_dir
        try:
            fd, name = tempfile.mkstemp(prefix=f".{ENTRY_PREFIX}", dir=directory)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot create entry in {directory}: {exc}") from exc

        tmp = Path(name)
        path = directory / tmp.name[1:]
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.rename(tmp, path)
        except OSError as exc:
            try:
                tmp.unlink()
            except FileNotFoundError:
                pass
            raise StorageUnavailable(f"Cannot write entry {path}: {exc}") from exc

        logger.info(f'Wrote file: "{path}"')
        return path

    def move_to(self, path: str | Path, state: SpoolState) -> Path:
        """
        Rename ``path`` into the directory for ``state``, keeping its basename.

        Raises:
            MoveFailed: source missing or destination not writable
        """
        src = Path(path)
        dst = self.state_dir(state) / src.name
        try:
            os.rename(src, dst)
        except OSError as exc:
            raise MoveFailed(src, dst, exc.strerror or str(exc)) from exc
        logger.debug(f"Moved {src.name} -> {dst.parent.name}/")
        return dst

    def append_outcome(self, path: str | Path, text: str) -> None:
        """
        Append a timestamped diagnostic block to a terminal entry.

        Raises:
            OutcomeAppendFailed: the file cannot be opened or written
        """
        block = f"\n\n{timestamp()} ({self.hostname}): {text}\n"
        try:
            with open(path, "a", encoding="utf-8") as fh:
                fh.write(block)
        except OSError as exc:
            raise OutcomeAppendFailed(f"Cannot append outcome to {path}: {exc}") from exc

    def scan_queue(self) -> list[Path]:
        """
        Regular, non-hidden files directly in the queue, oldest mtime first.

        Raises:
            StorageUnavailable: the queue directory cannot be listed
        """
        entries: list[tuple[float, str, Path]] = []
        try:
            with os.scandir(self.queue_dir) as it:
                for de in it:
                    if is_hidden(de.name) or not de.is_file(follow_symlinks=False):
                        continue
                    try:
                        mtime = de.stat(follow_symlinks=False).st_mtime
                    except FileNotFoundError:
                        # Taken by a concurrent consumer between readdir and stat
                        continue
                    entries.append((mtime, de.name, Path(de.path)))
        except OSError as exc:
            raise StorageUnavailable(f"Cannot list {self.queue_dir}: {exc}") from exc

        entries.sort(key=lambda e: (e[0], e[1]))
        return [p for _, _, p in entries]
