# dnd/infra/fs_watch.py
"""
Filesystem watch primitives built on watchdog.

``CloseWriteWatcher`` turns close-after-write events in one directory into an
asyncio queue of paths.  The native observer (inotify on Linux) reports
``FileClosedEvent``; a hidden temp file renamed to a visible name in the
directory counts as complete too.  The polling observer has no close events,
so in polling mode created/modified snapshots are used as well.

``watch_for_outcome`` waits for a named file to land in a success or a
failure directory.  It is the waiting half of a submit-and-wait producer.

Usage:
    async with CloseWriteWatcher(store.queue_dir) as watcher:
        path = await watcher.get()

    status = await watch_for_outcome("send_ab12", sent_dir, failed_dir, timeout=60)
"""
from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from dnd.infra.logging_config import get_logger
from dnd.infra.metrics import DispatchMetrics
from dnd.infra.spool_store import is_hidden

logger = get_logger(__name__)

_OBSERVER_JOIN_TIMEOUT = 5.0


def _make_observer(polling: bool, polling_interval: float):
    if polling:
        return PollingObserver(timeout=polling_interval)
    return Observer()


def _event_path(event: FileSystemEvent) -> Path:
    # watchdog may report bytes paths for bytes-scheduled watches
    src = event.src_path
    return Path(src.decode() if isinstance(src, bytes) else src)


def _dest_path(event: FileSystemEvent) -> Path:
    dest = event.dest_path
    return Path(dest.decode() if isinstance(dest, bytes) else dest)


class ClosedFileHandler(FileSystemEventHandler):
    """
    Forward completed regular, non-hidden files to ``callback``.

    An entry is complete when it is closed after writing, or when a hidden
    temp file is renamed to its visible name inside ``directory``.
    """

    def __init__(
        self,
        callback: Callable[[Path], None],
        *,
        polling: bool = False,
        directory: str | Path | None = None,
    ):
        super().__init__()
        self._callback = callback
        self._polling = polling
        self._directory = Path(directory).resolve() if directory is not None else None

    def _deliver(self, path: Path, kind: str) -> None:
        if is_hidden(path):
            return
        DispatchMetrics.watch_event(kind)
        self._callback(path)

    def _forward(self, event: FileSystemEvent, kind: str) -> None:
        if not event.is_directory:
            self._deliver(_event_path(event), kind)

    def on_closed(self, event: FileSystemEvent) -> None:
        self._forward(event, "closed")

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        dest = _dest_path(event)
        # Moves out of the watched directory are the daemon's own transitions
        if self._directory is not None and dest.parent.resolve() != self._directory:
            return
        self._deliver(dest, "moved")

    def on_created(self, event: FileSystemEvent) -> None:
        if self._polling:
            self._forward(event, "created")

    def on_modified(self, event: FileSystemEvent) -> None:
        if self._polling:
            self._forward(event, "modified")


class CloseWriteWatcher:
    """
    Async view of close-after-write events in a single directory.

    Events are produced on the observer thread and handed to the event loop
    with ``call_soon_threadsafe``; ``get()`` returns them in arrival order.
    """

    def __init__(
        self,
        directory: str | Path,
        *,
        polling: bool = False,
        polling_interval: float = 1.0,
    ):
        self.directory = Path(directory)
        self.polling = polling
        self.polling_interval = polling_interval
        self._queue: asyncio.Queue[Path] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer = None

    @property
    def backend(self) -> str:
        return "polling" if self.polling else "native"

    def start(self) -> None:
        """Subscribe. Must be called from the thread running the event loop."""
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        handler = ClosedFileHandler(
            self._enqueue, polling=self.polling, directory=self.directory,
        )
        self._observer = _make_observer(self.polling, self.polling_interval)
        self._observer.schedule(handler, str(self.directory), recursive=False)
        self._observer.start()
        logger.info(f"Watching {self.directory} ({self.backend} observer)")

    def _enqueue(self, path: Path) -> None:
        # Observer thread
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._queue.put_nowait, path)

    async def get(self) -> Path:
        if self._queue is None:
            raise RuntimeError("watcher not started")
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        await asyncio.to_thread(observer.join, _OBSERVER_JOIN_TIMEOUT)
        if observer.is_alive():
            logger.warning("Observer thread did not stop cleanly")
        else:
            logger.info(f"Stopped watching {self.directory}")

    async def __aenter__(self) -> "CloseWriteWatcher":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()


# ---------------------------------------------------------------------------
# Completion watch
# ---------------------------------------------------------------------------

class CompletionStatus(int, Enum):
    """Values double as process exit statuses."""
    OK = 0
    FAIL = 1


class _ArrivalHandler(FileSystemEventHandler):
    """Report when ``filename`` is created in, or moved into, the watched directory."""

    def __init__(self, filename: str, on_arrival: Callable[[], None]):
        super().__init__()
        self._filename = filename
        self._on_arrival = on_arrival

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory and _dest_path(event).name == self._filename:
            self._on_arrival()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and _event_path(event).name == self._filename:
            self._on_arrival()


async def watch_for_outcome(
    filename: str,
    success_dir: str | Path,
    failure_dir: str | Path,
    timeout: float | None = None,
    *,
    polling: bool = False,
    polling_interval: float = 1.0,
) -> CompletionStatus:
    """
    Wait until ``filename`` appears in ``success_dir`` (OK) or ``failure_dir`` (FAIL).

    Both directories are subscribed before the existence check, so a file
    that lands in between is not missed.

    Raises:
        TimeoutError: nothing arrived within ``timeout`` seconds
    """
    loop = asyncio.get_running_loop()
    result: asyncio.Future[CompletionStatus] = loop.create_future()
    name = Path(filename).name

    def settle(status: CompletionStatus) -> None:
        if not result.done():
            result.set_result(status)

    def arrival(status: CompletionStatus) -> Callable[[], None]:
        return lambda: loop.call_soon_threadsafe(settle, status)

    observer = _make_observer(polling, polling_interval)
    observer.schedule(_ArrivalHandler(name, arrival(CompletionStatus.OK)), str(success_dir), recursive=False)
    observer.schedule(_ArrivalHandler(name, arrival(CompletionStatus.FAIL)), str(failure_dir), recursive=False)
    observer.start()

    try:
        if (Path(success_dir) / name).exists():
            settle(CompletionStatus.OK)
        elif (Path(failure_dir) / name).exists():
            settle(CompletionStatus.FAIL)

        try:
            status = await asyncio.wait_for(result, timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f'"{name}" did not complete within {timeout}s') from None
    finally:
        observer.stop()
        await asyncio.to_thread(observer.join, _OBSERVER_JOIN_TIMEOUT)

    logger.info(f'"{name}" finished: {status.name}')
    return status
