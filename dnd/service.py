# dnd/service.py
"""
Daemon composition and lifecycle.

start:  validate settings → logging → single-instance check → spool layout →
        lock → detach (unless foreground) → event loop with the spool worker
stop:   SIGTERM to the pid in the lock file
status: inspect the lock file

Every fatal path ends in one teardown: observer stopped (by the worker),
lock removed, log handlers flushed and closed.
"""
from __future__ import annotations

import asyncio
import json
import signal

from dnd.config import Settings, settings as default_settings, validate_or_warn
from dnd.core.dispatch.engine import DispatchEngine
from dnd.core.errors import AlreadyRunning, DndError
from dnd.infra.daemonizer import daemonize
from dnd.infra.fs_watch import CloseWriteWatcher
from dnd.infra.logging_config import close_logging, get_logger, setup_logging
from dnd.infra.metrics import get_metrics_collector
from dnd.infra.pid_lock import LockState, LockStatus, ProcessLock
from dnd.infra.spool_store import SpoolStore
from dnd.infra.spool_worker import SpoolWorker
from dnd.transport.relay import RelayTransport, ScpRelay

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NOT_RUNNING = 3

SHUTDOWN_SIGNALS = (
    signal.SIGTERM,
    signal.SIGINT,
    signal.SIGHUP,
    signal.SIGQUIT,
    signal.SIGABRT,
)


class DaemonService:
    """
    Usage:
        service = DaemonService()
        sys.exit(service.start())
    """

    def __init__(self, config: Settings | None = None, relay: RelayTransport | None = None):
        self.settings = config or default_settings
        self.lock = ProcessLock(self.settings.pid_file)
        self.store = SpoolStore(
            self.settings.spool_dir, hostname=self.settings.local_hostname,
        )
        self.relay = relay or ScpRelay(self.settings.scp_path, self.settings.scp_options)
        self._lock_held = False
        self.received_signal: int | None = None

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def start(self, foreground: bool | None = None) -> int:
        """Run the daemon to completion and return the process exit status."""
        foreground = self.settings.foreground if foreground is None else foreground

        try:
            warnings = validate_or_warn(self.settings)
        except RuntimeError as exc:
            self._configure_logging(console=True)
            logger.critical(str(exc))
            return EXIT_FAILURE

        self._configure_logging(console=True)
        for w in warnings:
            logger.warning(w)

        try:
            self._prepare()
            if not foreground:
                daemonize(self.lock, umask=self.settings.daemon_umask)
                self._configure_logging(console=False)
            logger.info(f"Daemon started (pid: {self.lock.pid}, host: {self.settings.local_hostname})")
            asyncio.run(self._serve())
        except AlreadyRunning as exc:
            logger.error(f"{exc.detail}. Exiting.")
            return exc.exit_code
        except DndError as exc:
            logger.critical(f"{type(exc).__name__}: {exc.detail}")
            return exc.exit_code
        except Exception as exc:
            logger.critical(f"Daemon died unexpectedly: {exc}", exc_info=True)
            return EXIT_FAILURE
        finally:
            self._teardown()

        return EXIT_OK

    def _configure_logging(self, console: bool) -> None:
        try:
            setup_logging(
                level=self.settings.log_level,
                use_json=self.settings.log_json,
                log_file=self.settings.log_file,
                console=console,
                hostname=self.settings.local_hostname,
            )
        except OSError as exc:
            setup_logging(
                level=self.settings.log_level,
                use_json=self.settings.log_json,
                console=console,
            )
            logger.error(f"Cannot open log file {self.settings.log_file}: {exc}")

    def _prepare(self) -> None:
        """
        Raises:
            AlreadyRunning, StorageUnavailable, LockWriteFailed
        """
        self.lock.acquire()
        self._lock_held = True

        logger.debug("Verifying spool directory...")
        self.store.ensure_layout()

    def build_worker(self) -> SpoolWorker:
        engine = DispatchEngine(
            self.store, self.relay, local_hostname=self.settings.local_hostname,
        )
        watcher = CloseWriteWatcher(
            self.store.queue_dir,
            polling=self.settings.watch_polling,
            polling_interval=self.settings.watch_polling_interval,
        )
        return SpoolWorker(self.store, engine, watcher)

    async def _serve(self) -> None:
        """
        Raises:
            SpoolStorageError: propagated from the worker
        """
        loop = asyncio.get_running_loop()
        stop = asyncio.Event()
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, self._on_signal, sig, stop)

        worker = self.build_worker()
        worker_task = asyncio.create_task(worker.run(stop), name="spool_worker")
        stop_task = asyncio.create_task(stop.wait(), name="stop_token")

        try:
            await asyncio.wait({worker_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

            if not worker_task.done():
                await self._drain(worker, worker_task)

            # Re-raises whatever killed the worker
            if not worker_task.cancelled():
                worker_task.result()
        finally:
            stop_task.cancel()
            for sig in SHUTDOWN_SIGNALS:
                loop.remove_signal_handler(sig)

    async def _drain(self, worker: SpoolWorker, worker_task: asyncio.Task) -> None:
        """Give the in-flight entry the grace period, then cancel it."""
        grace = self.settings.shutdown_grace_seconds
        done, _ = await asyncio.wait({worker_task}, timeout=grace)
        if done:
            return

        logger.warning(
            f'Entry "{worker.current}" still in flight after {grace}s; cancelling. '
            "It stays in queue for the next start."
        )
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass

    def _on_signal(self, sig: int, stop: asyncio.Event) -> None:
        if self.received_signal is None:
            self.received_signal = sig
            logger.info(f"Caught signal {signal.Signals(sig).name}, shutting down")
        stop.set()

    def _teardown(self) -> None:
        if self._lock_held:
            self.lock.remove()
            self._lock_held = False
            snapshot = get_metrics_collector().get_metrics()
            logger.info(f"Metrics at shutdown: {json.dumps(snapshot, sort_keys=True)}")
            logger.info("Daemon stopped")
        close_logging()

    # ------------------------------------------------------------------
    # stop / status
    # ------------------------------------------------------------------

    def stop(self) -> bool:
        """SIGTERM the running instance. False if none is running."""
        return self.lock.signal_owner(signal.SIGTERM)

    def status(self) -> LockStatus:
        return self.lock.status()


def status_exit_code(status: LockStatus) -> int:
    if status.state is LockState.RUNNING:
        return EXIT_OK
    if status.state is LockState.STALE:
        return EXIT_FAILURE
    return EXIT_NOT_RUNNING


def describe_status(status: LockStatus) -> str:
    if status.state is LockState.RUNNING:
        return f"dnd is running (pid: {status.pid})"
    if status.state is LockState.STALE:
        return f"dnd is not running (stale pidfile, pid: {status.pid})"
    return "dnd is not running"
