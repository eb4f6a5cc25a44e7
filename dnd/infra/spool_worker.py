# dnd/infra/spool_worker.py
"""
Queue consumer: reconciliation scan followed by the watch loop.

Entries are handed to the dispatch engine one at a time, in the order they
were seen.  The watcher is subscribed before the scan runs, so an entry that
arrives during the scan shows up as an event afterwards; when the scan has
already taken it, the engine reports it as vanished and nothing happens.
"""
from __future__ import annotations

import asyncio
from pathlib import Path

from dnd.core.dispatch.engine import DispatchEngine, DispatchResult
from dnd.core.errors import SpoolStorageError
from dnd.infra.fs_watch import CloseWriteWatcher
from dnd.infra.logging_config import get_logger
from dnd.infra.metrics import inc_counter
from dnd.infra.spool_store import SpoolStore

logger = get_logger(__name__)


class SpoolWorker:
    """
    Usage:
        worker = SpoolWorker(store, engine, CloseWriteWatcher(store.queue_dir))
        await worker.run(stop_event)
    """

    def __init__(
        self,
        store: SpoolStore,
        engine: DispatchEngine,
        watcher: CloseWriteWatcher,
    ):
        self._store = store
        self._engine = engine
        self._watcher = watcher
        self.current: Path | None = None
        self.processed = 0

    async def reconcile(self, stop: asyncio.Event | None = None) -> list[DispatchResult]:
        """Dispatch whatever is already in the queue, oldest first."""
        paths = self._store.scan_queue()
        if paths:
            logger.info(f"Startup scan: {len(paths)} file(s) waiting in {self._store.queue_dir}")

        results = []
        for path in paths:
            if stop is not None and stop.is_set():
                logger.info("Stop requested during startup scan")
                break
            result = await self._dispatch(path)
            if result is not None:
                results.append(result)
        return results

    async def run(self, stop: asyncio.Event) -> None:
        """
        Subscribe, reconcile, then dispatch events until ``stop`` is set.

        Raises:
            SpoolStorageError: a state transition could not be persisted
        """
        async with self._watcher:
            await self.reconcile(stop)

            while not stop.is_set():
                path = await self._next_event(stop)
                if path is None:
                    break
                await self._dispatch(path)

        logger.info(f"Watch loop finished after {self.processed} entries")

    async def _next_event(self, stop: asyncio.Event) -> Path | None:
        get_task = asyncio.create_task(self._watcher.get())
        stop_task = asyncio.create_task(stop.wait())
        try:
            done, _ = await asyncio.wait(
                {get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (get_task, stop_task):
                if not task.done():
                    task.cancel()

        if get_task in done:
            return get_task.result()
        return None

    async def _dispatch(self, path: Path) -> DispatchResult | None:
        self.current = path
        try:
            result = await self._engine.process_entry(path)
            self.processed += 1
            return result
        except SpoolStorageError:
            raise
        except Exception as exc:
            # Entry stays in queue; next restart scan retries it
            logger.error(f'Unexpected error dispatching "{path}": {exc}', exc_info=True)
            inc_counter("worker_loop_errors")
            return None
        finally:
            self.current = None
