# dnd/core/dispatch/engine.py
"""
Routing and execution of a single queued entry.

One call to ``process_entry`` takes a file from ``queue`` to exactly one
terminal directory, or leaves it untouched (unparsable, or already gone).
Destinations are tried in file order: the first one naming this host runs the
commands here and ends the walk whatever the result; remote hosts are relayed
to until one copy succeeds.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from dnd.core.errors import MalformedRecord, MoveFailed
from dnd.core.record import MessageRecord, SpoolState, parse_record
from dnd.infra.logging_config import LogContext, get_logger
from dnd.infra.metrics import DispatchMetrics
from dnd.infra.shell_exec import (
    CommandResult,
    commands_succeeded,
    format_failure,
    run_commands,
)
from dnd.infra.spool_store import SpoolStore
from dnd.transport.relay import RelayTransport

logger = get_logger(__name__)

NO_DESTINATION_NOTE = "No destination specified"

CommandRunner = Callable[[Iterable[str]], Awaitable[list[CommandResult]]]


class Outcome(str, Enum):
    SENT = "sent"
    DISPATCHED = "dispatched"
    FAILED = "failed"
    MALFORMED = "malformed"   # left in queue
    VANISHED = "vanished"     # gone before we got to it


@dataclass(frozen=True)
class DispatchResult:
    outcome: Outcome
    path: Path
    detail: str = ""


class DispatchEngine:
    """
    Usage:
        engine = DispatchEngine(store, ScpRelay(), local_hostname="node-a")
        result = await engine.process_entry(path)
    """

    def __init__(
        self,
        store: SpoolStore,
        relay: RelayTransport,
        runner: CommandRunner = run_commands,
        local_hostname: str | None = None,
    ):
        self.store = store
        self.relay = relay
        self.runner = runner
        self.local_hostname = local_hostname or store.hostname

    def is_local(self, host: str) -> bool:
        return host.lower() == self.local_hostname.lower()

    async def process_entry(self, path: str | Path) -> DispatchResult:
        """
        Dispatch one queued file.

        Raises:
            SpoolStorageError: a state transition could not be persisted
        """
        path = Path(path)
        log = LogContext(logger, entry=path.name)

        if not path.is_file():
            log.debug(f'File "{path}" no longer in queue, skipping')
            return self._finish(DispatchResult(Outcome.VANISHED, path))

        with DispatchMetrics.track_dispatch_time():
            try:
                record = parse_record(path, self.local_hostname)
            except MalformedRecord as exc:
                log.error(f"Leaving unreadable entry in queue: {exc.detail}")
                return self._finish(DispatchResult(Outcome.MALFORMED, path, exc.detail))

            if not record.routable:
                log.warning(f'No dst_host in "{path}"')
                return self._finish(self._fail(path, NO_DESTINATION_NOTE, log))

            return self._finish(await self._route(path, record, log))

    async def _route(self, path: Path, record: MessageRecord, log: LogContext) -> DispatchResult:
        attempts: list[tuple[str, int]] = []

        for host in record.destination_hosts:
            hlog = log.bind(dst_host=host)

            if self.is_local(host):
                return await self._execute_locally(path, record, hlog)

            status = await self.relay.send(path, host)
            DispatchMetrics.relay_attempt(host, status == 0)
            if status == 0:
                note = f'Successfully copied file "{path.name}" to {host}:"{path}"'
                moved = self._transition(path, SpoolState.DISPATCHED, note, hlog)
                if moved.outcome is Outcome.DISPATCHED:
                    hlog.info(f'File "{path.name}" copied to host "{host}"')
                return moved

            attempts.append((host, status))
            hlog.warning(f'Error copying file "{path}" via {self.relay.name} (exit {status})')

        tried = ", ".join(f"{h} (exit {s})" for h, s in attempts)
        return self._fail(path, f'Error copying file "{path}". Tried: {tried}', log)

    async def _execute_locally(self, path: Path, record: MessageRecord, log: LogContext) -> DispatchResult:
        results = await self.runner(record.commands)
        ok = commands_succeeded(results)
        DispatchMetrics.local_execution(ok)

        if ok:
            result = self._transition(path, SpoolState.SENT, None, log)
            if result.outcome is Outcome.SENT:
                log.info(f'File "{path}" parsed and executed locally')
            return result

        result = self._fail(path, format_failure(results), log)
        log.info(
            f'Errors when executing locally. Inspect file '
            f'"{self.store.state_dir(SpoolState.FAILED) / path.name}" for more info.'
        )
        return result

    def _fail(self, path: Path, note: str, log: LogContext) -> DispatchResult:
        return self._transition(path, SpoolState.FAILED, note, log)

    def _transition(
        self,
        path: Path,
        state: SpoolState,
        note: str | None,
        log: LogContext,
    ) -> DispatchResult:
        """
        Move into ``state`` and append ``note``.  A failed move gets one
        secondary attempt into ``failed``; if that fails too the error propagates.
        """
        try:
            moved = self.store.move_to(path, state)
        except MoveFailed as exc:
            if not path.exists():
                log.warning(f'File "{path}" disappeared before it could be moved')
                return DispatchResult(Outcome.VANISHED, path, exc.detail)
            if state is SpoolState.FAILED:
                raise
            log.error(f"{exc.detail}; moving to {SpoolState.FAILED.value} instead")
            moved = self.store.move_to(path, SpoolState.FAILED)
            self.store.append_outcome(moved, f"Could not move to {state.value}: {exc.detail}")
            return DispatchResult(Outcome.FAILED, moved, exc.detail)

        if note:
            self.store.append_outcome(moved, note)
        return DispatchResult(Outcome(state.value), moved, note or "")

    @staticmethod
    def _finish(result: DispatchResult) -> DispatchResult:
        DispatchMetrics.entry_finished(result.outcome.value)
        return result
