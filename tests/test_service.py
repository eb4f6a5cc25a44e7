# tests/test_service.py
"""Tests for daemon composition: startup checks, signal shutdown, teardown"""
from __future__ import annotations

import asyncio
import os
import signal
from unittest.mock import patch

import pytest

from conftest import FakeRelay
from dnd.config import Settings
from dnd.core.errors import MoveFailed
from dnd.core.record import SpoolState
from dnd.infra.pid_lock import LockState, LockStatus, ProcessLock
from dnd.service import DaemonService, describe_status, status_exit_code


@pytest.fixture(autouse=True)
def keep_test_logging():
    with patch("dnd.service.setup_logging"), patch("dnd.service.close_logging"):
        yield


@pytest.fixture
def config(tmp_path):
    return Settings(
        spool_dir=tmp_path / "spool",
        pid_file=tmp_path / "run" / "dnd.pid",
        log_file=None,
        hostname="node-a",
        foreground=True,
        watch_polling=True,
        watch_polling_interval=0.1,
        shutdown_grace_seconds=0.2,
        _env_file=None,
    )


class SignallingWorker:
    """Sends SIGTERM to this process once the loop is serving, then waits for stop"""

    def __init__(self):
        self.current = None

    async def run(self, stop: asyncio.Event) -> None:
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(stop.wait(), timeout=5)


class BrokenWorker:
    current = None

    async def run(self, stop: asyncio.Event) -> None:
        raise MoveFailed("a", "b", "Read-only file system")


class TestStartupChecks:
    def test_invalid_settings(self, config):
        config.spool_dir = config.spool_dir.relative_to("/")
        assert DaemonService(config).start() == 1

    def test_already_running(self, config):
        ProcessLock(config.pid_file, pid=os.getppid()).write()
        assert DaemonService(config).start() == 4
        assert config.pid_file.read_text() == f"{os.getppid()}\n"

    def test_already_running_leaves_storage_untouched(self, config):
        ProcessLock(config.pid_file, pid=os.getppid()).write()
        with patch.object(ProcessLock, "running", autospec=True, side_effect=ProcessLock.running) as running:
            assert DaemonService(config).start() == 4
        assert running.call_count == 1
        assert not config.spool_dir.exists()

    def test_storage_unavailable(self, config, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        config.spool_dir = blocker / "spool"
        assert DaemonService(config).start() == 3
        assert not config.pid_file.exists()

    def test_lock_write_failed(self, config, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        config.pid_file = blocker / "dnd.pid"
        assert DaemonService(config).start() == 5


class TestLifecycle:
    def test_signal_shuts_down_cleanly(self, config):
        service = DaemonService(config, relay=FakeRelay())
        with patch.object(DaemonService, "build_worker", return_value=SignallingWorker()):
            assert service.start() == 0

        assert service.received_signal == signal.SIGTERM
        assert not config.pid_file.exists()
        for state in SpoolState:
            assert (config.spool_dir / state.value).is_dir()

    def test_bookkeeping_failure_exits_6(self, config):
        service = DaemonService(config, relay=FakeRelay())
        with patch.object(DaemonService, "build_worker", return_value=BrokenWorker()):
            assert service.start() == 6
        assert not config.pid_file.exists()

    @pytest.mark.asyncio
    async def test_in_flight_entry_cancelled_after_grace(self, config):
        service = DaemonService(config, relay=FakeRelay())
        service.store.ensure_layout()
        entry = service.store.queue_dir / "slow"
        entry.write_text("dst_host = localhost\ncmd = sleep 30\n")

        task = asyncio.create_task(service._serve())
        await asyncio.sleep(0.5)
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(task, timeout=10)

        assert service.received_signal == signal.SIGTERM
        assert entry.exists()

    @pytest.mark.asyncio
    async def test_serve_dispatches_backlog(self, config):
        service = DaemonService(config, relay=FakeRelay())
        service.store.ensure_layout()
        (service.store.queue_dir / "e1").write_text("dst_host = localhost\ncmd = /bin/true\n")

        task = asyncio.create_task(service._serve())
        sent = service.store.state_dir(SpoolState.SENT) / "e1"
        for _ in range(50):
            if sent.exists():
                break
            await asyncio.sleep(0.1)
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.wait_for(task, timeout=10)

        assert sent.exists()


class TestStatus:
    def test_exit_codes(self):
        assert status_exit_code(LockStatus(LockState.RUNNING, 1)) == 0
        assert status_exit_code(LockStatus(LockState.STALE, 1)) == 1
        assert status_exit_code(LockStatus(LockState.ABSENT)) == 3

    def test_descriptions(self):
        assert describe_status(LockStatus(LockState.RUNNING, 12)) == "dnd is running (pid: 12)"
        assert "stale" in describe_status(LockStatus(LockState.STALE, 12))

    def test_service_status_reads_lock(self, config):
        ProcessLock(config.pid_file, pid=os.getpid()).write()
        status = DaemonService(config).status()
        assert status.state is LockState.RUNNING
        assert status.pid == os.getpid()
