# tests/test_spool_store.py
"""Tests for the filesystem spool store"""
import os
import stat
from unittest.mock import patch

import pytest

from dnd.core.errors import MoveFailed, OutcomeAppendFailed, StorageUnavailable
from dnd.core.record import SpoolState
from dnd.infra.spool_store import ENTRY_PREFIX, SpoolStore


class TestLayout:
    def test_creates_all_state_directories(self, tmp_path):
        store = SpoolStore(tmp_path / "spool", hostname="node-a")
        store.ensure_layout()
        for state in SpoolState:
            assert (tmp_path / "spool" / state.value).is_dir()

    def test_directories_are_group_writable_regardless_of_umask(self, tmp_path):
        old = os.umask(0o077)
        try:
            store = SpoolStore(tmp_path / "spool", hostname="node-a")
            store.ensure_layout()
        finally:
            os.umask(old)
        mode = stat.S_IMODE(os.stat(store.queue_dir).st_mode)
        assert mode == 0o775

    def test_idempotent(self, store):
        store.ensure_layout()
        assert store.queue_dir.is_dir()

    def test_unusable_root_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = SpoolStore(blocker / "spool", hostname="node-a")
        with pytest.raises(StorageUnavailable) as exc_info:
            store.ensure_layout()
        assert exc_info.value.exit_code == 3


class TestCreateQueued:
    def test_writes_complete_file_in_queue(self, store):
        path = store.create_queued("dst_host = b\n")
        assert path.parent == store.queue_dir
        assert path.name.startswith(ENTRY_PREFIX)
        assert path.read_text() == "dst_host = b\n"

    def test_names_are_unique(self, store):
        a = store.create_queued("x\n")
        b = store.create_queued("x\n")
        assert a != b

    def test_target_dir_override(self, store, tmp_path):
        other = tmp_path / "elsewhere"
        other.mkdir()
        path = store.create_queued("x\n", target_dir=other)
        assert path.parent == other

    def test_missing_directory_raises(self, store, tmp_path):
        with pytest.raises(StorageUnavailable):
            store.create_queued("x\n", target_dir=tmp_path / "missing")

    def test_leaves_no_hidden_files_behind(self, store):
        store.create_queued("x\n")
        assert [p.name.startswith(".") for p in store.queue_dir.iterdir()] == [False]

    def test_failed_write_leaves_nothing_in_queue(self, store):
        with patch("dnd.infra.spool_store.os.fsync", side_effect=OSError(28, "No space left on device")):
            with pytest.raises(StorageUnavailable) as exc_info:
                store.create_queued("dst_host = b\ncmd = echo hi\n")
        assert "No space left" in str(exc_info.value)
        assert store.scan_queue() == []
        assert list(store.queue_dir.iterdir()) == []

    def test_failed_rename_leaves_nothing_in_queue(self, store):
        with patch("dnd.infra.spool_store.os.rename", side_effect=OSError(5, "Input/output error")):
            with pytest.raises(StorageUnavailable):
                store.create_queued("x\n")
        assert list(store.queue_dir.iterdir()) == []


class TestMoveTo:
    def test_keeps_basename(self, store, write_entry):
        path = write_entry("entry1", "dst_host = b\n")
        moved = store.move_to(path, SpoolState.SENT)
        assert moved == store.state_dir(SpoolState.SENT) / "entry1"
        assert moved.read_text() == "dst_host = b\n"
        assert not path.exists()

    def test_missing_source_raises(self, store):
        with pytest.raises(MoveFailed) as exc_info:
            store.move_to(store.queue_dir / "ghost", SpoolState.FAILED)
        assert exc_info.value.exit_code == 6


class TestAppendOutcome:
    def test_appends_timestamped_block(self, store, write_entry):
        path = write_entry("entry1", "dst_host = b\n")
        store.append_outcome(path, "No destination specified")
        text = path.read_text()
        assert text.startswith("dst_host = b\n\n\n")
        assert "(node-a): No destination specified\n" in text

    def test_unwritable_target_raises(self, store):
        with pytest.raises(OutcomeAppendFailed):
            store.append_outcome(store.root / "no" / "such" / "file", "x")


class TestScanQueue:
    def test_oldest_mtime_first_regardless_of_name(self, store, write_entry):
        c = write_entry("c", "x")
        a = write_entry("a", "x")
        b = write_entry("b", "x")
        os.utime(c, (1000, 1000))
        os.utime(a, (3000, 3000))
        os.utime(b, (2000, 2000))
        assert store.scan_queue() == [c, b, a]

    def test_ties_broken_by_name(self, store, write_entry):
        b = write_entry("b", "x")
        a = write_entry("a", "x")
        os.utime(a, (1000, 1000))
        os.utime(b, (1000, 1000))
        assert store.scan_queue() == [a, b]

    def test_skips_hidden_files_and_directories(self, store, write_entry):
        write_entry(".partial", "x")
        (store.queue_dir / "subdir").mkdir()
        visible = write_entry("visible", "x")
        assert store.scan_queue() == [visible]

    def test_empty_queue(self, store):
        assert store.scan_queue() == []

    def test_missing_queue_raises(self, tmp_path):
        store = SpoolStore(tmp_path / "nowhere", hostname="node-a")
        with pytest.raises(StorageUnavailable):
            store.scan_queue()
