"""
Tests for locking.py - advisory file locks
"""

import os

import pytest

from core.errors import LockBusy
from core.locking import advisory_lock


def test_creates_parent_and_records_pid(tmp_path):
    path = tmp_path / "nested" / "heartbeat.lock"
    with advisory_lock(path):
        assert path.read_text() == str(os.getpid())


def test_second_holder_refused_when_non_blocking(tmp_path):
    path = tmp_path / "heartbeat.lock"
    with advisory_lock(path):
        with pytest.raises(LockBusy):
            with advisory_lock(path, blocking=False):
                pass


def test_released_on_exit(tmp_path):
    path = tmp_path / "snapshot.lock"
    with advisory_lock(path):
        pass
    with advisory_lock(path, blocking=False):
        pass


def test_released_when_block_raises(tmp_path):
    path = tmp_path / "snapshot.lock"
    with pytest.raises(RuntimeError):
        with advisory_lock(path):
            raise RuntimeError("boom")
    with advisory_lock(path, blocking=False):
        pass
