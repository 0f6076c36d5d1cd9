from __future__ import annotations

import json
import socket
from pathlib import Path

import pytest
from fakes import FakeClock

from deploy_pipeline.core import RunLockedError, WorkloadLock
from deploy_pipeline.core.locking import lock_file_name

KEY = "deployment/shop/web"


def test_lock_is_exclusive_per_key(tmp_path: Path) -> None:
    first = WorkloadLock(tmp_path, KEY, owner="run-1")
    first.acquire()
    assert first.held and first.path.name == lock_file_name(KEY)

    with pytest.raises(RunLockedError) as excinfo:
        WorkloadLock(tmp_path, KEY, owner="run-2").acquire()
    assert excinfo.value.holder == "run-1"

    # a different workload is independent
    with WorkloadLock(tmp_path, "deployment/shop/worker", owner="run-2") as other:
        assert other.held

    first.release()
    assert not first.path.exists()
    with WorkloadLock(tmp_path, KEY, owner="run-2"):
        pass


def test_waits_up_to_lock_wait_then_fails(tmp_path: Path) -> None:
    clock = FakeClock()
    WorkloadLock(tmp_path, KEY, owner="run-1").acquire()

    waiter = WorkloadLock(
        tmp_path, KEY, owner="run-2", wait_s=3.0, poll_s=1.0, clock=clock, sleep=clock.sleep
    )
    with pytest.raises(RunLockedError):
        waiter.acquire()
    assert clock.sleeps == [1.0, 1.0, 1.0]


def test_waiter_gets_lock_once_released(tmp_path: Path) -> None:
    holder = WorkloadLock(tmp_path, KEY, owner="run-1")
    holder.acquire()
    clock = FakeClock()

    def _sleep(seconds: float) -> None:
        clock.sleep(seconds)
        holder.release()

    waiter = WorkloadLock(
        tmp_path, KEY, owner="run-2", wait_s=10.0, poll_s=1.0, clock=clock, sleep=_sleep
    )
    waiter.acquire()
    assert waiter.held
    assert json.loads(waiter.path.read_text())["owner"] == "run-2"


def test_stale_lock_from_dead_process_is_broken(tmp_path: Path) -> None:
    path = tmp_path / lock_file_name(KEY)
    path.write_text(
        json.dumps(
            {"key": KEY, "owner": "crashed", "hostname": socket.gethostname(), "pid": 2**22 + 7}
        )
    )
    with WorkloadLock(tmp_path, KEY, owner="run-2") as lock:
        assert lock.held
        assert json.loads(path.read_text())["owner"] == "run-2"


def test_release_leaves_foreign_lock_alone(tmp_path: Path) -> None:
    lock = WorkloadLock(tmp_path, KEY, owner="run-1")
    lock.acquire()
    lock.path.write_text(json.dumps({"owner": "someone-else"}))
    lock.release()
    assert lock.path.exists()
