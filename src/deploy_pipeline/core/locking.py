from __future__ import annotations

import json
import os
import re
import socket
import time
from pathlib import Path
from typing import Callable

import structlog

from .errors import RunLockedError
from .fs import safe_unlink
from .time import utc_now_iso

log = structlog.get_logger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def lock_file_name(key: str) -> str:
    return _UNSAFE.sub("_", key).strip("_") + ".lock"


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class WorkloadLock:
    """
    Exclusive per-workload run lock backed by an O_EXCL lock file.

    One lock file per workload key under `lock_dir`. A second run either waits
    up to `wait_s` for the holder to release it or fails with RunLockedError.
    Lock files left behind by a dead process on the same host are broken.

      with WorkloadLock(lock_dir, "deployment/shop/web", owner=run_id):
          deploy(); verify()
    """

    def __init__(
        self,
        lock_dir: Path,
        key: str,
        *,
        owner: str,
        wait_s: float = 0.0,
        poll_s: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.key = key
        self.owner = owner
        self.path = Path(lock_dir) / lock_file_name(key)
        self.wait_s = float(wait_s)
        self.poll_s = float(poll_s)
        self._clock = clock
        self._sleep = sleep
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _holder(self) -> dict[str, object] | None:
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None

    def _try_create(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False

        payload = {
            "key": self.key,
            "owner": self.owner,
            "hostname": socket.gethostname(),
            "pid": os.getpid(),
            "acquired_at_utc": utc_now_iso(),
        }
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        return True

    def _break_if_stale(self) -> bool:
        holder = self._holder()
        if holder is None:
            return False
        if holder.get("hostname") != socket.gethostname():
            return False
        pid = holder.get("pid")
        if not isinstance(pid, int) or _pid_alive(pid):
            return False

        log.warning(
            "lock.stale_broken", key=self.key, path=str(self.path), holder=holder
        )
        safe_unlink(self.path)
        return True

    def acquire(self) -> None:
        if self._held:
            return

        deadline = self._clock() + self.wait_s
        while True:
            if self._try_create():
                self._held = True
                log.debug("lock.acquired", key=self.key, owner=self.owner)
                return

            if self._break_if_stale():
                continue

            if self._clock() >= deadline:
                holder = self._holder() or {}
                owner = holder.get("owner")
                raise RunLockedError(self.key, str(owner) if owner else None)

            self._sleep(self.poll_s)

    def release(self) -> None:
        if not self._held:
            return
        holder = self._holder()
        if holder is None or holder.get("owner") == self.owner:
            safe_unlink(self.path)
        self._held = False
        log.debug("lock.released", key=self.key, owner=self.owner)

    def __enter__(self) -> "WorkloadLock":
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()
