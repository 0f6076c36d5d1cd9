from __future__ import annotations

import json
import os
import socket
import threading
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from deploy_pipeline.core import utc_now_iso

from .types import Event


class EventType(str, Enum):
    RUN_ENV = "run.env"
    RUN_START = "run.start"
    RUN_FINISH = "run.finish"

    STAGE_START = "stage.start"
    STAGE_WARN = "stage.warn"
    STAGE_METRICS = "stage.metrics"
    STAGE_SUCCESS = "stage.success"
    STAGE_FAILED = "stage.failed"
    STAGE_SKIPPED = "stage.skipped"

    CHANGES_DIFF = "changes.diff"
    CHANGES_DECISION = "changes.decision"

    BUILD_START = "build.start"
    BUILD_PUSHED = "build.pushed"

    LOCK_ACQUIRED = "lock.acquired"
    LOCK_RELEASED = "lock.released"

    DEPLOY_APPLY = "deploy.apply"
    DEPLOY_RESTART = "deploy.restart"

    ROLLOUT_POLL = "rollout.poll"
    ROLLOUT_READ_ERROR = "rollout.read_error"
    ROLLOUT_TRANSITION = "rollout.transition"
    ROLLOUT_FINISH = "rollout.finish"


class EventSink:
    """Append-only JSON-lines event log for one run."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

        self.emit(
            Event(
                type=EventType.RUN_ENV.value,
                ts_utc=utc_now_iso(),
                run_id="__init__",
                data={
                    "hostname": socket.gethostname(),
                    "pid": os.getpid(),
                    "cwd": str(Path.cwd()),
                },
            )
        )

    def emit(self, event: Event) -> None:
        line = json.dumps(asdict(event), ensure_ascii=False, default=str)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.write("\n")

    def read(self) -> list[dict[str, Any]]:
        with self._lock:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]

    def close(self) -> None:
        return


def make_event(
    *,
    event_type: EventType | str,
    run_id: str,
    stage: Optional[str] = None,
    **data: Any,
) -> Event:
    type_value = (
        event_type.value if isinstance(event_type, EventType) else str(event_type)
    )
    return Event(
        type=type_value,
        ts_utc=utc_now_iso(),
        run_id=run_id,
        stage=stage,
        data=dict(data),
    )
