from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

import structlog

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def output_tail(self, *, limit: int = 400) -> str:
        """Last `limit` characters of stderr (or stdout when stderr is empty)."""
        text = (self.stderr or self.stdout or "").strip()
        return text[-limit:]


def run_command(
    args: Sequence[str],
    *,
    input_text: str | None = None,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout_s: float | None = None,
) -> CommandResult:
    """
    Run an external CLI and capture its output.

    A non-zero exit is returned, not raised: callers map exit codes onto their
    own error types. FileNotFoundError (missing binary) and
    subprocess.TimeoutExpired propagate.
    """
    argv = tuple(str(a) for a in args)
    log.debug("process.run", argv=list(argv), cwd=str(cwd) if cwd else None)

    proc = subprocess.run(
        argv,
        input=input_text,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        timeout=timeout_s,
    )

    result = CommandResult(
        args=argv,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )
    if not result.ok:
        log.debug(
            "process.nonzero_exit",
            program=argv[0],
            returncode=result.returncode,
            output=result.output_tail(limit=200),
        )
    return result
