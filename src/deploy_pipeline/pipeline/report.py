from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Optional

from deploy_pipeline.core import atomic_write_json

from .gate import StageDecision
from .stage import StageResult
from .types import RolloutStatus, StageOutcome


class RunStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class FailureRecord:
    stage: str
    reason: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"stage": self.stage, "reason": self.reason, "message": self.message}


@dataclass(slots=True)
class PipelineResult:
    """
    Externally observable outcome of one pipeline run.
    """

    run_id: str
    started_at_utc: str
    finished_at_utc: str
    duration_ms: int
    status: RunStatus

    decision: Optional[StageDecision] = None
    stages: list[StageResult] = field(default_factory=list)
    rollout_status: Optional[RolloutStatus] = None
    failure: Optional[FailureRecord] = None
    events_jsonl: Optional[str] = None
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def stage(self, stage_id: str) -> StageResult:
        for s in self.stages:
            if s.stage == stage_id:
                return s
        raise KeyError(stage_id)

    def outcome(self, stage_id: str) -> StageOutcome:
        return self.stage(stage_id).status

    def summary(self) -> str:
        """One line per stage plus the final verdict, for humans and CI logs."""
        lines = [f"run {self.run_id}: {self.status.value}"]
        for s in self.stages:
            detail = ""
            if s.status == StageOutcome.SKIPPED and s.skip_reason:
                detail = f" ({s.skip_reason})"
            elif s.status == StageOutcome.FAILED:
                detail = f" ({s.failure_reason})"
            lines.append(f"  {s.stage}: {s.status.value}{detail}")
        lines.append(
            "  rollout: "
            + (self.rollout_status.value if self.rollout_status else "not verified")
        )
        if self.failure is not None:
            lines.append(
                f"  failure: {self.failure.stage} -> {self.failure.reason}: "
                f"{self.failure.message}"
            )
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "duration_ms": self.duration_ms,
            "status": self.status.value,
            "decision": self.decision.to_dict() if self.decision else None,
            "stages": [s.to_dict() for s in self.stages],
            "rollout_status": self.rollout_status.value if self.rollout_status else None,
            "failure": self.failure.to_dict() if self.failure else None,
            "events_jsonl": self.events_jsonl,
            "meta": self.meta,
        }

    def write_json(self, path: Path) -> None:
        atomic_write_json(Path(path), self.to_dict())


def _first_failure(stage_results: list[StageResult]) -> Optional[FailureRecord]:
    for s in stage_results:
        if s.status != StageOutcome.FAILED:
            continue
        message = s.error.message if s.error else str(s.outputs.get("message", ""))
        return FailureRecord(
            stage=s.stage, reason=s.failure_reason or "Failed", message=message
        )
    return None


def build_pipeline_result(
    *,
    run_id: str,
    started_at_utc: str,
    finished_at_utc: str,
    duration_ms: int,
    stage_results: list[StageResult],
    decision: StageDecision | None,
    rollout_status: RolloutStatus | None,
    events_jsonl: str | None,
    meta: dict[str, Any] | None = None,
) -> PipelineResult:
    failure = _first_failure(stage_results)
    status = RunStatus.FAILED if failure is not None else RunStatus.SUCCEEDED
    return PipelineResult(
        run_id=run_id,
        started_at_utc=started_at_utc,
        finished_at_utc=finished_at_utc,
        duration_ms=duration_ms,
        status=status,
        decision=decision,
        stages=stage_results,
        rollout_status=rollout_status,
        failure=failure,
        events_jsonl=events_jsonl,
        meta=meta or {},
    )
