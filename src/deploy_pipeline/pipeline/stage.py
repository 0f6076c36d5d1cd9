from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from deploy_pipeline.core import (
    StageError,
    monotonic_ms,
    stage_error_from_exc,
    utc_now_iso,
)

from .context import RunContext
from .events import EventType
from .types import ArtifactRef, StageOutcome


def format_duration_ms(ms: int) -> str:
    """Return a short human-readable duration string."""
    if ms < 1000:
        return f"{ms} ms"
    return f"{ms / 1000:.2f} s"


StageFn = Callable[[RunContext], dict[str, Any] | None]


@dataclass(slots=True)
class FunctionStage:
    """
    Adapter that turns a plain function into a Stage.
    """

    stage_id: str
    fn: StageFn

    def run(self, ctx: RunContext) -> dict[str, Any] | None:
        return self.fn(ctx)


@dataclass(slots=True)
class StageResult:
    stage: str
    status: StageOutcome
    started_at_utc: str
    finished_at_utc: str
    duration_ms: int

    outputs: dict[str, Any] = field(default_factory=dict)
    metrics: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    artifacts: list[ArtifactRef] = field(default_factory=list)
    skip_reason: Optional[str] = None
    error: Optional[StageError] = None

    @property
    def failure_reason(self) -> Optional[str]:
        """Why the stage failed: the exception type or the stage's `reason` output."""
        if self.status != StageOutcome.FAILED:
            return None
        if self.error is not None:
            return self.error.exc_type
        reason = self.outputs.get("reason")
        return str(reason) if reason else "Failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "status": self.status.value,
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "duration_ms": self.duration_ms,
            "outputs": self.outputs,
            "metrics": self.metrics,
            "warnings": self.warnings,
            "artifacts": [a.to_dict() for a in self.artifacts],
            "skip_reason": self.skip_reason,
            "error": self.error.to_dict() if self.error else None,
        }


class Stage(Protocol):
    stage_id: str

    def run(self, ctx: RunContext) -> dict[str, Any] | None: ...


def skip_stage(*, ctx: RunContext, stage: Stage, reason: str) -> StageResult:
    """Record a stage that was never attempted."""
    now = utc_now_iso()
    ctx.emit(EventType.STAGE_SKIPPED, stage=stage.stage_id, reason=reason)
    ctx.stage_logger(stage.stage_id).info("Stage skipped", reason=reason)
    return StageResult(
        stage=stage.stage_id,
        status=StageOutcome.SKIPPED,
        started_at_utc=now,
        finished_at_utc=now,
        duration_ms=0,
        skip_reason=reason,
    )


def run_stage(
    *,
    ctx: RunContext,
    stage: Stage,
    index: int | None = None,
    total: int | None = None,
) -> StageResult:
    """
    Execute one stage and normalize its outcome.

    Exceptions become a failed StageResult carrying a StageError. A stage may
    also report a non-exceptional failure by returning `_failed: True` with a
    `reason` output (used by rollout verification, which finishes normally
    with a non-healthy status).
    """
    stage_id = stage.stage_id
    log = ctx.stage_logger(stage_id)

    t0 = monotonic_ms()
    started_at = utc_now_iso()
    position = f"{index}/{total}" if index is not None and total is not None else None

    ctx.emit(EventType.STAGE_START, stage=stage_id)
    log.info("Stage starting", position=position, started_at=started_at)

    warnings: list[str] = []
    artifacts: list[ArtifactRef] = []
    metrics: dict[str, Any] = {}

    try:
        out = stage.run(ctx) or {}
        if not isinstance(out, dict):
            raise TypeError(
                f"Stage {stage_id} returned {type(out).__name__}, expected dict or None"
            )

        if "_warnings" in out:
            w = out.pop("_warnings")
            if isinstance(w, list):
                warnings.extend(str(x) for x in w)

        if "_metrics" in out:
            m = out.pop("_metrics")
            if isinstance(m, dict):
                metrics.update(m)

        if "_artifacts" in out:
            a = out.pop("_artifacts")
            if isinstance(a, list):
                artifacts.extend(a)

        failed = bool(out.pop("_failed", False))
        status = StageOutcome.FAILED if failed else StageOutcome.SUCCEEDED

        for w in warnings:
            ctx.emit(EventType.STAGE_WARN, stage=stage_id, message=w)
            log.warning(w)

        if metrics:
            ctx.emit(EventType.STAGE_METRICS, stage=stage_id, metrics=metrics)

        finished_at = utc_now_iso()
        duration = monotonic_ms() - t0

        log_fields: dict[str, object] = {
            "status": status.value,
            "position": position,
            "duration_ms": duration,
            "duration": format_duration_ms(duration),
            "warnings": len(warnings),
            "metrics": len(metrics),
            "outputs": sorted(out.keys()) if out else [],
        }
        if artifacts:
            log_fields["artifacts"] = len(artifacts)

        if failed:
            ctx.emit(
                EventType.STAGE_FAILED,
                stage=stage_id,
                duration_ms=duration,
                reason=out.get("reason"),
            )
            log.error("Stage failed", reason=out.get("reason"), **log_fields)
        else:
            ctx.emit(EventType.STAGE_SUCCESS, stage=stage_id, duration_ms=duration)
            log.info("Stage succeeded", **log_fields)

        return StageResult(
            stage=stage_id,
            status=status,
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            outputs=out,
            metrics=metrics,
            warnings=warnings,
            artifacts=artifacts,
        )

    except Exception as e:
        err = stage_error_from_exc(e)
        finished_at = utc_now_iso()
        duration = monotonic_ms() - t0

        ctx.emit(
            EventType.STAGE_FAILED,
            stage=stage_id,
            duration_ms=duration,
            exc_type=err.exc_type,
            message=err.message,
        )
        log.error(
            "Stage failed",
            status=StageOutcome.FAILED.value,
            position=position,
            duration_ms=duration,
            duration=format_duration_ms(duration),
            error=err.message,
            exc_type=err.exc_type,
        )
        log.debug("Stage traceback", traceback=err.traceback)

        return StageResult(
            stage=stage_id,
            status=StageOutcome.FAILED,
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            outputs={},
            metrics=metrics,
            warnings=warnings,
            artifacts=artifacts,
            error=err,
        )
