from __future__ import annotations

from typing import Any, Optional

from deploy_pipeline.pipeline.context import RunContext
from deploy_pipeline.pipeline.events import EventType
from deploy_pipeline.pipeline.types import RolloutStatus
from deploy_pipeline.stages.deploy.cluster import WorkloadStatus
from deploy_pipeline.stages.deploy.resources import load_manifests, select_workload

from .verifier import RolloutVerifier, Transition


def stage_verify(ctx: RunContext) -> dict[str, Any]:
    workload = ctx.state.workload
    if workload is None:
        # Standalone verification of a rollout triggered elsewhere.
        project = ctx.inputs.project
        resources = load_manifests(project.manifests_path(ctx.inputs.repo_root))
        workload = select_workload(resources, project.workload)
        ctx.state.workload = workload

    def _on_poll(
        poll: int, observed: Optional[WorkloadStatus], status: RolloutStatus | None
    ) -> None:
        if observed is None:
            ctx.emit(EventType.ROLLOUT_READ_ERROR, stage="verify", poll=poll)
            return
        ctx.emit(
            EventType.ROLLOUT_POLL,
            stage="verify",
            poll=poll,
            status=status.value if status else None,
            observed=observed.to_dict(),
        )

    def _on_transition(t: Transition) -> None:
        ctx.emit(EventType.ROLLOUT_TRANSITION, stage="verify", **t.to_dict())

    verifier = RolloutVerifier(
        ctx.services.cluster,
        poll_interval_s=ctx.inputs.poll_interval_s,
        clock=ctx.services.clock,
        sleep=ctx.services.sleep,
        cancel=ctx.cancel,
        on_poll=_on_poll,
        on_transition=_on_transition,
    )
    report = verifier.verify(workload, ctx.inputs.deadline_s)
    ctx.state.rollout = report

    ctx.emit(
        EventType.ROLLOUT_FINISH,
        stage="verify",
        workload=workload.key,
        status=report.status.value,
        polls=report.polls,
        reads=report.reads,
        read_errors=report.read_errors,
    )

    out: dict[str, Any] = {
        "workload": workload.key,
        "rollout_status": report.status.value,
        "failure_reasons": list(report.failure_reasons),
        "transitions": [t.to_dict() for t in report.transitions],
        "_metrics": {
            "polls": report.polls,
            "reads": report.reads,
            "read_errors": report.read_errors,
            "elapsed_s": round(report.elapsed_s, 3),
        },
    }
    if not report.healthy:
        out["_failed"] = True
        out["reason"] = report.status.reason
        out["message"] = (
            "; ".join(report.failure_reasons)
            or f"rollout of {workload.key} ended {report.status.value}"
        )
    return out
