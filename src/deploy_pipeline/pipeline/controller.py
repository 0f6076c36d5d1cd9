from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Optional, Sequence

from deploy_pipeline.core import (
    ILogger,
    RunProvenance,
    bind,
    clear_bindings,
    configure_logging,
    get_logger,
    monotonic_ms,
    new_run_id,
    utc_now_iso,
)
from deploy_pipeline.stages import (
    stage_build,
    stage_changes,
    stage_deploy,
    stage_verify,
)
from deploy_pipeline.stages.changes import analyze_changes

from .context import PipelineServices, RunContext, RunInputs
from .events import EventSink, EventType
from .gate import BUILD, DEPLOY, StageDecision, decide_stages
from .report import PipelineResult, build_pipeline_result
from .stage import (
    FunctionStage,
    Stage,
    StageResult,
    format_duration_ms,
    run_stage,
    skip_stage,
)
from .types import ChangeSet, StageOutcome, WorkloadRef

CHANGES = "changes"
VERIFY = "verify"

PIPELINE_STAGES: tuple[Stage, ...] = (
    FunctionStage(stage_id=CHANGES, fn=stage_changes),
    FunctionStage(stage_id=BUILD, fn=stage_build),
    FunctionStage(stage_id=DEPLOY, fn=stage_deploy),
    FunctionStage(stage_id=VERIFY, fn=stage_verify),
)

VERIFY_ONLY_STAGES: tuple[Stage, ...] = (
    FunctionStage(stage_id=VERIFY, fn=stage_verify),
)

_GATE_SKIP_REASONS = {
    BUILD: "no application changes",
    DEPLOY: "no application or cluster-manifests changes",
}


def default_logger() -> ILogger:
    configure_logging()
    return get_logger("deploy_pipeline")


class PipelineController:
    """
    Drives one deployment run: changes -> build -> deploy -> verify.

    Stages run strictly in order. After the first failure every remaining
    stage is recorded as skipped, so the report always lists all four.
    """

    def __init__(
        self,
        services: PipelineServices,
        *,
        run_root: Path,
        logger: ILogger | None = None,
        lock: bool = True,
        cancel: threading.Event | None = None,
    ) -> None:
        self.services = services
        self.run_root = Path(run_root)
        self.logger: ILogger = logger or default_logger()
        self.lock = lock
        self.cancel = cancel or threading.Event()

    @property
    def lock_dir(self) -> Path:
        return self.run_root / "locks"

    def plan(self, inputs: RunInputs) -> tuple[ChangeSet, StageDecision]:
        """Analyze and gate only; touches neither the registry nor the cluster."""
        project = inputs.project
        change_set = analyze_changes(
            self.services.revisions, inputs.base, inputs.head, project.path_groups
        )
        decision = decide_stages(
            change_set,
            application_group=project.application_group,
            manifests_group=project.manifests_group,
        )
        return change_set, decision

    def run(
        self,
        inputs: RunInputs,
        *,
        run_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> PipelineResult:
        return self._execute(inputs, PIPELINE_STAGES, run_id=run_id, meta=meta)

    def verify(
        self,
        inputs: RunInputs,
        *,
        workload: WorkloadRef | None = None,
        run_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> PipelineResult:
        """Verify a rollout that was triggered outside this controller."""
        return self._execute(
            inputs, VERIFY_ONLY_STAGES, run_id=run_id, meta=meta, workload=workload
        )

    def _skip_reason(
        self, ctx: RunContext, stage_id: str, results: Sequence[StageResult]
    ) -> Optional[str]:
        decision = ctx.state.decision
        if stage_id in (BUILD, DEPLOY) and decision is not None:
            if not decision.should_run(stage_id):
                return _GATE_SKIP_REASONS[stage_id]
        if stage_id == VERIFY:
            deploy = next((r for r in results if r.stage == DEPLOY), None)
            if deploy is not None and deploy.status != StageOutcome.SUCCEEDED:
                return "nothing deployed"
        return None

    def _execute(
        self,
        inputs: RunInputs,
        stages: Sequence[Stage],
        *,
        run_id: str | None,
        meta: dict[str, Any] | None,
        workload: WorkloadRef | None = None,
    ) -> PipelineResult:
        rid = run_id or new_run_id()
        run_dir = self.run_root / rid
        run_dir.mkdir(parents=True, exist_ok=True)

        events_path = run_dir / "events.jsonl"
        sink = EventSink(events_path)

        started_at = utc_now_iso()
        t0 = monotonic_ms()
        run_meta: dict[str, Any] = {
            "inputs": inputs.to_dict(),
            "provenance": RunProvenance(
                run_id=rid, started_at_utc=started_at
            ).to_dict(),
            **(meta or {}),
        }

        ctx = RunContext(
            run_id=rid,
            run_root=run_dir,
            logger=self.logger,
            events=sink,
            inputs=inputs,
            services=self.services,
            cancel=self.cancel,
            lock_dir=self.lock_dir if self.lock else None,
            meta=run_meta,
        )
        ctx.state.workload = workload

        bind(run_id=rid)
        self.logger.info(
            "Pipeline starting",
            run_id=rid,
            stages=[s.stage_id for s in stages],
            base=inputs.base,
            head=inputs.head,
            run_root=str(run_dir),
        )
        ctx.emit(EventType.RUN_START, **inputs.to_dict())

        results: list[StageResult] = []
        halted_by: Optional[str] = None
        try:
            total = len(stages)
            for idx, st in enumerate(stages, start=1):
                if halted_by is not None:
                    reason: Optional[str] = f"{halted_by} failed"
                else:
                    reason = self._skip_reason(ctx, st.stage_id, results)
                if reason is not None:
                    results.append(skip_stage(ctx=ctx, stage=st, reason=reason))
                    continue

                res = run_stage(ctx=ctx, stage=st, index=idx, total=total)
                results.append(res)
                if res.status == StageOutcome.FAILED:
                    self.logger.error(
                        "Stopping on first failure",
                        stage=st.stage_id,
                        reason=res.failure_reason,
                    )
                    halted_by = st.stage_id
        finally:
            # Releases the workload lock, including on failure and cancellation.
            ctx.resources.close()

        finished_at = utc_now_iso()
        duration = monotonic_ms() - t0

        rollout = ctx.state.rollout
        result = build_pipeline_result(
            run_id=rid,
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            stage_results=results,
            decision=ctx.state.decision,
            rollout_status=rollout.status if rollout is not None else None,
            events_jsonl=str(events_path),
            meta=run_meta,
        )

        report_json = run_dir / "run_report.json"
        result.write_json(report_json)

        ctx.emit(
            EventType.RUN_FINISH,
            status=result.status.value,
            duration_ms=duration,
            report_json=str(report_json),
            failure=result.failure.to_dict() if result.failure else None,
        )
        sink.close()

        self.logger.info(
            "Run complete",
            status=result.status.value,
            duration_ms=duration,
            duration=format_duration_ms(duration),
            report=str(report_json),
            events=str(events_path),
        )
        clear_bindings()
        return result
