from __future__ import annotations

from typing import Any

from deploy_pipeline.core import WorkloadLock, utc_now_iso
from deploy_pipeline.pipeline.context import RunContext
from deploy_pipeline.pipeline.events import EventType

from .cluster import ApplyResult, restart_token
from .resources import ResourceDefinition, load_manifests, select_workload
from .runner import run_deploy


def stage_deploy(ctx: RunContext) -> dict[str, Any]:
    project = ctx.inputs.project
    manifests_dir = project.manifests_path(ctx.inputs.repo_root)

    resources = load_manifests(manifests_dir)
    workload = ctx.state.workload or select_workload(resources, project.workload)
    ctx.state.workload = workload

    if ctx.lock_dir is not None:
        lock = WorkloadLock(
            ctx.lock_dir,
            workload.key,
            owner=ctx.run_id,
            wait_s=ctx.inputs.lock_wait_s,
        )
        lock.acquire()
        ctx.emit(EventType.LOCK_ACQUIRED, stage="deploy", workload=workload.key)

        def _release() -> None:
            lock.release()
            ctx.emit(EventType.LOCK_RELEASED, workload=workload.key)

        # Released by the controller once verification has finished.
        ctx.resources.callback(_release)

    def _on_apply(resource: ResourceDefinition, result: ApplyResult) -> None:
        ctx.emit(
            EventType.DEPLOY_APPLY,
            stage="deploy",
            resource=result.resource,
            action=result.action.value,
            digest=resource.digest,
        )

    token = restart_token(ctx.run_id, utc_now_iso())
    outcome = run_deploy(
        cluster=ctx.services.cluster,
        resources=resources,
        workload=workload,
        restart_token=token,
        on_apply=_on_apply,
    )
    ctx.state.deploy = outcome

    ctx.emit(
        EventType.DEPLOY_RESTART,
        stage="deploy",
        workload=workload.key,
        token=token,
    )

    return {
        "manifests_dir": str(manifests_dir),
        "workload": workload.key,
        "restart_token": token,
        "applied": outcome.to_dict()["applied"],
        "_metrics": {
            "resources": len(outcome.applied),
            "changed": outcome.changed,
        },
    }
