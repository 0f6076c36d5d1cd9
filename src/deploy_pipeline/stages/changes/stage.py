from __future__ import annotations

from typing import Any

from deploy_pipeline.pipeline.context import RunContext
from deploy_pipeline.pipeline.events import EventType
from deploy_pipeline.pipeline.gate import decide_stages

from .analyzer import analyze_changes


def stage_changes(ctx: RunContext) -> dict[str, Any]:
    inputs = ctx.inputs
    project = inputs.project

    change_set = analyze_changes(
        ctx.services.revisions, inputs.base, inputs.head, project.path_groups
    )
    decision = decide_stages(
        change_set,
        application_group=project.application_group,
        manifests_group=project.manifests_group,
    )
    ctx.state.change_set = change_set
    ctx.state.decision = decision

    ctx.emit(
        EventType.CHANGES_DIFF,
        stage="changes",
        base=change_set.base,
        head=change_set.head,
        paths=len(change_set.paths),
        changed_groups=change_set.changed_groups,
    )
    ctx.emit(EventType.CHANGES_DECISION, stage="changes", **decision.to_dict())

    warnings: list[str] = []
    if not change_set.any_changed:
        warnings.append("No path group changed; nothing to build or deploy")

    return {
        "base": change_set.base,
        "head": change_set.head,
        "groups": dict(change_set.groups),
        "decision": decision.to_dict(),
        "_warnings": warnings,
        "_metrics": {
            "changed_paths": len(change_set.paths),
            "changed_groups": len(change_set.changed_groups),
        },
    }
