from __future__ import annotations

from typing import Any

from deploy_pipeline.pipeline.context import RunContext
from deploy_pipeline.pipeline.events import EventType

from .runner import run_build


def stage_build(ctx: RunContext) -> dict[str, Any]:
    target = ctx.inputs.image
    if target is None:
        raise ValueError("stage_build requires an image repository (--image)")
    if ctx.services.builder is None or ctx.services.credentials is None:
        raise ValueError("stage_build requires an image builder and credentials")

    project = ctx.inputs.project
    repo_root = ctx.inputs.repo_root
    context = project.build_context_path(repo_root)
    dockerfile = context / project.build.dockerfile

    ctx.emit(
        EventType.BUILD_START,
        stage="build",
        image=target.reference,
        context=str(context),
        dockerfile=str(dockerfile),
    )

    published = run_build(
        builder=ctx.services.builder,
        credentials=ctx.services.credentials,
        context=context,
        dockerfile=dockerfile,
        target=target,
    )
    ctx.state.artifact = published

    ctx.emit(
        EventType.BUILD_PUSHED,
        stage="build",
        image=published.reference,
        digest=published.digest,
    )

    return {
        "image": published.reference,
        "digest": published.digest,
        "_artifacts": [published],
    }
