from __future__ import annotations

from pathlib import Path

import structlog

from deploy_pipeline.core import CredentialError, PublishFailed
from deploy_pipeline.pipeline.types import ArtifactRef

from .builder import CredentialProvider, ImageBuilder, registry_host

log = structlog.get_logger(__name__)


def run_build(
    *,
    builder: ImageBuilder,
    credentials: CredentialProvider,
    context: Path,
    dockerfile: Path,
    target: ArtifactRef,
) -> ArtifactRef:
    """
    Build and publish one image.

    Credentials are acquired before anything is built: a credential failure
    aborts the stage as PublishFailed with no side effects.
    """
    registry = registry_host(target.repository)
    try:
        auth = credentials.registry_auth(registry)
    except CredentialError as exc:
        raise PublishFailed(f"Registry credentials unavailable: {exc}") from exc

    log.info("build.start", image=target.reference, context=str(context))
    builder.build(context=context, dockerfile=dockerfile, target=target)
    published = builder.push(target=target, auth=auth)
    log.info("build.published", image=published.reference, digest=published.digest)
    return published
