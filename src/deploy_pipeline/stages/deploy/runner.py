from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import structlog

from deploy_pipeline.pipeline.types import WorkloadRef

from .cluster import ApplyResult, ClusterClient
from .resources import ResourceDefinition, order_resources

log = structlog.get_logger(__name__)

ApplyCallback = Callable[[ResourceDefinition, ApplyResult], None]


@dataclass(slots=True)
class DeployOutcome:
    workload: WorkloadRef
    restart_token: str
    applied: list[ApplyResult] = field(default_factory=list)

    @property
    def changed(self) -> int:
        return sum(1 for a in self.applied if a.changed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "workload": self.workload.to_dict(),
            "restart_token": self.restart_token,
            "applied": [
                {"resource": a.resource, "action": a.action.value} for a in self.applied
            ],
        }


def run_deploy(
    *,
    cluster: ClusterClient,
    resources: Sequence[ResourceDefinition],
    workload: WorkloadRef,
    restart_token: str,
    on_apply: Optional[ApplyCallback] = None,
) -> DeployOutcome:
    """
    Apply `resources` in dependency order, then restart `workload`.

    Any ApplyRejected / ClusterConnectionError propagates immediately: later
    resources are not applied and the restart is never triggered. Resources
    missing from `resources` are left alone on the cluster.
    """
    outcome = DeployOutcome(workload=workload, restart_token=restart_token)

    for resource in order_resources(resources):
        result = cluster.apply(resource)
        outcome.applied.append(result)
        log.info("deploy.applied", resource=result.resource, action=result.action.value)
        if on_apply is not None:
            on_apply(resource, result)

    cluster.restart(workload, restart_token)
    log.info("deploy.restarted", workload=workload.key, token=restart_token)
    return outcome
