from __future__ import annotations

from deploy_pipeline.pipeline.types import RolloutStatus
from deploy_pipeline.stages.deploy.cluster import WorkloadStatus


def classify(status: WorkloadStatus) -> RolloutStatus:
    """
    Map one observation onto the rollout state machine.

    Workload conditions left over from an earlier generation are ignored
    (see WorkloadStatus.failure_reasons); pod failures of the current
    template fail the rollout straight away.

    healthy requires the controller to have observed the current generation
    and every replica (ready or not) to be an updated one, so ready replicas
    of the previous template never count.
    """
    if status.failure_reasons:
        return RolloutStatus.FAILED

    if not status.generation_observed:
        return RolloutStatus.PENDING

    desired = status.desired_replicas
    if (
        status.updated_replicas == desired
        and status.ready_replicas == desired
        and status.replicas == desired
    ):
        return RolloutStatus.HEALTHY

    if status.updated_replicas == 0:
        return RolloutStatus.PENDING
    return RolloutStatus.PROGRESSING
