from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Optional, Protocol

from deploy_pipeline.pipeline.types import WorkloadRef

from .resources import ResourceDefinition

RESTART_ANNOTATION = "kubectl.kubernetes.io/restartedAt"


class ApplyAction(StrEnum):
    CREATED = "created"
    CONFIGURED = "configured"
    UNCHANGED = "unchanged"


@dataclass(frozen=True, slots=True)
class ApplyResult:
    resource: str
    action: ApplyAction

    @property
    def changed(self) -> bool:
        return self.action != ApplyAction.UNCHANGED


@dataclass(frozen=True, slots=True)
class WorkloadStatus:
    """
    One observation of a workload's rollout.

    `pod_failures` come from pods of the current template only.
    `condition_failures` are workload-level (ProgressDeadlineExceeded,
    ReplicaFailure) and describe the generation the controller last observed,
    so they only count once that is the current one.
    """

    generation: int
    observed_generation: int
    desired_replicas: int
    replicas: int = 0
    updated_replicas: int = 0
    ready_replicas: int = 0
    available_replicas: int = 0
    pod_failures: tuple[str, ...] = ()
    condition_failures: tuple[str, ...] = ()

    @property
    def generation_observed(self) -> bool:
        return self.observed_generation >= self.generation

    @property
    def failure_reasons(self) -> tuple[str, ...]:
        if not self.generation_observed:
            return self.pod_failures
        return (*self.condition_failures, *self.pod_failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generation": self.generation,
            "observed_generation": self.observed_generation,
            "desired_replicas": self.desired_replicas,
            "replicas": self.replicas,
            "updated_replicas": self.updated_replicas,
            "ready_replicas": self.ready_replicas,
            "available_replicas": self.available_replicas,
            "failure_reasons": list(self.failure_reasons),
        }


class ClusterClient(Protocol):
    def apply(self, resource: ResourceDefinition) -> ApplyResult:
        """
        Create or update `resource`. Re-applying an unchanged definition is a
        no-op reported as UNCHANGED.

        Raises ApplyRejected or ClusterConnectionError.
        """
        ...

    def restart(self, workload: WorkloadRef, token: str) -> None:
        """
        Stamp the workload's pod template with `token` so new pods are rolled
        out even if nothing else in the pod template changed.

        Raises ApplyRejected or ClusterConnectionError.
        """
        ...

    def read_status(self, workload: WorkloadRef) -> WorkloadStatus:
        """Raises ClusterReadError on any failure to read."""
        ...


def restart_token(run_id: str, at: str) -> str:
    """Annotation value unique to one run, so a restart is never a no-op patch."""
    return f"{at}/{run_id}"


def restart_patch(token: str) -> dict[str, Any]:
    return {
        "spec": {
            "template": {"metadata": {"annotations": {RESTART_ANNOTATION: token}}}
        }
    }


def template_restart_token(obj: dict[str, Any]) -> Optional[str]:
    annotations = (
        obj.get("spec", {})
        .get("template", {})
        .get("metadata", {})
        .get("annotations")
        or {}
    )
    return annotations.get(RESTART_ANNOTATION)
