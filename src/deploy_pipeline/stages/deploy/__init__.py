from .cluster import (
    RESTART_ANNOTATION,
    ApplyAction,
    ApplyResult,
    ClusterClient,
    WorkloadStatus,
    restart_token,
)
from .kubectl import KubectlClient, workload_status_from_objects
from .resources import (
    ResourceDefinition,
    load_manifests,
    order_resources,
    select_workload,
)
from .runner import DeployOutcome, run_deploy
from .stage import stage_deploy

__all__ = [
    "RESTART_ANNOTATION",
    "ApplyAction",
    "ApplyResult",
    "ClusterClient",
    "WorkloadStatus",
    "restart_token",
    "KubectlClient",
    "workload_status_from_objects",
    "ResourceDefinition",
    "load_manifests",
    "order_resources",
    "select_workload",
    "DeployOutcome",
    "run_deploy",
    "stage_deploy",
]
