from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import structlog
import yaml

from deploy_pipeline.core import ManifestError, sha256_json
from deploy_pipeline.pipeline.types import WorkloadRef
from deploy_pipeline.project.models import WorkloadSpec

log = structlog.get_logger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml")

CLUSTER_SCOPED_KINDS = frozenset(
    {
        "Namespace",
        "CustomResourceDefinition",
        "ClusterRole",
        "ClusterRoleBinding",
        "StorageClass",
        "PersistentVolume",
        "PriorityClass",
    }
)

# Namespace first, then the workload, its service, and monitoring.
_KIND_RANK: dict[str, int] = {
    "Namespace": 0,
    "CustomResourceDefinition": 1,
    "ClusterRole": 1,
    "ClusterRoleBinding": 1,
    "StorageClass": 1,
    "PersistentVolume": 1,
    "PriorityClass": 1,
    "ServiceAccount": 2,
    "Role": 2,
    "RoleBinding": 2,
    "ConfigMap": 2,
    "Secret": 2,
    "PersistentVolumeClaim": 2,
    "Deployment": 3,
    "StatefulSet": 3,
    "DaemonSet": 3,
    "Job": 3,
    "CronJob": 3,
    "Service": 4,
    "Ingress": 4,
    "HorizontalPodAutoscaler": 4,
    "PodDisruptionBudget": 4,
    "NetworkPolicy": 4,
    "ServiceMonitor": 5,
    "PodMonitor": 5,
    "PrometheusRule": 5,
}
_DEFAULT_RANK = 6


@dataclass(frozen=True, slots=True)
class ResourceDefinition:
    kind: str
    name: str
    namespace: Optional[str]
    body: dict[str, Any] = field(repr=False, compare=False)
    source: str = ""

    @property
    def key(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    @property
    def cluster_scoped(self) -> bool:
        return self.kind in CLUSTER_SCOPED_KINDS

    @property
    def digest(self) -> str:
        return sha256_json(self.body)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.body, sort_keys=False)


def resource_from_mapping(doc: Any, *, source: str = "") -> ResourceDefinition:
    if not isinstance(doc, dict):
        raise ManifestError(f"{source}: manifest document is not a mapping")
    kind = doc.get("kind")
    metadata = doc.get("metadata") or {}
    name = metadata.get("name") if isinstance(metadata, dict) else None
    if not kind or not isinstance(kind, str):
        raise ManifestError(f"{source}: manifest document has no kind")
    if not doc.get("apiVersion"):
        raise ManifestError(f"{source}: {kind} has no apiVersion")
    if not name:
        raise ManifestError(f"{source}: {kind} has no metadata.name")

    namespace = None if kind in CLUSTER_SCOPED_KINDS else metadata.get("namespace")
    return ResourceDefinition(
        kind=kind, name=str(name), namespace=namespace, body=doc, source=source
    )


def _expand(doc: Any) -> Iterable[Any]:
    # `kind: List` wraps several resources in one document.
    if isinstance(doc, dict) and doc.get("kind") == "List":
        yield from doc.get("items") or []
    else:
        yield doc


def load_manifest_file(path: Path) -> list[ResourceDefinition]:
    try:
        text = Path(path).read_text(encoding="utf-8")
        docs = list(yaml.safe_load_all(text))
    except OSError as exc:
        raise ManifestError(f"Cannot read manifest {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ManifestError(f"Invalid YAML in {path}: {exc}") from exc

    out: list[ResourceDefinition] = []
    for doc in docs:
        if doc is None:
            continue
        for item in _expand(doc):
            out.append(resource_from_mapping(item, source=str(path)))
    return out


def load_manifests(manifests_dir: Path) -> list[ResourceDefinition]:
    """
    Load every resource from *.yaml / *.yml files under `manifests_dir`,
    in sorted path order and document order within a file.
    """
    root = Path(manifests_dir)
    if not root.is_dir():
        raise ManifestError(f"Manifests directory not found: {root}")

    files = sorted(
        p for p in root.rglob("*") if p.is_file() and p.suffix in MANIFEST_SUFFIXES
    )
    resources: list[ResourceDefinition] = []
    for f in files:
        resources.extend(load_manifest_file(f))

    if not resources:
        raise ManifestError(f"No resources found under {root}")

    keys = [r.key for r in resources]
    if len(keys) != len(set(keys)):
        dupes = sorted({k for k in keys if keys.count(k) > 1})
        raise ManifestError(f"Duplicate resource definition(s): {dupes}")

    log.debug("manifests.loaded", root=str(root), files=len(files), resources=len(resources))
    return resources


def apply_rank(resource: ResourceDefinition) -> int:
    return _KIND_RANK.get(resource.kind, _DEFAULT_RANK)


def order_resources(resources: Sequence[ResourceDefinition]) -> list[ResourceDefinition]:
    """Stable sort by kind rank; file order is kept within a rank."""
    return sorted(resources, key=apply_rank)


def select_workload(
    resources: Sequence[ResourceDefinition], spec: WorkloadSpec
) -> WorkloadRef:
    """
    Resolve which workload gets restarted and verified.

    A named workload may live outside the definition set (it is then only
    restarted, not applied). Without a name, the set must contain exactly one
    workload of the configured kind.
    """
    if spec.name:
        for r in resources:
            if r.kind == spec.kind and r.name == spec.name:
                if spec.namespace and r.namespace and r.namespace != spec.namespace:
                    continue
                return WorkloadRef(
                    kind=r.kind, name=r.name, namespace=r.namespace or spec.namespace
                )
        return WorkloadRef(kind=spec.kind, name=spec.name, namespace=spec.namespace)

    candidates = [r for r in resources if r.kind == spec.kind]
    if len(candidates) != 1:
        raise ManifestError(
            f"Expected exactly one {spec.kind} in manifests, found {len(candidates)}; "
            "name the workload in the project file"
        )
    r = candidates[0]
    return WorkloadRef(kind=r.kind, name=r.name, namespace=r.namespace or spec.namespace)
