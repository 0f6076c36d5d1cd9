from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any, Optional, Sequence

import structlog

from deploy_pipeline.core import (
    ApplyRejected,
    ClusterConnectionError,
    ClusterReadError,
    CommandResult,
    run_command,
)
from deploy_pipeline.pipeline.types import WorkloadRef

from .cluster import (
    RESTART_ANNOTATION,
    ApplyAction,
    ApplyResult,
    WorkloadStatus,
    restart_patch,
    template_restart_token,
)
from .resources import ResourceDefinition

log = structlog.get_logger(__name__)

# Substrings kubectl prints when it never reached (or was refused by) the API server.
_CONNECTION_MARKERS = (
    "unable to connect to the server",
    "connection refused",
    "no such host",
    "i/o timeout",
    "tls handshake timeout",
    "the server has asked for the client to provide credentials",
    "you must be logged in to the server",
    "couldn't get current server api group list",
    "context deadline exceeded",
)

# Container waiting reasons that will not resolve by waiting longer.
POD_FAILURE_REASONS = frozenset(
    {
        "CrashLoopBackOff",
        "ImagePullBackOff",
        "ErrImagePull",
        "InvalidImageName",
        "CreateContainerConfigError",
        "CreateContainerError",
        "RunContainerError",
    }
)


def is_connection_failure(output: str) -> bool:
    text = output.lower()
    return any(m in text for m in _CONNECTION_MARKERS)


def parse_apply_action(stdout: str) -> ApplyAction:
    """
    `kubectl apply` prints `<kind>.<group>/<name> <action>`; the action may
    carry a suffix such as "(server dry run)".
    """
    for line in reversed(stdout.strip().splitlines()):
        words = line.split()
        if len(words) < 2:
            continue
        for word in words[1:]:
            try:
                return ApplyAction(word)
            except ValueError:
                continue
    return ApplyAction.CONFIGURED


def _selector(workload_obj: dict[str, Any]) -> Optional[str]:
    labels = (workload_obj.get("spec", {}).get("selector") or {}).get("matchLabels") or {}
    if not labels:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


def _condition_failures(status: dict[str, Any]) -> list[str]:
    out: list[str] = []
    for cond in status.get("conditions") or []:
        ctype = cond.get("type")
        cstatus = cond.get("status")
        reason = cond.get("reason") or ""
        if (
            ctype == "Progressing"
            and cstatus == "False"
            and reason == "ProgressDeadlineExceeded"
        ):
            out.append("ProgressDeadlineExceeded")
        elif ctype == "ReplicaFailure" and cstatus == "True":
            detail = reason or cond.get("message") or ""
            out.append(f"ReplicaFailure: {detail}" if detail else "ReplicaFailure")
    return out


def _pod_failures(pods_obj: dict[str, Any], token: Optional[str]) -> list[str]:
    """
    Failure reasons on pods of the current template. Pods are matched to the
    current template through the restart annotation when there is one.
    """
    out: list[str] = []
    for pod in pods_obj.get("items") or []:
        meta = pod.get("metadata") or {}
        if token is not None:
            pod_token = (meta.get("annotations") or {}).get(RESTART_ANNOTATION)
            if pod_token != token:
                continue
        statuses = [
            *(pod.get("status", {}).get("initContainerStatuses") or []),
            *(pod.get("status", {}).get("containerStatuses") or []),
        ]
        for cs in statuses:
            waiting = (cs.get("state") or {}).get("waiting") or {}
            reason = waiting.get("reason")
            if reason in POD_FAILURE_REASONS:
                out.append(f"{meta.get('name', '?')}/{cs.get('name', '?')}: {reason}")
    return out


def _counts(kind: str, spec: dict[str, Any], status: dict[str, Any]) -> dict[str, int]:
    """Replica counts in the shape of a Deployment, whatever the workload kind."""
    if kind == "DaemonSet":
        # One pod per eligible node; the scheduler decides how many.
        return {
            "desired_replicas": int(status.get("desiredNumberScheduled") or 0),
            "replicas": int(status.get("currentNumberScheduled") or 0),
            "updated_replicas": int(status.get("updatedNumberScheduled") or 0),
            "ready_replicas": int(status.get("numberReady") or 0),
            "available_replicas": int(status.get("numberAvailable") or 0),
        }
    desired = spec.get("replicas")
    return {
        "desired_replicas": 1 if desired is None else int(desired),
        "replicas": int(status.get("replicas") or 0),
        "updated_replicas": int(status.get("updatedReplicas") or 0),
        "ready_replicas": int(status.get("readyReplicas") or 0),
        "available_replicas": int(status.get("availableReplicas") or 0),
    }


def workload_status_from_objects(
    workload_obj: dict[str, Any], pods_obj: dict[str, Any] | None = None
) -> WorkloadStatus:
    meta = workload_obj.get("metadata") or {}
    spec = workload_obj.get("spec") or {}
    status = workload_obj.get("status") or {}

    pod_failures: list[str] = []
    if pods_obj is not None:
        pod_failures = _pod_failures(pods_obj, template_restart_token(workload_obj))

    return WorkloadStatus(
        generation=int(meta.get("generation") or 0),
        observed_generation=int(status.get("observedGeneration") or 0),
        **_counts(workload_obj.get("kind") or "Deployment", spec, status),
        pod_failures=tuple(pod_failures),
        condition_failures=tuple(_condition_failures(status)),
    )


class KubectlClient:
    """
    ClusterClient backed by the `kubectl` CLI.

    Credentials stay in the kubeconfig; this class only forwards --context and
    --kubeconfig.
    """

    def __init__(
        self,
        *,
        context: str | None = None,
        kubeconfig: Path | None = None,
        kubectl_bin: str = "kubectl",
        timeout_s: float = 60.0,
    ) -> None:
        self.context = context
        self.kubeconfig = kubeconfig
        self.kubectl_bin = kubectl_bin
        self.timeout_s = timeout_s

    def _base(self) -> list[str]:
        args = [self.kubectl_bin]
        if self.kubeconfig is not None:
            args += ["--kubeconfig", str(self.kubeconfig)]
        if self.context:
            args += ["--context", self.context]
        return args

    def _run(self, args: Sequence[str], *, input_text: str | None = None) -> CommandResult:
        try:
            return run_command(
                [*self._base(), *args], input_text=input_text, timeout_s=self.timeout_s
            )
        except FileNotFoundError as exc:
            raise ClusterConnectionError(f"{self.kubectl_bin} not found on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise ClusterConnectionError(
                f"kubectl {' '.join(args[:2])} timed out after {self.timeout_s}s"
            ) from exc

    def _raise_for(self, res: CommandResult, *, resource: str) -> None:
        if res.ok:
            return
        output = res.output_tail()
        if is_connection_failure(output):
            raise ClusterConnectionError(f"Cluster unreachable: {output}")
        raise ApplyRejected(resource, output or f"kubectl exited {res.returncode}")

    def apply(self, resource: ResourceDefinition) -> ApplyResult:
        args = ["apply", "--filename", "-"]
        if resource.namespace:
            args += ["--namespace", resource.namespace]
        res = self._run(args, input_text=resource.to_yaml())
        self._raise_for(res, resource=resource.key)

        action = parse_apply_action(res.stdout)
        log.debug("kubectl.apply", resource=resource.key, action=action.value)
        return ApplyResult(resource=resource.key, action=action)

    def restart(self, workload: WorkloadRef, token: str) -> None:
        args = ["patch", workload.kind.lower(), workload.name, "--type", "merge"]
        if workload.namespace:
            args += ["--namespace", workload.namespace]
        args += ["--patch", json.dumps(restart_patch(token))]
        res = self._run(args)
        self._raise_for(res, resource=workload.key)
        log.debug("kubectl.restart", workload=workload.key, token=token)

    def _get_json(self, args: list[str]) -> dict[str, Any]:
        try:
            res = self._run([*args, "--output", "json"])
        except ClusterConnectionError as exc:
            raise ClusterReadError(str(exc)) from exc
        if not res.ok:
            raise ClusterReadError(f"kubectl {' '.join(args[:2])}: {res.output_tail()}")
        try:
            return json.loads(res.stdout)
        except ValueError as exc:
            raise ClusterReadError(f"kubectl returned invalid JSON: {exc}") from exc

    def read_status(self, workload: WorkloadRef) -> WorkloadStatus:
        ns_args = ["--namespace", workload.namespace] if workload.namespace else []
        obj = self._get_json(["get", workload.kind.lower(), workload.name, *ns_args])
        obj.setdefault("kind", workload.kind)

        pods: dict[str, Any] | None = None
        selector = _selector(obj)
        if selector:
            pods = self._get_json(["get", "pods", "--selector", selector, *ns_args])
        return workload_status_from_objects(obj, pods)
