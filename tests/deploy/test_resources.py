from __future__ import annotations

from pathlib import Path

import pytest
from fakes import write_manifests

from deploy_pipeline.core import ManifestError
from deploy_pipeline.project import WorkloadSpec
from deploy_pipeline.stages.deploy import load_manifests, order_resources, select_workload


def test_load_manifests_reads_every_document_in_path_order(tmp_path: Path) -> None:
    resources = load_manifests(write_manifests(tmp_path))

    assert [r.key for r in resources] == [
        "ServiceMonitor/shop/web",
        "Deployment/shop/web",
        "Service/shop/web",
        "ConfigMap/shop/web-config",
        "Namespace/shop",
    ]
    assert resources[1].source.endswith("10-deployment.yaml")
    assert resources[-1].cluster_scoped


def test_order_puts_namespace_first_and_monitoring_last(tmp_path: Path) -> None:
    ordered = order_resources(load_manifests(write_manifests(tmp_path)))
    assert [r.kind for r in ordered] == [
        "Namespace",
        "ConfigMap",
        "Deployment",
        "Service",
        "ServiceMonitor",
    ]


def test_unknown_kinds_go_last_and_keep_file_order(tmp_path: Path) -> None:
    (tmp_path / "a.yaml").write_text(
        "apiVersion: x/v1\nkind: Widget\nmetadata: {name: w1}\n---\n"
        "apiVersion: v1\nkind: Service\nmetadata: {name: s}\n---\n"
        "apiVersion: x/v1\nkind: Gadget\nmetadata: {name: g1}\n",
        encoding="utf-8",
    )
    ordered = order_resources(load_manifests(tmp_path))
    assert [r.name for r in ordered] == ["s", "w1", "g1"]


def test_list_documents_are_expanded(tmp_path: Path) -> None:
    (tmp_path / "list.yaml").write_text(
        "apiVersion: v1\nkind: List\nitems:\n"
        "  - {apiVersion: v1, kind: ConfigMap, metadata: {name: a}}\n"
        "  - {apiVersion: v1, kind: ConfigMap, metadata: {name: b}}\n",
        encoding="utf-8",
    )
    assert [r.name for r in load_manifests(tmp_path)] == ["a", "b"]


def test_invalid_manifests_raise(tmp_path: Path) -> None:
    with pytest.raises(ManifestError, match="not found"):
        load_manifests(tmp_path / "missing")

    (tmp_path / "empty.yaml").write_text("---\n", encoding="utf-8")
    with pytest.raises(ManifestError, match="No resources"):
        load_manifests(tmp_path)

    (tmp_path / "bad.yaml").write_text("kind: ConfigMap\nmetadata: {name: x}\n", encoding="utf-8")
    with pytest.raises(ManifestError, match="apiVersion"):
        load_manifests(tmp_path)


def test_duplicate_definitions_are_rejected(tmp_path: Path) -> None:
    doc = "apiVersion: v1\nkind: ConfigMap\nmetadata: {name: dup, namespace: shop}\n"
    (tmp_path / "one.yaml").write_text(doc, encoding="utf-8")
    (tmp_path / "two.yaml").write_text(doc, encoding="utf-8")
    with pytest.raises(ManifestError, match="Duplicate"):
        load_manifests(tmp_path)


def test_select_workload(tmp_path: Path) -> None:
    resources = load_manifests(write_manifests(tmp_path))

    ref = select_workload(resources, WorkloadSpec())
    assert ref.key == "deployment/shop/web"

    named = select_workload(
        resources, WorkloadSpec(kind="StatefulSet", name="db", namespace="data")
    )
    assert named.key == "statefulset/data/db"

    with pytest.raises(ManifestError, match="exactly one StatefulSet"):
        select_workload(resources, WorkloadSpec(kind="StatefulSet"))
