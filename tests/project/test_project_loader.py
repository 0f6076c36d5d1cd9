from __future__ import annotations

from pathlib import Path

import pytest

from deploy_pipeline.core import ProjectConfigError
from deploy_pipeline.project import (
    PROJECT_FILE_NAME,
    get_project,
    load_project,
    resolve_project_file,
)
from deploy_pipeline.project.loader import PROJECT_FILE_ENV

PROJECT_YAML = """\
spec_version: 1
path_groups:
  - name: service
    patterns: [src, pyproject.toml, Containerfile]
  - name: deploy
    patterns: ["deploy/**/*.yaml"]
    description: Kubernetes manifests
application_group: service
manifests_group: deploy
build:
  context: .
  dockerfile: Containerfile
  image_repository: registry.example.com/shop/api
manifests_dir: deploy
workload:
  kind: Deployment
  name: api
  namespace: shop
"""


@pytest.fixture(autouse=True)
def _no_env_project(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(PROJECT_FILE_ENV, raising=False)


def test_load_project_file(tmp_path: Path) -> None:
    path = tmp_path / PROJECT_FILE_NAME
    path.write_text(PROJECT_YAML, encoding="utf-8")

    project = load_project(path)

    assert [g.name for g in project.path_groups] == ["service", "deploy"]
    assert project.group_map["deploy"].description == "Kubernetes manifests"
    assert project.build.dockerfile == "Containerfile"
    assert project.workload.name == "api"
    assert project.manifests_path(tmp_path) == tmp_path / "deploy"


def test_defaults_when_no_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    assert resolve_project_file(repo_root=tmp_path) is None

    project = get_project(repo_root=tmp_path)
    assert project.application_group == "application"
    assert project.manifests_group == "cluster-manifests"
    assert project.manifests_dir == "k8s"


def test_resolution_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / PROJECT_FILE_NAME).write_text(PROJECT_YAML, encoding="utf-8")
    other = tmp_path / "other.yaml"
    other.write_text(PROJECT_YAML, encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    assert resolve_project_file(repo_root=repo) == (repo / PROJECT_FILE_NAME).resolve()

    monkeypatch.setenv(PROJECT_FILE_ENV, str(other))
    assert resolve_project_file(repo_root=repo) == other.resolve()

    explicit = tmp_path / "explicit.yaml"
    explicit.write_text(PROJECT_YAML, encoding="utf-8")
    assert resolve_project_file(explicit, repo_root=repo) == explicit.resolve()


def test_missing_explicit_or_env_file_is_an_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    with pytest.raises(ProjectConfigError):
        resolve_project_file(tmp_path / "nope.yaml")

    monkeypatch.setenv(PROJECT_FILE_ENV, str(tmp_path / "gone.yaml"))
    with pytest.raises(ProjectConfigError, match=PROJECT_FILE_ENV):
        resolve_project_file()


@pytest.mark.parametrize(
    ("text", "match"),
    [
        ("path_groups: [", "Invalid YAML"),
        ("- just\n- a list\n", "mapping"),
        ("path_groups: []\n", "path_groups"),
        (
            "path_groups:\n  - {name: application, patterns: [app]}\n",
            "undefined path group",
        ),
        (
            "path_groups:\n  - {name: application, patterns: [app]}\n"
            "  - {name: application, patterns: [src]}\n"
            "  - {name: cluster-manifests, patterns: [k8s]}\n",
            "Duplicate",
        ),
        (
            "path_groups:\n  - {name: application, patterns: [/app]}\n"
            "  - {name: cluster-manifests, patterns: [k8s]}\n",
            "root-relative",
        ),
        (
            "path_groups:\n  - {name: application, patterns: [app]}\n"
            "  - {name: cluster-manifests, patterns: [k8s]}\n"
            "surprise: true\n",
            "surprise",
        ),
        (
            "path_groups:\n  - {name: application, patterns: [app]}\n"
            "  - {name: cluster-manifests, patterns: [k8s]}\n"
            "workload: {kind: CronJob}\n",
            "workload.kind",
        ),
    ],
)
def test_invalid_project_files(tmp_path: Path, text: str, match: str) -> None:
    path = tmp_path / PROJECT_FILE_NAME
    path.write_text(text, encoding="utf-8")
    with pytest.raises(ProjectConfigError, match=match):
        load_project(path)
