from __future__ import annotations

import pytest
from fakes import FakeRevisions

from deploy_pipeline.core import RevisionResolutionError
from deploy_pipeline.pipeline.gate import decide_stages
from deploy_pipeline.pipeline.types import ChangeSet
from deploy_pipeline.project import PathGroup, default_project
from deploy_pipeline.stages.changes import analyze_changes, classify_paths, match_path


@pytest.mark.parametrize(
    ("path", "pattern", "expected"),
    [
        ("app/main.py", "app", True),
        ("app", "app", True),
        ("application/x.py", "app", False),
        ("src/app/main.py", "app", False),
        ("Dockerfile", "Dockerfile", True),
        ("Dockerfile.dev", "Dockerfile", False),
        ("k8s/base/deploy.yaml", "k8s/*.yaml", True),
        ("k8s/deploy.yml", "k8s/*.yaml", False),
        ("docs/a.md", "*.md", True),
        ("App/main.py", "app", False),
        ("charts/web/values-prod.yaml", "charts/*/values-?*.yaml", True),
    ],
)
def test_match_path(path: str, pattern: str, expected: bool) -> None:
    assert match_path(path, pattern) is expected


def test_overlapping_groups_are_all_marked() -> None:
    groups = [
        PathGroup(name="application", patterns=("app",)),
        PathGroup(name="python", patterns=("*.py",)),
        PathGroup(name="cluster-manifests", patterns=("k8s",)),
    ]
    assert classify_paths(groups, ["app/main.py"]) == {
        "application": True,
        "python": True,
        "cluster-manifests": False,
    }


def test_analyze_changes_uses_project_groups() -> None:
    project = default_project()
    cs = analyze_changes(
        FakeRevisions(["requirements.txt", "terraform/main.tf"]),
        "base",
        "head",
        project.path_groups,
    )
    assert cs.groups == {"application": True, "cluster-manifests": False}
    assert cs.paths == ("requirements.txt", "terraform/main.tf")


def test_same_revision_is_nothing_to_do() -> None:
    cs = analyze_changes(
        FakeRevisions(["app/main.py"]), "head", "head", default_project().path_groups
    )
    assert not cs.any_changed
    assert cs.changed_groups == []


def test_unresolvable_revision_raises() -> None:
    with pytest.raises(RevisionResolutionError):
        analyze_changes(
            FakeRevisions([], known=("head",)), "gone", "head", default_project().path_groups
        )


def test_change_set_is_read_only() -> None:
    cs = ChangeSet(base="a", head="b", groups={"application": True})
    with pytest.raises(TypeError):
        cs.groups["application"] = False  # type: ignore[index]


@pytest.mark.parametrize(
    ("app", "manifests", "build", "deploy"),
    [
        (False, False, False, False),
        (False, True, False, True),
        (True, False, True, True),
        (True, True, True, True),
    ],
)
def test_gate_truth_table(app: bool, manifests: bool, build: bool, deploy: bool) -> None:
    cs = ChangeSet(
        base="a", head="b", groups={"application": app, "cluster-manifests": manifests}
    )
    decision = decide_stages(cs)
    assert (decision.build, decision.deploy) == (build, deploy)
    assert decision.should_run("build") is build


def test_gate_treats_missing_group_as_unchanged() -> None:
    decision = decide_stages(ChangeSet(base="a", head="b", groups={}))
    assert decision.to_dict() == {"build": False, "deploy": False}


def test_gate_honours_custom_group_names() -> None:
    cs = ChangeSet(base="a", head="b", groups={"service": False, "deploy": True})
    decision = decide_stages(cs, application_group="service", manifests_group="deploy")
    assert (decision.build, decision.deploy) == (False, True)
