from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeBuilder, FakeCluster, healthy, write_manifests
from git import Actor, Repo

from deploy_pipeline import cli
from deploy_pipeline.core import read_json

ACTOR = Actor("ci", "ci@example.com")


@pytest.fixture
def git_checkout(tmp_path: Path) -> Path:
    root = tmp_path / "checkout"
    root.mkdir()
    repo = Repo.init(root)
    (root / "app").mkdir()
    (root / "app" / "main.py").write_text("print('v1')\n", encoding="utf-8")
    write_manifests(root)
    manifests = sorted(p.relative_to(root).as_posix() for p in (root / "k8s").iterdir())
    repo.index.add(["app/main.py", *manifests])
    repo.index.commit("initial", author=ACTOR, committer=ACTOR)

    cfg = root / "k8s" / "20-config.yaml"
    cfg.write_text(cfg.read_text(encoding="utf-8").replace("hello", "bye"), encoding="utf-8")
    repo.index.add(["k8s/20-config.yaml"])
    repo.index.commit("tweak config", author=ACTOR, committer=ACTOR)
    return root


@pytest.fixture
def fake_cli(monkeypatch: pytest.MonkeyPatch) -> FakeCluster:
    cluster = FakeCluster([healthy()])
    monkeypatch.setattr(cli, "KubectlClient", lambda **kw: cluster)
    monkeypatch.setattr(cli, "DockerCliBuilder", lambda **kw: FakeBuilder())
    monkeypatch.setattr(cli, "_install_cancel_handlers", lambda cancel: None)
    monkeypatch.delenv("DEPLOY_PIPELINE_PROJECT_FILE", raising=False)
    return cluster


def test_plan_prints_decision(git_checkout: Path, fake_cli: FakeCluster, capsys) -> None:
    code = cli.main(
        ["plan", "--repo", str(git_checkout), "--base", "HEAD~1", "--head", "HEAD"]
    )
    out = capsys.readouterr().out

    assert code == 0
    assert "cluster-manifests" in out
    assert "deploy: run" in out and "build: skip" in out
    assert fake_cli.applied == []


def test_run_deploys_manifest_change(
    git_checkout: Path, fake_cli: FakeCluster, tmp_path: Path
) -> None:
    run_root = tmp_path / "_runs"
    code = cli.main(
        [
            "run",
            "--repo",
            str(git_checkout),
            "--base",
            "HEAD~1",
            "--head",
            "HEAD",
            "--run-root",
            str(run_root),
            "--poll-interval",
            "0.01",
            "--deadline",
            "1",
        ]
    )

    assert code == 0
    assert fake_cli.applied[0] == "Namespace/shop"
    (report_path,) = run_root.glob("*/run_report.json")
    report = read_json(report_path)
    assert report["rollout_status"] == "healthy"
    assert report["decision"] == {"build": False, "deploy": True}


def test_unknown_revision_exits_1(
    git_checkout: Path, fake_cli: FakeCluster, tmp_path: Path
) -> None:
    code = cli.main(
        [
            "run",
            "--repo",
            str(git_checkout),
            "--base",
            "no-such-branch",
            "--head",
            "HEAD",
            "--run-root",
            str(tmp_path / "_runs"),
        ]
    )
    assert code == 1
    assert fake_cli.applied == []


def test_usage_errors_exit_2(
    git_checkout: Path, fake_cli: FakeCluster, tmp_path: Path
) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run", "--base", "HEAD~1"])
    assert excinfo.value.code == 2

    code = cli.main(
        [
            "run",
            "--repo",
            str(git_checkout),
            "--base",
            "HEAD~1",
            "--head",
            "HEAD",
            "--poll-interval",
            "5",
            "--deadline",
            "10",
        ]
    )
    assert code == 2

    missing = str(tmp_path / "missing.yaml")
    assert cli.main(["plan", "--project", missing, "--base", "a", "--head", "b"]) == 2


def test_parse_workload() -> None:
    assert cli.parse_workload("deployment/shop/web").key == "deployment/shop/web"
    assert cli.parse_workload("Deployment/web").namespace is None
    with pytest.raises(ValueError):
        cli.parse_workload("web")
