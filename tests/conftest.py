from __future__ import annotations

from pathlib import Path

import pytest
import structlog
from fakes import FakeBuilder, FakeClock, FakeCluster, FakeRevisions, write_manifests

from deploy_pipeline.pipeline.context import PipelineServices
from deploy_pipeline.pipeline.controller import PipelineController
from deploy_pipeline.project import default_project
from deploy_pipeline.stages.build import AnonymousCredentials


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / "app").mkdir(parents=True)
    (root / "app" / "main.py").write_text("print('hi')\n", encoding="utf-8")
    (root / "Dockerfile").write_text("FROM python:3.12-slim\n", encoding="utf-8")
    write_manifests(root)
    return root


@pytest.fixture
def project():
    return default_project()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def builder() -> FakeBuilder:
    return FakeBuilder()


@pytest.fixture
def make_controller(
    tmp_path: Path, cluster: FakeCluster, builder: FakeBuilder, clock: FakeClock
):
    def _make(revisions: FakeRevisions, **kw) -> PipelineController:
        services = PipelineServices(
            revisions=revisions,
            cluster=cluster,
            builder=builder,
            credentials=kw.pop("credentials", None) or AnonymousCredentials(),
            clock=clock,
            sleep=clock.sleep,
        )
        return PipelineController(
            services,
            run_root=tmp_path / "_runs",
            logger=structlog.get_logger("test"),
            **kw,
        )

    return _make
