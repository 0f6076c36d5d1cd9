from __future__ import annotations

from dataclasses import dataclass

from deploy_pipeline.project.models import APPLICATION_GROUP, MANIFESTS_GROUP

from .types import ChangeSet

BUILD = "build"
DEPLOY = "deploy"


@dataclass(frozen=True, slots=True)
class StageDecision:
    build: bool
    deploy: bool

    def should_run(self, stage: str) -> bool:
        if stage == BUILD:
            return self.build
        if stage == DEPLOY:
            return self.deploy
        raise KeyError(f"No gate for stage {stage!r}")

    def to_dict(self) -> dict[str, bool]:
        return {BUILD: self.build, DEPLOY: self.deploy}


def decide_stages(
    change_set: ChangeSet,
    *,
    application_group: str = APPLICATION_GROUP,
    manifests_group: str = MANIFESTS_GROUP,
) -> StageDecision:
    """
    Map a ChangeSet onto should-run flags.

    A code change builds and restarts so the new image is pulled; a
    manifest-only change re-applies and restarts without building.
    """
    app = change_set.changed(application_group)
    manifests = change_set.changed(manifests_group)
    return StageDecision(build=app, deploy=app or manifests)
