from __future__ import annotations

import threading
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from deploy_pipeline.core import ILogger
from deploy_pipeline.project import ProjectFile

from .events import EventSink, EventType, make_event
from .gate import StageDecision
from .types import ArtifactRef, ChangeSet, WorkloadRef

if TYPE_CHECKING:
    from deploy_pipeline.stages.build.builder import CredentialProvider, ImageBuilder
    from deploy_pipeline.stages.changes.git import RevisionProvider
    from deploy_pipeline.stages.deploy.cluster import ClusterClient
    from deploy_pipeline.stages.deploy.runner import DeployOutcome
    from deploy_pipeline.stages.verify.verifier import Clock, RolloutReport, Sleep


@dataclass(frozen=True, slots=True)
class RunInputs:
    """
    Everything a run is triggered with: the two revisions plus the cluster
    and registry targets.
    """

    base: str
    head: str
    repo_root: Path
    project: ProjectFile
    image: Optional[ArtifactRef] = None

    poll_interval_s: float = 5.0
    deadline_s: float = 300.0
    lock_wait_s: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "base": self.base,
            "head": self.head,
            "repo_root": str(self.repo_root),
            "image": self.image.reference if self.image else None,
            "poll_interval_s": self.poll_interval_s,
            "deadline_s": self.deadline_s,
            "lock_wait_s": self.lock_wait_s,
        }


@dataclass(slots=True)
class PipelineServices:
    """
    External collaborators used by the stages. Owned by the controller for
    the duration of a run.
    """

    revisions: RevisionProvider
    cluster: ClusterClient
    builder: Optional[ImageBuilder] = None
    credentials: Optional[CredentialProvider] = None
    clock: Optional[Clock] = None
    sleep: Optional[Sleep] = None


@dataclass(slots=True)
class RunState:
    """Values handed from one stage to the next."""

    change_set: Optional[ChangeSet] = None
    decision: Optional[StageDecision] = None
    artifact: Optional[ArtifactRef] = None
    workload: Optional[WorkloadRef] = None
    deploy: Optional[DeployOutcome] = None
    rollout: Optional[RolloutReport] = None


@dataclass(slots=True)
class RunContext:
    """
    Context shared across stages for a single pipeline run.
    """

    run_id: str
    run_root: Path
    logger: ILogger
    events: EventSink
    inputs: RunInputs
    services: PipelineServices

    state: RunState = field(default_factory=RunState)
    cancel: threading.Event = field(default_factory=threading.Event)

    # Per-workload run locks live here; None disables locking.
    lock_dir: Optional[Path] = None
    # Held until the run finishes (workload lock); closed by the controller.
    resources: ExitStack = field(default_factory=ExitStack)

    # optional free-form metadata
    meta: dict[str, Any] = field(default_factory=dict)

    def stage_logger(self, stage: str) -> ILogger:
        return self.logger.bind(stage=stage)

    def emit(self, event: EventType | str, *, stage: str | None = None, **kw: object) -> None:
        """Write a structured event to events.jsonl and mirror it at debug level."""
        event_value = event.value if isinstance(event, EventType) else str(event)
        self.events.emit(
            make_event(event_type=event_value, run_id=self.run_id, stage=stage, **kw)
        )
        self.logger.debug(event_value, event_type=event_value, stage=stage, **kw)
