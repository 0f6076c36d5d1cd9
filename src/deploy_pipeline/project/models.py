from __future__ import annotations

from functools import cached_property
from pathlib import Path
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator

IdPattern = r"^[a-z0-9][a-z0-9_\-\.]*[a-z0-9]$"

GroupName = Annotated[
    str,
    StringConstraints(min_length=2, max_length=80, pattern=IdPattern),
]
PathPattern = Annotated[str, StringConstraints(min_length=1, strip_whitespace=True)]

APPLICATION_GROUP = "application"
MANIFESTS_GROUP = "cluster-manifests"

# Kinds whose rollout status can be read and verified.
WorkloadKind = Literal["Deployment", "StatefulSet", "DaemonSet"]


class PathGroup(BaseModel):
    """
    A named logical partition of the repository.

    Patterns without glob metacharacters are directory/file prefixes; patterns
    with `*`, `?` or `[` are globs over the root-relative POSIX path.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: GroupName
    patterns: tuple[PathPattern, ...] = Field(..., min_length=1)
    description: Optional[str] = None

    @model_validator(mode="after")
    def _validate_patterns(self) -> "PathGroup":
        for p in self.patterns:
            if p.startswith("/"):
                raise ValueError(
                    f"PathGroup {self.name}: patterns are root-relative, got {p!r}"
                )
        return self


class BuildSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    context: str = "."
    dockerfile: str = "Dockerfile"
    image_repository: Optional[str] = None


class WorkloadSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: WorkloadKind = "Deployment"
    name: Optional[str] = None
    namespace: Optional[str] = None


class ProjectFile(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    spec_version: int = Field(default=1, ge=1)
    path_groups: list[PathGroup] = Field(..., min_length=1)

    application_group: GroupName = APPLICATION_GROUP
    manifests_group: GroupName = MANIFESTS_GROUP

    build: BuildSpec = Field(default_factory=BuildSpec)
    manifests_dir: str = "k8s"
    workload: WorkloadSpec = Field(default_factory=WorkloadSpec)

    @model_validator(mode="after")
    def _validate(self) -> "ProjectFile":
        names = [g.name for g in self.path_groups]
        if len(names) != len(set(names)):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate path group name(s): {dupes}")

        for ref in (self.application_group, self.manifests_group):
            if ref not in names:
                raise ValueError(f"Gate refers to undefined path group {ref!r}")
        return self

    @cached_property
    def group_map(self) -> dict[str, PathGroup]:
        return {g.name: g for g in self.path_groups}

    def manifests_path(self, repo_root: Path) -> Path:
        return Path(repo_root) / self.manifests_dir

    def build_context_path(self, repo_root: Path) -> Path:
        return Path(repo_root) / self.build.context


def default_project() -> ProjectFile:
    """
    Layout of the reference repository: a Flask app with its Dockerfile at
    the root, Kubernetes manifests under k8s/ and Terraform under terraform/.
    """
    return ProjectFile(
        path_groups=[
            PathGroup(
                name=APPLICATION_GROUP,
                patterns=("app", "Dockerfile", "requirements.txt"),
            ),
            PathGroup(name=MANIFESTS_GROUP, patterns=("k8s",)),
        ],
    )
