from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Mapping, Optional


class StageOutcome(StrEnum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RolloutStatus(StrEnum):
    PENDING = "pending"
    PROGRESSING = "progressing"
    HEALTHY = "healthy"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (RolloutStatus.PENDING, RolloutStatus.PROGRESSING)

    @property
    def reason(self) -> str:
        """CamelCase name used as a run failure reason."""
        return "".join(part.capitalize() for part in self.value.split("_"))


@dataclass(frozen=True, slots=True)
class ArtifactRef:
    """
    A published container image.

    The tag is mutable by default ("latest"); `digest` is filled in when the
    registry reports one.
    """

    repository: str
    tag: str
    digest: Optional[str] = None

    @classmethod
    def parse(cls, value: str, *, default_tag: str = "latest") -> "ArtifactRef":
        """
        Split `repo[:tag]`. A colon before the last slash belongs to a
        registry port, not a tag.
        """
        value = value.strip()
        if not value:
            raise ValueError("empty image reference")
        name, sep, tag = value.rpartition(":")
        if not sep or "/" in tag:
            return cls(repository=value, tag=default_tag)
        if not name or not tag:
            raise ValueError(f"invalid image reference: {value!r}")
        return cls(repository=name, tag=tag)

    @property
    def reference(self) -> str:
        return f"{self.repository}:{self.tag}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository": self.repository,
            "tag": self.tag,
            "digest": self.digest,
            "reference": self.reference,
        }


@dataclass(frozen=True, slots=True)
class WorkloadRef:
    kind: str
    name: str
    namespace: Optional[str] = None

    @property
    def key(self) -> str:
        ns = self.namespace or "default"
        return f"{self.kind.lower()}/{ns}/{self.name}"

    def __str__(self) -> str:
        return self.key

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "name": self.name, "namespace": self.namespace}


@dataclass(frozen=True, slots=True)
class ChangeSet:
    """
    Which path groups changed between two revisions.

    Immutable once created: `groups` is exposed as a read-only mapping.
    """

    base: str
    head: str
    groups: Mapping[str, bool]
    paths: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "groups", MappingProxyType(dict(self.groups)))

    def changed(self, group: str) -> bool:
        return bool(self.groups.get(group, False))

    @property
    def any_changed(self) -> bool:
        return any(self.groups.values())

    @property
    def changed_groups(self) -> list[str]:
        return sorted(name for name, flag in self.groups.items() if flag)

    def to_dict(self) -> dict[str, Any]:
        return {
            "base": self.base,
            "head": self.head,
            "groups": dict(self.groups),
            "paths": list(self.paths),
        }


@dataclass(frozen=True, slots=True)
class Event:
    """
    Structured event emitted by the pipeline.
    """

    type: str
    ts_utc: str
    run_id: str
    stage: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
