from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, Sequence

from deploy_pipeline.pipeline.types import ChangeSet
from deploy_pipeline.project.models import PathGroup

from .git import RevisionProvider

_GLOB_CHARS = frozenset("*?[")


def is_glob(pattern: str) -> bool:
    return any(c in _GLOB_CHARS for c in pattern)


def match_path(path: str, pattern: str) -> bool:
    """
    Case-sensitive match anchored at the repository root.

    - glob pattern: fnmatch over the whole path (`*` also crosses `/`)
    - otherwise: the path itself, or anything below it as a directory
    """
    path = path.lstrip("/")
    if is_glob(pattern):
        return fnmatchcase(path, pattern)

    prefix = pattern.rstrip("/")
    if not prefix:
        return False
    return path == prefix or path.startswith(prefix + "/")


def group_changed(group: PathGroup, paths: Iterable[str]) -> bool:
    return any(match_path(p, pat) for p in paths for pat in group.patterns)


def classify_paths(groups: Sequence[PathGroup], paths: Sequence[str]) -> dict[str, bool]:
    """A path may fall into several groups; each of them is marked changed."""
    return {g.name: group_changed(g, paths) for g in groups}


def analyze_changes(
    provider: RevisionProvider,
    base: str,
    head: str,
    groups: Sequence[PathGroup],
) -> ChangeSet:
    paths = provider.changed_paths(base, head)
    return ChangeSet(
        base=base,
        head=head,
        groups=classify_paths(groups, paths),
        paths=tuple(paths),
    )
