from __future__ import annotations

from pathlib import Path
from typing import Protocol

import structlog
from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from git import Repo as GitRepo
from git.exc import BadName, BadObject
from git.objects import Commit

from deploy_pipeline.core import RevisionResolutionError

log = structlog.get_logger(__name__)


class RevisionProvider(Protocol):
    def changed_paths(self, base: str, head: str) -> list[str]:
        """
        Root-relative POSIX paths that differ between two revisions.

        Raises RevisionResolutionError when either revision does not resolve.
        """
        ...


class GitRevisionProvider:
    """
    RevisionProvider over a local git checkout (GitPython).

    Read-only: resolves revisions and diffs their trees, never touches the
    working copy or refs.
    """

    def __init__(self, repo_path: Path) -> None:
        self.repo_path = Path(repo_path)
        self._repo: GitRepo | None = None

    @property
    def repo(self) -> GitRepo:
        if self._repo is None:
            try:
                self._repo = GitRepo(self.repo_path, search_parent_directories=True)
            except (InvalidGitRepositoryError, NoSuchPathError) as exc:
                raise RevisionResolutionError(
                    str(self.repo_path), f"not a git repository ({type(exc).__name__})"
                ) from exc
        return self._repo

    def resolve(self, revision: str) -> Commit:
        if not revision or not revision.strip():
            raise RevisionResolutionError(revision, "empty revision")
        try:
            return self.repo.commit(revision.strip())
        except (BadName, BadObject, ValueError, GitCommandError) as exc:
            raise RevisionResolutionError(revision, str(exc) or type(exc).__name__) from exc

    def changed_paths(self, base: str, head: str) -> list[str]:
        base_commit = self.resolve(base)
        head_commit = self.resolve(head)

        if base_commit.hexsha == head_commit.hexsha:
            return []

        paths: set[str] = set()
        # GitPython passes -M, so a rename is one entry with both paths set.
        for diff in base_commit.diff(head_commit):
            for p in (diff.a_path, diff.b_path):
                if p:
                    paths.add(p)

        log.debug(
            "git.diff",
            base=base_commit.hexsha[:12],
            head=head_commit.hexsha[:12],
            paths=len(paths),
        )
        return sorted(paths)

    def close(self) -> None:
        if self._repo is not None:
            self._repo.close()
            self._repo = None
