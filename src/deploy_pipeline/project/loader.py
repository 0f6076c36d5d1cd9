from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml
from pydantic import ValidationError

from deploy_pipeline.core import ProjectConfigError

from .models import ProjectFile, default_project

PROJECT_FILE_NAME = "deploy-pipeline.yaml"
PROJECT_FILE_ENV = "DEPLOY_PIPELINE_PROJECT_FILE"

log = structlog.get_logger(__name__)


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise ProjectConfigError(f"Cannot read project file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ProjectConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ProjectConfigError(f"Project file must contain a YAML mapping: {path}")
    return dict(payload)


def resolve_project_file(
    explicit: Path | None = None, *, repo_root: Path | None = None
) -> Path | None:
    """
    Locate the project file.

    Priority:
      1) explicit argument (must exist)
      2) env DEPLOY_PIPELINE_PROJECT_FILE (must exist)
      3) {repo_root}/deploy-pipeline.yaml
      4) ./deploy-pipeline.yaml

    Returns None when nothing is found; callers fall back to the defaults.
    """
    if explicit is not None:
        p = Path(explicit).expanduser()
        if p.is_file():
            return p.resolve()
        raise ProjectConfigError(f"--project file not found: {p}")

    env = os.environ.get(PROJECT_FILE_ENV)
    if env:
        p = Path(env).expanduser()
        if p.is_file():
            return p.resolve()
        raise ProjectConfigError(f"{PROJECT_FILE_ENV} does not point to a file: {p}")

    candidates = []
    if repo_root is not None:
        candidates.append(Path(repo_root) / PROJECT_FILE_NAME)
    candidates.append(Path.cwd() / PROJECT_FILE_NAME)

    for cand in candidates:
        if cand.is_file():
            return cand.resolve()
    return None


def load_project(path: Path) -> ProjectFile:
    raw = _load_yaml_mapping(Path(path))
    try:
        return ProjectFile.model_validate(raw)
    except ValidationError as exc:
        raise ProjectConfigError(f"Invalid project file {path}:\n{exc}") from exc


def get_project(
    explicit: Path | None = None, *, repo_root: Path | None = None
) -> ProjectFile:
    path = resolve_project_file(explicit, repo_root=repo_root)
    if path is None:
        log.info("project.defaults", reason="no project file found")
        return default_project()
    log.debug("project.load", path=str(path))
    return load_project(path)
