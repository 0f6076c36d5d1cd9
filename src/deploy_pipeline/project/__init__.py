from .loader import PROJECT_FILE_NAME, get_project, load_project, resolve_project_file
from .models import (
    APPLICATION_GROUP,
    MANIFESTS_GROUP,
    BuildSpec,
    PathGroup,
    ProjectFile,
    WorkloadSpec,
    default_project,
)

__all__ = [
    "APPLICATION_GROUP",
    "MANIFESTS_GROUP",
    "BuildSpec",
    "PathGroup",
    "ProjectFile",
    "WorkloadSpec",
    "default_project",
    "PROJECT_FILE_NAME",
    "get_project",
    "load_project",
    "resolve_project_file",
]
