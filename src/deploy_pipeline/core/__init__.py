from .config import DEFAULT_IMAGE_TAG, Settings, load_settings
from .errors import (
    ApplyRejected,
    BuildFailed,
    BuildStageError,
    ClusterConnectionError,
    ClusterReadError,
    CredentialError,
    DeployStageError,
    ManifestError,
    PipelineError,
    ProjectConfigError,
    PublishFailed,
    RevisionResolutionError,
    RunLockedError,
    StageError,
    VerificationUnavailable,
    stage_error_from_exc,
)
from .fs import atomic_write_text, safe_unlink
from .hashing import sha256_bytes, sha256_json
from .json import atomic_write_json, read_json, stable_json_dumps
from .locking import WorkloadLock
from .logging import ILogger, bind, clear_bindings, configure_logging, get_logger
from .process import CommandResult, run_command
from .provenance import RunProvenance, new_run_id
from .time import monotonic_ms, utc_now_iso

__all__ = [
    "DEFAULT_IMAGE_TAG",
    "Settings",
    "load_settings",
    "PipelineError",
    "StageError",
    "stage_error_from_exc",
    "ProjectConfigError",
    "RevisionResolutionError",
    "CredentialError",
    "BuildStageError",
    "BuildFailed",
    "PublishFailed",
    "DeployStageError",
    "ManifestError",
    "ApplyRejected",
    "ClusterConnectionError",
    "RunLockedError",
    "ClusterReadError",
    "VerificationUnavailable",
    "atomic_write_text",
    "safe_unlink",
    "sha256_bytes",
    "sha256_json",
    "atomic_write_json",
    "read_json",
    "stable_json_dumps",
    "WorkloadLock",
    "ILogger",
    "bind",
    "clear_bindings",
    "configure_logging",
    "get_logger",
    "CommandResult",
    "run_command",
    "RunProvenance",
    "new_run_id",
    "monotonic_ms",
    "utc_now_iso",
]
