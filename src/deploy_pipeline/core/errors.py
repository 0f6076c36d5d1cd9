from __future__ import annotations

import traceback
from dataclasses import dataclass


class PipelineError(RuntimeError):
    """Base error"""


@dataclass(frozen=True, slots=True)
class StageError:
    """
    A normalized error record for stage failures.
    """

    exc_type: str
    message: str
    traceback: str

    def to_dict(self) -> dict[str, str]:
        return {
            "exc_type": self.exc_type,
            "message": self.message,
            "traceback": self.traceback,
        }


def stage_error_from_exc(exc: BaseException) -> StageError:
    return StageError(
        exc_type=type(exc).__name__,
        message=str(exc),
        traceback="".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        ),
    )


class ProjectConfigError(PipelineError):
    """Project file is missing, unreadable or fails validation"""


class RevisionResolutionError(PipelineError):
    """
    A base or head revision does not resolve to a commit in the history.
    """

    def __init__(self, revision: str, reason: str | None = None) -> None:
        msg = f"Cannot resolve revision {revision!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.revision = revision


class CredentialError(PipelineError):
    """Credential acquisition failed; callers must fail closed"""


class BuildStageError(PipelineError):
    """Build-stage error"""


class BuildFailed(BuildStageError):
    """
    Non-retryable: the image could not be built from its context
    (missing context, Dockerfile error, failing build step)
    """


class PublishFailed(BuildStageError):
    """
    Pushing the built image failed (network, auth, registry rejection).
    Not retried here; retry policy belongs to the CI executor.
    """


class DeployStageError(PipelineError):
    """Deploy-stage error"""


class ApplyRejected(DeployStageError):
    """The cluster rejected a resource definition"""

    def __init__(self, resource: str, reason: str) -> None:
        super().__init__(f"Cluster rejected {resource}: {reason}")
        self.resource = resource
        self.reason = reason


class ClusterConnectionError(DeployStageError, ConnectionError):
    """The cluster API is unreachable or refused our credentials"""


class RunLockedError(DeployStageError):
    """Another run holds the rollout lock for the same workload"""

    def __init__(self, workload: str, holder: str | None) -> None:
        msg = f"Workload {workload} is locked by another run"
        if holder:
            msg += f" ({holder})"
        super().__init__(msg)
        self.workload = workload
        self.holder = holder


class ClusterReadError(PipelineError):
    """
    A single status read failed. Recovered locally by the rollout verifier.
    """


class VerificationUnavailable(PipelineError):
    """
    The deadline passed without a single successful status read, so the
    rollout state is unknown (distinct from a timed-out rollout).
    """

    def __init__(self, workload: str, attempts: int, last_error: BaseException | None):
        msg = f"No successful status read for {workload} after {attempts} attempt(s)"
        if last_error is not None:
            msg += f": {last_error}"
        super().__init__(msg)
        self.workload = workload
        self.attempts = attempts
        self.last_error = last_error


class ManifestError(DeployStageError):
    """A manifest file is unreadable or is not a Kubernetes resource"""
