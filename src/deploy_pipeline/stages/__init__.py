from .build import stage_build
from .changes import stage_changes
from .deploy import stage_deploy
from .verify import stage_verify

__all__ = [
    "stage_changes",
    "stage_build",
    "stage_deploy",
    "stage_verify",
]
