from .stage import stage_verify
from .status import classify
from .verifier import RolloutReport, RolloutVerifier, Transition

__all__ = [
    "stage_verify",
    "classify",
    "RolloutReport",
    "RolloutVerifier",
    "Transition",
]
