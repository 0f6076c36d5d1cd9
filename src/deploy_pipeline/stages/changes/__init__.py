from .analyzer import analyze_changes, classify_paths, match_path
from .git import GitRevisionProvider, RevisionProvider
from .stage import stage_changes

__all__ = [
    "analyze_changes",
    "classify_paths",
    "match_path",
    "GitRevisionProvider",
    "RevisionProvider",
    "stage_changes",
]
