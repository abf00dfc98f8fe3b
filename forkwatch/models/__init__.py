"""Domain models for forkwatch."""

from .repository import (
    IssueInfo,
    OriginIdentity,
    PullRequestInfo,
    RepositoryRef,
    TrackingBranchState,
)
from .sync import DiffStats, FileStat, SyncOutcome, SyncResult
from .tags import Tag, TagChange, TagClassification, TagDiff, TagSnapshot

__all__ = [
    "RepositoryRef",
    "TrackingBranchState",
    "OriginIdentity",
    "PullRequestInfo",
    "IssueInfo",
    "SyncOutcome",
    "SyncResult",
    "DiffStats",
    "FileStat",
    "Tag",
    "TagSnapshot",
    "TagClassification",
    "TagChange",
    "TagDiff",
]
