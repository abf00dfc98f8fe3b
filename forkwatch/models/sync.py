"""Branch sync models — outcomes, diff statistics, and run results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from forkwatch.models.repository import IssueInfo, PullRequestInfo


class SyncOutcome(Enum):
    """Exactly one outcome per sync attempt."""

    ALREADY_CURRENT = "already-current"
    FAST_FORWARDED = "fast-forwarded"
    DIVERGED = "diverged"  # terminal for the run, needs a human


@dataclass
class FileStat:
    """Per-file line counts for a diff."""

    path: str
    additions: int = 0
    deletions: int = 0
    status: str = ""  # added | modified | removed | renamed


@dataclass
class DiffStats:
    """Size of the change a sync pull request brings in."""

    files_changed: int = 0
    additions: int = 0
    deletions: int = 0
    commits: int = 0
    files: list[FileStat] = field(default_factory=list)
    truncated: bool = False  # file list hit the compare API limit; counts are lower bounds

    @property
    def total_churn(self) -> int:
        return self.additions + self.deletions

    @property
    def is_empty(self) -> bool:
        return self.commits == 0 and self.files_changed == 0

    def describe(self) -> str:
        more = "+" if self.truncated else ""
        return (
            f"{self.commits} commit(s), {self.files_changed}{more} file(s), "
            f"+{self.additions}/-{self.deletions} ({self.total_churn}{more} lines)"
        )


@dataclass
class SyncResult:
    """What one Branch Sync Checker run did."""

    outcome: SyncOutcome
    tracking_branch: str
    tracking_sha: str
    upstream_sha: str
    initialized: bool = False
    ref_updated: bool = False
    diff: DiffStats | None = None
    pull_request: PullRequestInfo | None = None
    issue: IssueInfo | None = None

    def summary(self) -> str:
        short_t = self.tracking_sha[:12] if self.tracking_sha else "(none)"
        short_u = self.upstream_sha[:12]
        if self.outcome is SyncOutcome.ALREADY_CURRENT:
            return f"{self.tracking_branch} already at {short_u}"
        if self.outcome is SyncOutcome.DIVERGED:
            return f"{self.tracking_branch} ({short_t}) has diverged from upstream ({short_u})"
        if self.initialized:
            return f"{self.tracking_branch} created at {short_u}"
        return f"{self.tracking_branch} fast-forwarded {short_t} -> {short_u}"
