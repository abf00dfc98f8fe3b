"""Ref backends for the Branch Sync Checker.

Both backends expose the same small surface:

* ``upstream_sha(branch)`` / ``tracking_sha(branch)``
* ``is_ancestor(ancestor, descendant)``
* ``create_branch(branch, sha)`` / ``update_branch(branch, sha, expected_sha, force)``
* ``diff_stats(base_branch, head_sha)``
* ``close()``

``ApiRefBackend`` goes through the GitHub REST API; ``GitRefBackend`` works
on a temporary bare clone with GitPython and pushes with a lease.
"""

from __future__ import annotations

import logging

from git import GitCommandError

from forkwatch.errors import (
    ConcurrentUpdateError,
    GitBackendError,
    GitHubAPIError,
    NotFoundError,
)
from forkwatch.github.client import GitHubClient
from forkwatch.models.repository import RepositoryRef
from forkwatch.models.sync import DiffStats, FileStat
from forkwatch.sync.divergence import is_fast_forward_status
from forkwatch.utils.git_ops import GitWorkspace, redact

logger = logging.getLogger(__name__)

_GITHUB_FILE_STATUS = {"added", "modified", "removed", "renamed", "copied", "changed"}
# The compare endpoint lists at most this many files.
COMPARE_FILE_LIMIT = 300


def diff_stats_from_compare(data: dict) -> DiffStats:
    """Build ``DiffStats`` from a ``compare`` response."""
    files = [
        FileStat(
            path=f.get("filename", ""),
            additions=f.get("additions", 0),
            deletions=f.get("deletions", 0),
            status=f.get("status", "") if f.get("status") in _GITHUB_FILE_STATUS else "",
        )
        for f in data.get("files", [])
    ]
    return DiffStats(
        files_changed=len(files),
        additions=sum(f.additions for f in files),
        deletions=sum(f.deletions for f in files),
        commits=data.get("ahead_by", data.get("total_commits", 0)),
        files=files,
        truncated=len(files) >= COMPARE_FILE_LIMIT,
    )


class ApiRefBackend:
    """Ref operations through the GitHub REST API."""

    def __init__(self, client: GitHubClient, fork: RepositoryRef, upstream: RepositoryRef):
        self.client = client
        self.fork = fork
        self.upstream = upstream

    def upstream_sha(self, branch: str) -> str:
        sha = self.client.get_branch_sha(self.upstream, branch)
        if sha is None:
            raise NotFoundError(f"Branch {branch} not found in {self.upstream}")
        return sha

    def tracking_sha(self, branch: str) -> str | None:
        return self.client.get_branch_sha(self.fork, branch)

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        # Forks share their network's object store, so upstream commits resolve in the fork.
        status = self.client.compare(self.fork, ancestor, descendant).get("status", "")
        logger.debug("compare %s...%s: %s", ancestor[:12], descendant[:12], status)
        return is_fast_forward_status(status)

    def create_branch(self, branch: str, sha: str) -> None:
        try:
            self.client.create_branch(self.fork, branch, sha)
        except GitHubAPIError as e:
            if e.status == 422:
                raise ConcurrentUpdateError(
                    f"refs/heads/{branch}", "", self.tracking_sha(branch) or ""
                ) from e
            raise

    def update_branch(self, branch: str, sha: str, expected_sha: str, force: bool = False) -> None:
        current = self.tracking_sha(branch)
        if current != expected_sha:
            raise ConcurrentUpdateError(f"refs/heads/{branch}", expected_sha, current or "")
        try:
            self.client.update_branch(self.fork, branch, sha, force=force)
        except GitHubAPIError as e:
            # 422 "Update is not a fast forward": someone moved the ref after our read.
            if e.status == 422:
                raise ConcurrentUpdateError(
                    f"refs/heads/{branch}", expected_sha, self.tracking_sha(branch) or ""
                ) from e
            raise

    def diff_stats(self, base_branch: str, head_sha: str) -> DiffStats:
        return diff_stats_from_compare(self.client.compare(self.fork, base_branch, head_sha))

    def close(self) -> None:
        pass


class GitRefBackend:
    """Ref operations on a temporary bare clone, pushed back with ``--force-with-lease``."""

    def __init__(self, workspace: GitWorkspace):
        self.workspace = workspace

    def upstream_sha(self, branch: str) -> str:
        if branch not in self.workspace.remote_heads("upstream", branch):
            raise NotFoundError(f"Branch {branch} not found upstream")
        return self.workspace.fetch("upstream", branch)

    def tracking_sha(self, branch: str) -> str | None:
        if branch not in self.workspace.remote_heads("origin", branch):
            return None
        return self.workspace.fetch("origin", branch)

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return self.workspace.repo.is_ancestor(ancestor, descendant)

    def create_branch(self, branch: str, sha: str) -> None:
        # An empty lease means "the ref must not exist yet".
        self._push(branch, sha, lease=f"refs/heads/{branch}:", expected_sha="")

    def update_branch(self, branch: str, sha: str, expected_sha: str, force: bool = False) -> None:
        if not force and not self.is_ancestor(expected_sha, sha):
            raise GitBackendError(f"Refusing non-fast-forward update of {branch} without force")
        self._push(branch, sha, lease=f"refs/heads/{branch}:{expected_sha}", expected_sha=expected_sha)

    def _push(self, branch: str, sha: str, lease: str, expected_sha: str) -> None:
        try:
            self.workspace.repo.git.push(
                "origin", f"{sha}:refs/heads/{branch}", f"--force-with-lease={lease}"
            )
        except GitCommandError as e:
            stderr = str(e.stderr or e)
            if "stale info" in stderr or "rejected" in stderr or "already exists" in stderr:
                heads = self.workspace.remote_heads("origin", branch)
                raise ConcurrentUpdateError(
                    f"refs/heads/{branch}", expected_sha, heads.get(branch, "")
                ) from e
            raise GitBackendError(f"git push failed: {redact(stderr)}") from e

    def diff_stats(self, base_branch: str, head_sha: str) -> DiffStats:
        base_sha = self.workspace.fetch("origin", base_branch)
        git = self.workspace.repo.git
        try:
            commits = int(git.rev_list("--count", f"{base_sha}..{head_sha}") or 0)
            numstat = git.diff("--numstat", f"{base_sha}...{head_sha}")
        except GitCommandError as e:
            raise GitBackendError(f"git diff failed: {redact(str(e))}") from e

        files: list[FileStat] = []
        for line in numstat.splitlines():
            parts = line.split("\t")
            if len(parts) < 3:
                continue
            added, deleted, path = parts[0], parts[1], parts[-1]
            files.append(
                FileStat(
                    path=path,
                    # Binary files report "-" for both counts.
                    additions=int(added) if added.isdigit() else 0,
                    deletions=int(deleted) if deleted.isdigit() else 0,
                )
            )
        return DiffStats(
            files_changed=len(files),
            additions=sum(f.additions for f in files),
            deletions=sum(f.deletions for f in files),
            commits=commits,
            files=files,
        )

    def close(self) -> None:
        self.workspace.cleanup()
