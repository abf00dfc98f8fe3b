"""Branch Sync Checker — fast-forward the tracking branch to upstream.

One run produces exactly one ``SyncOutcome``:

* ``already-current``: nothing to do.
* ``fast-forwarded``: the tracking branch moved (or was created) and a pull
  request tracking -> fork default branch was opened or refreshed.
* ``diverged``: neither tip is an ancestor of the other; an issue is raised
  and the tracking branch is left alone.

The ref is only written after the outcome is known, with a lease on the sha
read at the start of the run.
"""

from __future__ import annotations

import logging

from forkwatch.github.client import GitHubClient
from forkwatch.models.repository import PullRequestInfo, RepositoryRef, TrackingBranchState
from forkwatch.models.sync import SyncOutcome, SyncResult
from forkwatch.reporting import templates
from forkwatch.reporting.notifier import Notifier
from forkwatch.sync.divergence import classify_sync

logger = logging.getLogger(__name__)


class BranchSyncChecker:
    """Keeps ``tracking_branch`` on the fork in step with upstream's default branch.

    Args:
        refs: Ref backend (``ApiRefBackend`` or ``GitRefBackend``).
        client: Client for reads and issues (ambient token).
        pr_client: Client used to create pull requests. Its identity decides
            whether the platform starts other automation for the pull request.
        fork: The fork; ``default_branch`` is the pull request base.
        upstream: The upstream; ``default_branch`` is the branch mirrored.
        tracking_branch: Fork branch that mirrors upstream.
        labels: Labels for the sync pull request.
        divergence_labels: Labels for divergence issues.
        scan_note: Extra line for the pull request body about how the scan runs.
        dry_run: Classify only; touch no ref, issue, or pull request.
    """

    def __init__(
        self,
        refs,
        client: GitHubClient,
        pr_client: GitHubClient,
        fork: RepositoryRef,
        upstream: RepositoryRef,
        tracking_branch: str,
        labels: list[str] | None = None,
        divergence_labels: list[str] | None = None,
        scan_note: str = "",
        dry_run: bool = False,
    ) -> None:
        self.refs = refs
        self.client = client
        self.pr_client = pr_client
        self.fork = fork
        self.upstream = upstream
        self.tracking_branch = tracking_branch
        self.labels = labels if labels is not None else ["upstream-sync"]
        self.divergence_labels = divergence_labels if divergence_labels is not None else list(self.labels)
        self.scan_note = scan_note
        self.dry_run = dry_run
        self.notifier = Notifier(client, fork, dry_run=dry_run)

    def tracking_state(self) -> TrackingBranchState | None:
        """The tracking branch tip on the fork, or ``None`` before the first sync."""
        sha = self.refs.tracking_sha(self.tracking_branch)
        return TrackingBranchState(self.tracking_branch, sha) if sha else None

    def run(self, force: bool = False) -> SyncResult:
        upstream_sha = self.refs.upstream_sha(self.upstream.default_branch)
        state = self.tracking_state()
        logger.info(
            "%s@%s is at %s; %s is at %s",
            self.upstream,
            self.upstream.default_branch,
            upstream_sha[:12],
            self.tracking_branch,
            state.sha[:12] if state else "(missing)",
        )

        if state is None:
            return self._initialize(upstream_sha)
        tracking_sha = state.sha

        ancestor = tracking_sha == upstream_sha or self.refs.is_ancestor(tracking_sha, upstream_sha)
        outcome = classify_sync(tracking_sha, upstream_sha, ancestor, force)

        result = SyncResult(
            outcome=outcome,
            tracking_branch=self.tracking_branch,
            tracking_sha=tracking_sha,
            upstream_sha=upstream_sha,
        )

        if outcome is SyncOutcome.ALREADY_CURRENT:
            logger.info("Tracking branch is already current")
            return result

        if outcome is SyncOutcome.DIVERGED:
            logger.warning("Tracking branch has diverged from upstream; raising an issue")
            title, body = templates.divergence_issue(
                self.upstream, self.fork, self.tracking_branch, tracking_sha, upstream_sha
            )
            result.issue = self.notifier.raise_issue(
                self._divergence_key(), title, body, self.divergence_labels
            )
            return result

        if tracking_sha != upstream_sha:
            if self.dry_run:
                logger.info("[dry-run] would move %s to %s", self.tracking_branch, upstream_sha[:12])
            else:
                if not ancestor:
                    logger.warning(
                        "Force-resetting %s, discarding commits not in upstream", self.tracking_branch
                    )
                self.refs.update_branch(
                    self.tracking_branch, upstream_sha, expected_sha=tracking_sha, force=not ancestor
                )
                result.ref_updated = True

        self._open_pull_request(result)
        return result

    def _initialize(self, upstream_sha: str) -> SyncResult:
        logger.info("Creating tracking branch %s at %s", self.tracking_branch, upstream_sha[:12])
        result = SyncResult(
            outcome=SyncOutcome.FAST_FORWARDED,
            tracking_branch=self.tracking_branch,
            tracking_sha="",
            upstream_sha=upstream_sha,
            initialized=True,
        )
        if not self.dry_run:
            self.refs.create_branch(self.tracking_branch, upstream_sha)
            result.ref_updated = True
        self._open_pull_request(result)
        return result

    def _divergence_key(self) -> str:
        return (
            f"divergence:{self.fork.full_name}@{self.tracking_branch}"
            f"<-{self.upstream.full_name}@{self.upstream.default_branch}"
        )

    def _open_pull_request(self, result: SyncResult) -> None:
        diff = self.refs.diff_stats(self.fork.default_branch, result.upstream_sha)
        result.diff = diff
        if diff.is_empty:
            logger.info(
                "%s already contains %s; no pull request needed",
                self.fork.default_branch,
                result.upstream_sha[:12],
            )
            return

        title, body = templates.sync_pull_request(
            self.upstream,
            self.tracking_branch,
            self.fork.default_branch,
            result.upstream_sha,
            result.tracking_sha,
            diff,
            scan_note=self.scan_note,
        )

        if self.dry_run:
            logger.info("[dry-run] would open pull request %r", title)
            return

        existing = self.client.list_open_pulls(
            self.fork, head=self.tracking_branch, base=self.fork.default_branch
        )
        if existing:
            number = existing[0]["number"]
            data = self.pr_client.update_pull(self.fork, number, title=title, body=body)
            logger.info("Refreshed open sync pull request #%s", number)
        else:
            data = self.pr_client.create_pull(
                self.fork, title, body, head=self.tracking_branch, base=self.fork.default_branch
            )
            logger.info("Opened sync pull request #%s", data.get("number"))

        if self.labels:
            self.pr_client.add_labels(self.fork, data["number"], self.labels)
        result.pull_request = PullRequestInfo.from_api(data)
