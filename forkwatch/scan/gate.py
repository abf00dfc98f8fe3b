"""Scan Trigger Gate — make sure a security scan runs on every sync pull request.

Whether the platform starts the scan on its own depends on who opened the
pull request. Pull requests from the ambient automation token do not trigger
other automation, so for those the gate either dispatches a scan workflow,
runs the scan in-process, or leaves it to the next human interaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from forkwatch.errors import NotFoundError
from forkwatch.github.client import GitHubClient
from forkwatch.llm.client import LLMClient
from forkwatch.models.repository import OriginIdentity, PullRequestInfo, RepositoryRef
from forkwatch.runlock import LatestWinsGroup
from forkwatch.scan.findings import RiskAssessment, assess, code_scanning_findings, dependency_findings
from forkwatch.scan.summary import narrate, render_summary, upsert_summary_comment
from forkwatch.sync.refs import diff_stats_from_compare

logger = logging.getLogger(__name__)


class TriggerMode(Enum):
    """How the security scan gets started for a pull request."""

    AUTOMATIC = "automatic"  # platform event triggers fire on their own
    DISPATCHED = "dispatched"  # explicit workflow_dispatch
    INLINE = "inline"  # forkwatch runs the scan itself
    DEFERRED = "deferred"  # waits for a human action (label, push)


@dataclass
class GateDecision:
    origin: OriginIdentity
    mode: TriggerMode
    reason: str


class ScanTriggerGate:
    """Decides how the scan is triggered for a pull request.

    Args:
        inline_fallback: Run the scan in-process when nothing else will.
        trigger_label: Label a human adds to start a deferred scan.
        dispatch_workflow: Workflow file name to dispatch; empty disables it.
        client: Client used for dispatching, required with ``dispatch_workflow``.
        repo: The fork repository.
    """

    def __init__(
        self,
        inline_fallback: bool = True,
        trigger_label: str = "run-security-scan",
        dispatch_workflow: str = "",
        client: GitHubClient | None = None,
        repo: RepositoryRef | None = None,
    ) -> None:
        if dispatch_workflow and (client is None or repo is None):
            raise ValueError("Dispatching a scan workflow needs a client and the fork repository")
        self.inline_fallback = inline_fallback
        self.trigger_label = trigger_label
        self.dispatch_workflow = dispatch_workflow
        self.client = client
        self.repo = repo

    def expected_mode(self, origin: OriginIdentity) -> GateDecision:
        if origin.triggers_automation:
            return GateDecision(
                origin, TriggerMode.AUTOMATIC, f"opened by {origin.value}; scan triggers fire on their own"
            )
        if self.dispatch_workflow:
            return GateDecision(
                origin,
                TriggerMode.DISPATCHED,
                f"opened by {origin.value}; dispatching {self.dispatch_workflow}",
            )
        if self.inline_fallback:
            return GateDecision(
                origin, TriggerMode.INLINE, f"opened by {origin.value}; running the scan in-process"
            )
        return GateDecision(
            origin,
            TriggerMode.DEFERRED,
            f"opened by {origin.value}; add the '{self.trigger_label}' label or push to start the scan",
        )

    def evaluate(self, pr: PullRequestInfo) -> GateDecision:
        decision = self.expected_mode(pr.origin)
        logger.info("Scan trigger for #%s: %s (%s)", pr.number, decision.mode.value, decision.reason)
        return decision

    def pr_note(self, origin: OriginIdentity) -> str:
        """One line for the sync pull request body saying how the scan starts."""
        mode = self.expected_mode(origin).mode
        if mode is TriggerMode.AUTOMATIC:
            return "The security scan starts automatically for this pull request."
        if mode is TriggerMode.DISPATCHED:
            return f"The security scan is dispatched through `{self.dispatch_workflow}`."
        if mode is TriggerMode.INLINE:
            return "The security scan was run by forkwatch; see the scan summary comment."
        return (
            "This pull request was opened with the automation token, so the security scan "
            f"does not start on its own. Add the `{self.trigger_label}` label to run it."
        )

    def dispatch(self, pr: PullRequestInfo) -> None:
        logger.info("Dispatching %s for #%s at %s", self.dispatch_workflow, pr.number, pr.head_ref)
        self.client.dispatch_workflow(
            self.repo,
            self.dispatch_workflow,
            ref=pr.head_ref,
            inputs={"pr": str(pr.number)},
        )


@dataclass
class ScanResult:
    pr: PullRequestInfo
    assessment: RiskAssessment
    comment_id: int


class ScanRunner:
    """Runs the scan for one pull request and posts its summary comment.

    Concurrent runs for the same pull request form a latest-wins group: an
    older run that notices a newer one stops before touching the comment.
    """

    def __init__(
        self,
        client: GitHubClient,
        repo: RepositoryRef,
        state_dir: str | Path,
        fail_on: str = "high",
        llm: LLMClient | None = None,
    ) -> None:
        self.client = client
        self.repo = repo
        self.state_dir = Path(state_dir)
        self.fail_on = fail_on
        self.llm = llm

    def run(self, pr_number: int) -> ScanResult:
        group = LatestWinsGroup(self.state_dir, f"scan-{self.repo.full_name}-{pr_number}")
        with group:
            pr = PullRequestInfo.from_api(self.client.get_pull(self.repo, pr_number))
            logger.info("Scanning #%s at %s", pr.number, pr.head_sha[:12])
            unavailable: list[str] = []

            try:
                changes = self.client.dependency_review(self.repo, pr.base_sha, pr.head_sha)
            except NotFoundError:
                logger.warning("Dependency review is not available for %s", self.repo)
                changes, unavailable = [], unavailable + ["dependency review"]
            group.check()

            try:
                alerts = self.client.code_scanning_alerts(self.repo, f"refs/pull/{pr.number}/head")
            except NotFoundError:
                logger.warning("Code scanning is not available for %s", self.repo)
                alerts, unavailable = [], unavailable + ["code scanning"]

            assessment = assess(
                dependency_findings(changes) + code_scanning_findings(alerts),
                fail_on=self.fail_on,
                unavailable=unavailable,
            )
            diff_summary = self._diff_summary(pr) if self.llm is not None and self.llm.configured else ""
            narrative = narrate(self.llm, pr, assessment, diff_summary)
            group.check()

            comment_id = upsert_summary_comment(
                self.client, self.repo, pr.number, render_summary(pr, assessment, narrative)
            )
        logger.info(
            "Scan of #%s: risk %s, %s",
            pr.number,
            assessment.level,
            "blocking" if assessment.blocking else "not blocking",
        )
        return ScanResult(pr=pr, assessment=assessment, comment_id=comment_id)

    def _diff_summary(self, pr: PullRequestInfo) -> str:
        data = self.client.compare(self.repo, pr.base_sha, pr.head_sha)
        return diff_stats_from_compare(data).describe()
