"""Tag Integrity Monitor — detect added, mutated, and deleted upstream tags.

The monitor is observational: it raises issues, it never gates merges or
rewrites tags on the fork.
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from pathlib import Path

from forkwatch.github.client import GitHubClient
from forkwatch.models.repository import IssueInfo, RepositoryRef
from forkwatch.models.tags import TagClassification, TagDiff, TagSnapshot
from forkwatch.reporting import templates
from forkwatch.reporting.notifier import Notifier, content_key
from forkwatch.sync.snapshot_store import TagSnapshotStore
from forkwatch.sync.tag_diff import build_snapshot, classify_tags

logger = logging.getLogger(__name__)


@dataclass
class TagReport:
    """What one Tag Integrity Monitor run found and raised."""

    diff: TagDiff
    baseline_source: str
    first_run: bool = False
    skipped: list[str] = field(default_factory=list)
    issues: dict[TagClassification, IssueInfo] = field(default_factory=dict)
    snapshot_path: Path | None = None

    @property
    def has_mutations(self) -> bool:
        return self.diff.has_mutations


class TagIntegrityMonitor:
    """Compares upstream tags against the fork's recorded tags.

    Args:
        source: Tag source (``ApiTagSource`` or ``GitTagSource``).
        client: Client used to raise issues on the fork.
        fork: The fork repository.
        upstream: The upstream repository.
        baseline: ``"fork"`` (the fork's own tags) or ``"snapshot"`` (the
            upstream snapshot saved by the previous run).
        store: Snapshot store, required for the ``snapshot`` baseline.
        ignore: fnmatch patterns for tag names to leave out on both sides.
    """

    def __init__(
        self,
        source,
        client: GitHubClient,
        fork: RepositoryRef,
        upstream: RepositoryRef,
        baseline: str = "fork",
        store: TagSnapshotStore | None = None,
        ignore: list[str] | None = None,
        labels: list[str] | None = None,
        alert_labels: list[str] | None = None,
        notice_labels: list[str] | None = None,
        dry_run: bool = False,
    ) -> None:
        if baseline == "snapshot" and store is None:
            raise ValueError("The snapshot baseline needs a TagSnapshotStore")
        self.source = source
        self.fork = fork
        self.upstream = upstream
        self.baseline = baseline
        self.store = store
        self.ignore = ignore or []
        self.labels = labels or ["upstream-tags"]
        self.alert_labels = alert_labels or ["security", "tag-mutation", "priority: high"]
        self.notice_labels = notice_labels or ["upstream-tags", "priority: low"]
        self.dry_run = dry_run
        self.notifier = Notifier(client, fork, dry_run=dry_run)

    def _snapshot(self, repo: RepositoryRef) -> tuple[TagSnapshot, list[str]]:
        tags = [
            t for t in self.source.list_tags(repo)
            if not any(fnmatch.fnmatch(t.name, pattern) for pattern in self.ignore)
        ]
        return build_snapshot(repo.full_name, tags)

    def _load_baseline(self) -> tuple[TagSnapshot, bool, list[str]]:
        if self.baseline == "fork":
            snapshot, skipped = self._snapshot(self.fork)
            return snapshot, False, skipped

        stored = self.store.load(self.upstream)
        if stored is None:
            logger.info(
                "No tag snapshot recorded for %s yet; every upstream tag will be reported as added",
                self.upstream,
            )
            return TagSnapshot.empty(f"{self.upstream.full_name} (no snapshot)"), True, []
        return stored, False, []

    def run(self) -> TagReport:
        upstream_snapshot, skipped = self._snapshot(self.upstream)
        baseline, first_run, baseline_skipped = self._load_baseline()
        logger.info(
            "Comparing %d upstream tag(s) against %d baseline tag(s) from %s",
            len(upstream_snapshot),
            len(baseline),
            self.baseline,
        )

        # Unresolvable names are left out on both sides; they are neither deleted nor added.
        unresolved = sorted(set(skipped) | set(baseline_skipped))
        diff = classify_tags(upstream_snapshot.without(unresolved), baseline.without(unresolved))
        report = TagReport(
            diff=diff,
            baseline_source=self.baseline,
            first_run=first_run,
            skipped=unresolved,
        )
        logger.info(diff.summary())

        upstream_name = self.upstream.full_name
        if diff.mutated:
            for change in diff.mutated:
                logger.error(
                    "Tag %s moved: %s -> %s", change.name, change.previous_sha, change.current_sha
                )
            title, body = templates.mutated_tags_alert(self.upstream, diff.mutated)
            key = content_key(
                f"tags-mutated:{upstream_name}",
                [f"{c.name}={c.previous_sha}->{c.current_sha}" for c in diff.mutated],
            )
            self._raise(report, TagClassification.MUTATED, key, title, body, self.alert_labels)

        if diff.added:
            title, body = templates.added_tags_issue(self.upstream, diff.added, first_run=first_run)
            key = content_key(
                f"tags-added:{upstream_name}", [f"{c.name}={c.current_sha}" for c in diff.added]
            )
            self._raise(report, TagClassification.ADDED, key, title, body, self.labels)

        if diff.deleted:
            title, body = templates.deleted_tags_issue(self.upstream, diff.deleted)
            key = content_key(
                f"tags-deleted:{upstream_name}", [f"{c.name}={c.previous_sha}" for c in diff.deleted]
            )
            self._raise(report, TagClassification.DELETED, key, title, body, self.notice_labels)

        if self.baseline == "snapshot" and not self.dry_run:
            report.snapshot_path = self.store.save(
                self.upstream, upstream_snapshot.carrying(baseline, skipped)
            )
        return report

    def _raise(
        self,
        report: TagReport,
        classification: TagClassification,
        key: str,
        title: str,
        body: str,
        labels: list[str],
    ) -> None:
        issue = self.notifier.raise_issue(key, title, body, labels)
        if issue is not None:
            report.issues[classification] = issue
