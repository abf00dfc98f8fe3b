"""Notifier — open issues, refreshing an existing open one instead of duplicating it.

Each notification carries a hidden marker (``<!-- forkwatch:<key> -->``). An
open issue with the same marker is updated in place, so re-running a check
that finds the same situation does not spam the tracker.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Iterable

from forkwatch.github.client import GitHubClient
from forkwatch.models.repository import IssueInfo, RepositoryRef

logger = logging.getLogger(__name__)


def marker(key: str) -> str:
    return f"<!-- forkwatch:{key} -->"


def content_key(prefix: str, parts: Iterable[str]) -> str:
    """Stable key for a notification whose identity is its content."""
    digest = hashlib.sha1("\n".join(sorted(parts)).encode("utf-8")).hexdigest()[:12]
    return f"{prefix}:{digest}"


class Notifier:
    """Raises issues on the fork."""

    def __init__(self, client: GitHubClient, repo: RepositoryRef, dry_run: bool = False):
        self.client = client
        self.repo = repo
        self.dry_run = dry_run

    def find_open(self, key: str, labels: list[str] | None = None) -> dict | None:
        tag = marker(key)
        # Label filters are ANDed by GitHub; narrowing by the first label is enough.
        for issue in self.client.list_open_issues(self.repo, labels=(labels or [])[:1]):
            if tag in (issue.get("body") or ""):
                return issue
        return None

    def raise_issue(self, key: str, title: str, body: str, labels: list[str]) -> IssueInfo | None:
        """Create the issue, or update the open issue that carries the same key."""
        full_body = f"{body}\n{marker(key)}\n"

        if self.dry_run:
            logger.info("[dry-run] would raise issue %r with labels %s", title, labels)
            return None

        existing = self.find_open(key, labels)
        if existing is not None:
            data = self.client.update_issue(
                self.repo, existing["number"], title=title, body=full_body
            )
            logger.info("Updated open issue #%s: %s", existing["number"], title)
            return IssueInfo.from_api(data or existing, created=False)

        data = self.client.create_issue(self.repo, title, full_body, labels)
        logger.info("Opened issue #%s: %s", data.get("number"), title)
        return IssueInfo.from_api(data, created=True)
