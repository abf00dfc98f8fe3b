"""Issue and pull request templates.

Every template returns a ``(title, body)`` pair. Bodies follow one layout:
Summary, Affected refs, Recommended action (plus a checklist where a human
security review is required).
"""

from __future__ import annotations

from forkwatch.models.repository import RepositoryRef
from forkwatch.models.sync import DiffStats
from forkwatch.models.tags import TagChange

SECURITY_REVIEW_CHECKLIST = [
    "Review new or changed dependencies and their licenses",
    "Check CI/workflow files (`.github/`) for new permissions, secrets, or third-party actions",
    "Look for changes to build, install, or release scripts",
    "Check for added binaries, minified files, or generated code",
    "Confirm the security scan summary on this pull request has no blocking findings",
]

TAG_REVIEW_CHECKLIST = [
    "Confirm the tag was announced by upstream maintainers (release notes, changelog)",
    "Verify the tag signature, if upstream signs releases",
    "Review the diff between the previous release and the new tag",
    "Decide whether the fork should adopt the release",
]

_MAX_LISTED = 50


def _short(sha: str) -> str:
    return sha[:12] if sha else "(none)"


def _checklist(items: list[str]) -> list[str]:
    return [f"- [ ] {item}" for item in items]


def _tag_names(changes: list[TagChange], limit: int = 3) -> str:
    names = [c.name for c in changes[:limit]]
    extra = len(changes) - limit
    return ", ".join(names) + (f" (+{extra} more)" if extra > 0 else "")


# ── Branch sync ──────────────────────────────────────────────────────


def sync_pull_request(
    upstream: RepositoryRef,
    tracking_branch: str,
    fork_default_branch: str,
    upstream_sha: str,
    previous_sha: str,
    diff: DiffStats,
    scan_note: str = "",
) -> tuple[str, str]:
    title = f"Sync upstream {upstream.full_name}@{upstream.default_branch} ({_short(upstream_sha)})"

    lines = [
        "## Summary",
        f"Fast-forwards `{tracking_branch}` to `{upstream.full_name}@{upstream.default_branch}` "
        f"and proposes merging it into `{fork_default_branch}`.",
        "",
        f"- **Commits:** {diff.commits}",
        f"- **Files changed:** {diff.files_changed}{'+' if diff.truncated else ''}",
        f"- **Lines:** +{diff.additions} / -{diff.deletions}",
    ]
    if diff.truncated:
        lines.append(
            f"- _GitHub lists at most {diff.files_changed} files per comparison; file and line "
            "counts cover only those. Review the full diff locally._"
        )
    lines += [
        "",
        "## Affected refs",
        "| Ref | Commit |",
        "|-----|--------|",
        f"| `{tracking_branch}` (before) | `{_short(previous_sha)}` |",
        f"| `{upstream.full_name}@{upstream.default_branch}` | `{upstream_sha}` |",
    ]

    if diff.files:
        lines += ["", "<details><summary>Changed files</summary>", ""]
        for f in diff.files[:_MAX_LISTED]:
            lines.append(f"- `{f.path}` (+{f.additions} / -{f.deletions})")
        if len(diff.files) > _MAX_LISTED:
            lines.append(f"- ... and {len(diff.files) - _MAX_LISTED} more")
        lines += ["", "</details>"]

    lines += [
        "",
        "## Recommended action",
        "Complete the security review below before merging. Do not rebase or squash: "
        "merging keeps upstream history intact so future syncs stay fast-forwards.",
        "",
        "### Security review",
        *_checklist(SECURITY_REVIEW_CHECKLIST),
    ]
    if scan_note:
        lines += ["", f"> {scan_note}"]

    return title, "\n".join(lines) + "\n"


def divergence_issue(
    upstream: RepositoryRef,
    fork: RepositoryRef,
    tracking_branch: str,
    tracking_sha: str,
    upstream_sha: str,
) -> tuple[str, str]:
    title = (
        f"Upstream sync blocked: {tracking_branch} has diverged from "
        f"{upstream.full_name}@{upstream.default_branch}"
    )
    lines = [
        "## Summary",
        f"`{tracking_branch}` can no longer be fast-forwarded to upstream: neither commit is an "
        "ancestor of the other. The tracking branch was left untouched and no pull request was opened.",
        "",
        "## Affected refs",
        "| Ref | Commit |",
        "|-----|--------|",
        f"| `{fork.full_name}@{tracking_branch}` | `{tracking_sha}` |",
        f"| `{upstream.full_name}@{upstream.default_branch}` | `{upstream_sha}` |",
        "",
        "## Recommended action",
        "1. Find out why the histories diverged (commits pushed to the tracking branch, "
        "or upstream rewrote its history).",
        "2. If upstream force-pushed, review the rewritten range before accepting it.",
        "3. Either reconcile the branches manually, or discard the tracking-only commits with "
        "`forkwatch sync --force`.",
    ]
    return title, "\n".join(lines) + "\n"


# ── Tags ─────────────────────────────────────────────────────────────


def added_tags_issue(
    upstream: RepositoryRef, changes: list[TagChange], first_run: bool = False
) -> tuple[str, str]:
    if first_run:
        title = f"Tag baseline recorded for {upstream.full_name} ({len(changes)} tags)"
        summary = (
            "No previous tag record exists, so every current upstream tag is reported as new. "
            "This list is the baseline for future mutation checks."
        )
    else:
        title = f"New upstream tags in {upstream.full_name}: {_tag_names(changes)}"
        summary = f"{len(changes)} new tag(s) appeared upstream since the last check."

    lines = [
        "## Summary",
        summary,
        "",
        "## Affected refs",
        "| Tag | Commit |",
        "|-----|--------|",
    ]
    for c in changes[:_MAX_LISTED * 4]:
        lines.append(f"| `{c.name}` | `{c.current_sha}` |")
    if len(changes) > _MAX_LISTED * 4:
        lines.append(f"| ... | {len(changes) - _MAX_LISTED * 4} more |")
    lines += [
        "",
        "## Recommended action",
        *_checklist(TAG_REVIEW_CHECKLIST),
    ]
    return title, "\n".join(lines) + "\n"


def mutated_tags_alert(upstream: RepositoryRef, changes: list[TagChange]) -> tuple[str, str]:
    title = f"SECURITY: upstream tag mutation in {upstream.full_name}: {_tag_names(changes)}"
    lines = [
        "## Summary",
        f"{len(changes)} existing tag(s) in `{upstream.full_name}` now point to a different commit. "
        "A release tag that moves is a supply-chain red flag: anyone resolving it gets different "
        "content than before.",
        "",
        "## Affected refs",
        "| Tag | Previous commit | Current commit |",
        "|-----|-----------------|----------------|",
    ]
    for c in changes:
        lines.append(f"| `{c.name}` | `{c.previous_sha}` | `{c.current_sha}` |")
    lines += [
        "",
        "## Recommended action",
        "- [ ] Pin consumers of these tags to the previous commit ids until the change is explained",
        "- [ ] Ask upstream maintainers whether the re-tag was intentional",
        "- [ ] Diff the previous and current commits for unexpected changes",
        "- [ ] Check whether any build or release consumed the tag after it moved",
    ]
    return title, "\n".join(lines) + "\n"


def deleted_tags_issue(upstream: RepositoryRef, changes: list[TagChange]) -> tuple[str, str]:
    title = f"Upstream tags removed from {upstream.full_name}: {_tag_names(changes)}"
    lines = [
        "## Summary",
        f"{len(changes)} previously recorded tag(s) no longer exist upstream.",
        "",
        "## Affected refs",
        "| Tag | Last known commit |",
        "|-----|-------------------|",
    ]
    for c in changes:
        lines.append(f"| `{c.name}` | `{c.previous_sha}` |")
    lines += [
        "",
        "## Recommended action",
        "Low priority. Check whether the release was withdrawn upstream and whether the fork "
        "still depends on it.",
    ]
    return title, "\n".join(lines) + "\n"
