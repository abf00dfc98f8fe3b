"""Scan summary comment — render it and keep exactly one per pull request."""

from __future__ import annotations

import logging

from forkwatch.github.client import GitHubClient
from forkwatch.llm.client import LLMClient
from forkwatch.llm.prompts import SCAN_SUMMARY_PROMPT, SCAN_SUMMARY_SYSTEM
from forkwatch.models.repository import PullRequestInfo, RepositoryRef
from forkwatch.reporting.notifier import marker
from forkwatch.scan.findings import RiskAssessment

logger = logging.getLogger(__name__)

SUMMARY_KEY = "scan-summary"

_LEVEL_BADGE = {
    "none": "No findings",
    "low": "Low",
    "medium": "Medium",
    "high": "High",
    "critical": "Critical",
}
_MAX_FINDINGS = 25


def render_summary(
    pr: PullRequestInfo, assessment: RiskAssessment, narrative: str = ""
) -> str:
    verdict = (
        f"**Blocking:** dependency vulnerabilities at or above `{assessment.fail_on}` were introduced."
        if assessment.blocking
        else f"**Not blocking:** no introduced dependency vulnerability at or above `{assessment.fail_on}`."
    )
    lines = [
        "## Security scan summary",
        "",
        f"**Overall risk:** {_LEVEL_BADGE.get(assessment.level, assessment.level)}  ",
        f"**Head:** `{pr.head_sha[:12]}`",
        "",
        verdict,
        "",
        "| Severity | Count |",
        "|----------|-------|",
    ]
    for level in ("critical", "high", "medium", "low"):
        lines.append(f"| {level} | {assessment.counts.get(level, 0)} |")

    if narrative:
        lines += ["", narrative.strip()]

    if assessment.findings:
        lines += ["", "### Findings", "", "| Severity | Source | Finding | Location |", "|---|---|---|---|"]
        for f in assessment.findings[:_MAX_FINDINGS]:
            title = f"[{f.title}]({f.url})" if f.url else f.title
            ident = f" ({f.identifier})" if f.identifier else ""
            lines.append(f"| {f.severity} | {f.source} | {title}{ident} | `{f.location}` |")
        if len(assessment.findings) > _MAX_FINDINGS:
            lines.append(f"| | | ... and {len(assessment.findings) - _MAX_FINDINGS} more | |")

    if assessment.unavailable:
        lines += ["", "_Not available for this pull request: " + ", ".join(assessment.unavailable) + "._"]

    lines += ["", marker(SUMMARY_KEY)]
    return "\n".join(lines) + "\n"


def narrate(llm: LLMClient | None, pr: PullRequestInfo, assessment: RiskAssessment, diff_summary: str = "") -> str:
    """Ask the LLM for a short risk note; empty when no LLM is configured."""
    if llm is None or not llm.configured:
        return ""
    findings = "\n".join(
        f"- [{f.severity}] {f.source}: {f.title} {f.identifier} at {f.location}"
        for f in assessment.findings[:_MAX_FINDINGS]
    ) or "- none"
    prompt = SCAN_SUMMARY_PROMPT.format(
        number=pr.number,
        title=pr.title,
        level=assessment.level,
        fail_on=assessment.fail_on,
        blocking="yes" if assessment.blocking else "no",
        diff_summary=diff_summary or "n/a",
        findings=findings,
    )
    return llm.complete(prompt, system_prompt=SCAN_SUMMARY_SYSTEM).content


def upsert_summary_comment(
    client: GitHubClient, repo: RepositoryRef, number: int, body: str
) -> int:
    """Post or replace the summary comment; returns its id.

    The first comment carrying the summary marker is edited in place and any
    others are deleted, so at most one summary exists after every run.
    """
    tag = marker(SUMMARY_KEY)
    ours = [c for c in client.list_comments(repo, number) if tag in (c.get("body") or "")]

    if not ours:
        created = client.create_comment(repo, number, body)
        logger.info("Posted scan summary on #%s", number)
        return created["id"]

    keep, extras = ours[0], ours[1:]
    if keep.get("body") != body:
        client.update_comment(repo, keep["id"], body)
        logger.info("Updated scan summary on #%s", number)
    for extra in extras:
        client.delete_comment(repo, extra["id"])
        logger.info("Removed duplicate scan summary %s on #%s", extra["id"], number)
    return keep["id"]
