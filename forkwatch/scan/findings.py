"""Security findings and the risk assessment built from them.

Findings come from two GitHub services:

* the dependency graph's compare endpoint (dependency review)
* code scanning alerts on the pull request's head ref, ``refs/pull/<n>/head`` (static analysis)

Only the dependency review has a hard failure threshold; static analysis
findings raise the overall risk level but never block on their own.
"""

from __future__ import annotations

from dataclasses import dataclass, field

SEVERITY_ORDER = {"none": 0, "low": 1, "medium": 2, "moderate": 2, "high": 3, "critical": 4}
_LEVELS = ["none", "low", "medium", "high", "critical"]

# Code scanning rules without a security severity only carry a generic level.
_RULE_SEVERITY = {"error": "medium", "warning": "low", "note": "low"}


def normalize_severity(value: str | None) -> str:
    value = (value or "").lower()
    if value == "moderate":
        return "medium"
    return value if value in SEVERITY_ORDER else "low"


def at_least(severity: str, threshold: str) -> bool:
    return SEVERITY_ORDER[normalize_severity(severity)] >= SEVERITY_ORDER[threshold]


@dataclass
class Finding:
    """A single security finding."""

    source: str  # dependency | code
    severity: str
    title: str
    identifier: str = ""  # advisory id or rule id
    location: str = ""  # package@version or path:line
    url: str = ""


def dependency_findings(changes: list[dict]) -> list[Finding]:
    """Vulnerabilities introduced by added dependencies; removals are ignored."""
    findings = []
    for change in changes:
        if change.get("change_type") != "added":
            continue
        package = f"{change.get('ecosystem', '')}:{change.get('name', '')}@{change.get('version', '')}"
        for vuln in change.get("vulnerabilities") or []:
            findings.append(
                Finding(
                    source="dependency",
                    severity=normalize_severity(vuln.get("severity")),
                    title=vuln.get("advisory_summary", "") or "Vulnerable dependency",
                    identifier=vuln.get("advisory_ghsa_id", ""),
                    location=package.lstrip(":"),
                    url=vuln.get("advisory_url", ""),
                )
            )
    return findings


def code_scanning_findings(alerts: list[dict]) -> list[Finding]:
    findings = []
    for alert in alerts:
        rule = alert.get("rule") or {}
        severity = rule.get("security_severity_level") or _RULE_SEVERITY.get(
            rule.get("severity", ""), "low"
        )
        location = (alert.get("most_recent_instance") or {}).get("location") or {}
        where = location.get("path", "")
        if where and location.get("start_line"):
            where = f"{where}:{location['start_line']}"
        findings.append(
            Finding(
                source="code",
                severity=normalize_severity(severity),
                title=rule.get("description", "") or rule.get("name", "") or rule.get("id", ""),
                identifier=rule.get("id", ""),
                location=where,
                url=alert.get("html_url", ""),
            )
        )
    return findings


@dataclass
class RiskAssessment:
    """Summary of all findings for one pull request."""

    level: str = "none"
    blocking: bool = False
    fail_on: str = "high"
    findings: list[Finding] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    unavailable: list[str] = field(default_factory=list)  # services that could not report

    @property
    def blocking_findings(self) -> list[Finding]:
        return [
            f for f in self.findings if f.source == "dependency" and at_least(f.severity, self.fail_on)
        ]


def assess(findings: list[Finding], fail_on: str = "high", unavailable: list[str] | None = None) -> RiskAssessment:
    """Roll findings up into a risk level and a blocking verdict."""
    counts = {level: 0 for level in _LEVELS[1:]}
    top = 0
    for f in findings:
        rank = SEVERITY_ORDER[f.severity]
        counts[_LEVELS[rank]] += 1
        top = max(top, rank)

    assessment = RiskAssessment(
        level=_LEVELS[top],
        fail_on=fail_on,
        findings=sorted(findings, key=lambda f: SEVERITY_ORDER[f.severity], reverse=True),
        counts=counts,
        unavailable=list(unavailable or []),
    )
    assessment.blocking = bool(assessment.blocking_findings)
    return assessment
