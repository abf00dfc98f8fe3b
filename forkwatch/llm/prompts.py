"""Prompt templates for forkwatch LLM integration.

Each template uses ``{placeholder}`` syntax for ``str.format()``.
"""

SCAN_SUMMARY_SYSTEM = """\
You are a security reviewer for a team that maintains a fork of an open-source \
project. You write short, factual risk notes for pull requests that bring in \
upstream changes. Never invent findings that are not listed."""

SCAN_SUMMARY_PROMPT = """\
An upstream sync pull request was scanned. Write a risk note of at most four \
sentences for the reviewers: what the overall risk is, which findings matter \
most, and what to check before merging. Plain prose, no headings, no lists.

Pull request: #{number} {title}
Overall risk: {level}
Blocking (dependency vulnerabilities at or above {fail_on}): {blocking}
Diff: {diff_summary}

Findings:
{findings}
"""
