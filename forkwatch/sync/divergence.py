"""Divergence classification — the decision core of the Branch Sync Checker.

Pure functions over commit ids; all I/O lives in ``branch_sync``.
"""

from __future__ import annotations

from forkwatch.models.sync import SyncOutcome

# ``compare/{base}...{head}`` statuses meaning base is an ancestor of head.
_FAST_FORWARD_STATUSES = frozenset({"ahead", "identical"})


def classify_sync(
    tracking_sha: str,
    upstream_sha: str,
    tracking_is_ancestor: bool,
    force: bool = False,
) -> SyncOutcome:
    """Classify one sync attempt.

    Args:
        tracking_sha: Current tip of the tracking branch.
        upstream_sha: Current tip of upstream's default branch.
        tracking_is_ancestor: Whether ``tracking_sha`` is an ancestor of
            ``upstream_sha`` (a fast-forward is possible).
        force: Reset the tracking branch to upstream regardless of history.

    Returns:
        ``ALREADY_CURRENT`` when nothing needs to happen, ``FAST_FORWARDED``
        when the tracking branch may move (or, with ``force``, be reset) to
        upstream, ``DIVERGED`` otherwise. ``force`` never yields ``DIVERGED``.
    """
    if tracking_sha == upstream_sha:
        return SyncOutcome.FAST_FORWARDED if force else SyncOutcome.ALREADY_CURRENT
    if tracking_is_ancestor or force:
        return SyncOutcome.FAST_FORWARDED
    return SyncOutcome.DIVERGED


def is_fast_forward_status(compare_status: str) -> bool:
    """Interpret the ``status`` field of a ``tracking...upstream`` comparison."""
    return compare_status in _FAST_FORWARD_STATUSES
