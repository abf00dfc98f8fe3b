"""Tag diffing — classify tags by dereferenced commit identity.

Tags are compared by the commit they ultimately name, never by the id of
the tag object. Converting a lightweight tag to an annotated one (or back)
at the same commit is therefore ``unchanged``.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from forkwatch.models.tags import Tag, TagChange, TagClassification, TagDiff, TagSnapshot

logger = logging.getLogger(__name__)

TAG_REF_PREFIX = "refs/tags/"
PEELED_SUFFIX = "^{}"

_SHA_RE = re.compile(r"^[0-9a-f]{40}([0-9a-f]{24})?$")
# Characters git refuses anywhere in a ref name (check-ref-format rules 3-5).
_FORBIDDEN_RE = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def is_valid_tag_name(name: str) -> bool:
    """Return True when ``name`` is a well-formed tag name (without ``refs/tags/``)."""
    if not name or name == "@":
        return False
    if _FORBIDDEN_RE.search(name) or ".." in name or "@{" in name:
        return False
    if name.startswith("/") or name.endswith("/") or name.endswith(".") or "//" in name:
        return False
    for component in name.split("/"):
        if component.startswith(".") or component.endswith(".lock"):
            return False
    return True


def build_snapshot(repository: str, tags: Iterable[Tag]) -> tuple[TagSnapshot, list[str]]:
    """Build a snapshot, skipping malformed tags.

    Returns:
        (snapshot, skipped) where ``skipped`` lists the names that were dropped.
    """
    kept: list[Tag] = []
    skipped: list[str] = []
    for tag in tags:
        if not is_valid_tag_name(tag.name):
            logger.warning("Skipping malformed tag name in %s: %r", repository, tag.name)
            skipped.append(tag.name)
            continue
        if not _SHA_RE.match(tag.sha or ""):
            logger.warning(
                "Skipping tag %s in %s: unusable commit id %r", tag.name, repository, tag.sha
            )
            skipped.append(tag.name)
            continue
        kept.append(tag)
    return TagSnapshot.from_tags(repository, kept), skipped


def classify_tags(upstream: TagSnapshot, baseline: TagSnapshot) -> TagDiff:
    """Partition the union of tag names into added / mutated / deleted / unchanged.

    Args:
        upstream: Current upstream tags.
        baseline: The fork's recorded tags (its own tags, or the snapshot
            persisted by the previous run).
    """
    diff = TagDiff(upstream=upstream.repository, baseline=baseline.repository)

    for name in sorted(upstream.names | baseline.names):
        current = upstream.get(name)
        previous = baseline.get(name)

        if previous is None:
            diff.added.append(TagChange(name, TagClassification.ADDED, current_sha=current))
        elif current is None:
            diff.deleted.append(TagChange(name, TagClassification.DELETED, previous_sha=previous))
        elif current != previous:
            diff.mutated.append(
                TagChange(name, TagClassification.MUTATED, previous_sha=previous, current_sha=current)
            )
        else:
            diff.unchanged.append(
                TagChange(name, TagClassification.UNCHANGED, previous_sha=previous, current_sha=current)
            )

    return diff


def parse_ls_remote(output: str) -> list[Tag]:
    """Parse ``git ls-remote --tags`` output into dereferenced tags.

    Annotated tags appear twice: once with the tag object id and once with a
    ``^{}`` suffix carrying the peeled commit id. Lightweight tags appear
    once and their id is already the commit.
    """
    objects: dict[str, str] = {}
    peeled: dict[str, str] = {}

    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        sha, _, ref = line.partition("\t")
        if not ref or not ref.startswith(TAG_REF_PREFIX):
            logger.debug("Ignoring ls-remote line: %r", line)
            continue
        name = ref[len(TAG_REF_PREFIX):]
        if name.endswith(PEELED_SUFFIX):
            peeled[name[: -len(PEELED_SUFFIX)]] = sha.strip()
        else:
            objects[name] = sha.strip()

    tags = []
    for name, object_sha in objects.items():
        commit = peeled.get(name)
        tags.append(
            Tag(
                name=name,
                sha=commit or object_sha,
                object_sha=object_sha,
                annotated=commit is not None,
            )
        )
    return tags
