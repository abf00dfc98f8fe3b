"""Tag models — tags, point-in-time tag snapshots, and their classification."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping


@dataclass(frozen=True)
class Tag:
    """A tag with its dereferenced commit.

    ``sha`` is always the commit the tag ultimately names. ``object_sha`` is
    the raw ref target, which for an annotated tag is the tag object itself.
    """

    name: str
    sha: str
    object_sha: str = ""
    annotated: bool = False


@dataclass(frozen=True)
class TagSnapshot:
    """Immutable name -> dereferenced commit mapping captured at one point in time."""

    repository: str
    tags: Mapping[str, str] = field(default_factory=dict)
    captured_at: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))
        if not self.captured_at:
            object.__setattr__(self, "captured_at", datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_tags(cls, repository: str, tags: Iterable[Tag]) -> "TagSnapshot":
        return cls(repository=repository, tags={t.name: t.sha for t in tags})

    @classmethod
    def empty(cls, repository: str) -> "TagSnapshot":
        return cls(repository=repository, tags={})

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self.tags)

    def get(self, name: str) -> str | None:
        return self.tags.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.tags

    def __len__(self) -> int:
        return len(self.tags)

    def without(self, names: Iterable[str]) -> "TagSnapshot":
        drop = set(names)
        kept = {name: sha for name, sha in self.tags.items() if name not in drop}
        return TagSnapshot(self.repository, kept, self.captured_at)

    def carrying(self, previous: "TagSnapshot", names: Iterable[str]) -> "TagSnapshot":
        """Copy with ``previous``'s entries for ``names`` added where this snapshot has none."""
        tags = dict(self.tags)
        for name in names:
            if name not in tags and name in previous:
                tags[name] = previous.tags[name]
        return TagSnapshot(self.repository, tags, self.captured_at)

    def to_dict(self) -> dict:
        return {
            "repository": self.repository,
            "captured_at": self.captured_at,
            "tags": dict(sorted(self.tags.items())),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TagSnapshot":
        """Raises ``ValueError`` when ``data`` is not a snapshot mapping."""
        if not isinstance(data, Mapping):
            raise ValueError("snapshot must be a mapping")
        tags = data.get("tags") or {}
        if not isinstance(tags, Mapping) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in tags.items()
        ):
            raise ValueError("snapshot tags must map tag names to commit ids")
        return cls(
            repository=data.get("repository", ""),
            tags=tags,
            captured_at=data.get("captured_at", ""),
        )


class TagClassification(Enum):
    """How a tag name changed between the baseline and upstream."""

    ADDED = "added"
    MUTATED = "mutated"
    DELETED = "deleted"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class TagChange:
    """Classification of a single tag name."""

    name: str
    classification: TagClassification
    previous_sha: str = ""  # baseline commit, empty for added tags
    current_sha: str = ""  # upstream commit, empty for deleted tags


@dataclass
class TagDiff:
    """Result of comparing an upstream snapshot against a baseline."""

    upstream: str
    baseline: str
    added: list[TagChange] = field(default_factory=list)
    mutated: list[TagChange] = field(default_factory=list)
    deleted: list[TagChange] = field(default_factory=list)
    unchanged: list[TagChange] = field(default_factory=list)

    def of(self, classification: TagClassification) -> list[TagChange]:
        return {
            TagClassification.ADDED: self.added,
            TagClassification.MUTATED: self.mutated,
            TagClassification.DELETED: self.deleted,
            TagClassification.UNCHANGED: self.unchanged,
        }[classification]

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.mutated or self.deleted)

    @property
    def has_mutations(self) -> bool:
        return bool(self.mutated)

    def summary(self) -> str:
        if not self.has_changes:
            return f"{self.upstream}: {len(self.unchanged)} tag(s), no changes"
        return (
            f"{self.upstream}: {len(self.added)} added, {len(self.mutated)} mutated, "
            f"{len(self.deleted)} deleted, {len(self.unchanged)} unchanged"
        )
