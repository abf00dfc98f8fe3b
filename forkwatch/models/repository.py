"""Repository-level domain models: repository references, branches, pull requests."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class RepositoryRef:
    """Immutable reference to a remote repository."""

    owner: str
    name: str
    default_branch: str = "main"

    def __post_init__(self) -> None:
        if not self.owner or not self.name:
            raise ValueError("Repository owner and name are required")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, full_name: str, default_branch: str = "main") -> "RepositoryRef":
        """Build a reference from an ``owner/name`` string."""
        owner, sep, name = full_name.strip().partition("/")
        if not sep or "/" in name:
            raise ValueError(f"Expected 'owner/name', got: {full_name!r}")
        return cls(owner=owner, name=name, default_branch=default_branch)

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class TrackingBranchState:
    """The fork branch that mirrors upstream's default branch."""

    branch: str
    sha: str


class OriginIdentity(Enum):
    """Who created a pull request, as seen by the hosting platform.

    Only ``AUTOMATION_TOKEN`` is subject to the platform's anti-recursion
    policy: pull requests it opens do not start other automation.
    """

    AUTOMATION_TOKEN = "automation-token"
    INSTALLED_APPLICATION = "installed-application"
    HUMAN = "human"

    @classmethod
    def from_author(cls, login: str, user_type: str = "User") -> "OriginIdentity":
        if login == "github-actions[bot]":
            return cls.AUTOMATION_TOKEN
        if user_type == "Bot" or login.endswith("[bot]"):
            return cls.INSTALLED_APPLICATION
        return cls.HUMAN

    @property
    def triggers_automation(self) -> bool:
        return self is not OriginIdentity.AUTOMATION_TOKEN


@dataclass
class PullRequestInfo:
    """The parts of a pull request forkwatch reads or reports."""

    number: int
    title: str
    head_ref: str
    head_sha: str
    base_ref: str
    base_sha: str
    author: str = ""
    author_type: str = "User"
    html_url: str = ""
    state: str = "open"
    labels: list[str] = field(default_factory=list)

    @property
    def origin(self) -> OriginIdentity:
        return OriginIdentity.from_author(self.author, self.author_type)

    @classmethod
    def from_api(cls, data: dict) -> "PullRequestInfo":
        user = data.get("user") or {}
        head = data.get("head") or {}
        base = data.get("base") or {}
        return cls(
            number=data["number"],
            title=data.get("title", ""),
            head_ref=head.get("ref", ""),
            head_sha=head.get("sha", ""),
            base_ref=base.get("ref", ""),
            base_sha=base.get("sha", ""),
            author=user.get("login", ""),
            author_type=user.get("type", "User"),
            html_url=data.get("html_url", ""),
            state=data.get("state", "open"),
            labels=[label.get("name", "") for label in data.get("labels", [])],
        )


@dataclass
class IssueInfo:
    """An issue opened or refreshed by forkwatch."""

    number: int
    title: str
    html_url: str = ""
    created: bool = True

    @classmethod
    def from_api(cls, data: dict, created: bool = True) -> "IssueInfo":
        return cls(
            number=data["number"],
            title=data.get("title", ""),
            html_url=data.get("html_url", ""),
            created=created,
        )
