"""Tag sources — list a repository's tags, dereferenced to commits.

* :class:`ApiTagSource` reads ``git/matching-refs/tags`` and follows annotated
  tag objects (including tags of tags) through ``git/tags/{sha}``.
* :class:`GitTagSource` runs ``git ls-remote --tags``, whose ``^{}`` lines
  already carry the peeled commit.

A tag that does not resolve to a commit is returned with an empty ``sha``;
``build_snapshot`` then lists it as skipped instead of letting it vanish.
"""

from __future__ import annotations

import logging
from typing import Callable

from forkwatch.errors import NotFoundError
from forkwatch.github.client import GitHubClient
from forkwatch.models.repository import RepositoryRef
from forkwatch.models.tags import Tag
from forkwatch.sync.tag_diff import TAG_REF_PREFIX, parse_ls_remote
from forkwatch.utils.git_ops import ls_remote

logger = logging.getLogger(__name__)

MAX_TAG_DEPTH = 8


class ApiTagSource:
    """Tags through the GitHub REST API."""

    def __init__(self, client: GitHubClient):
        self.client = client
        self._peeled: dict[str, str | None] = {}

    def list_tags(self, repo: RepositoryRef) -> list[Tag]:
        tags: list[Tag] = []
        for ref in self.client.list_tag_refs(repo):
            try:
                name = ref["ref"][len(TAG_REF_PREFIX):]
                obj = ref["object"]
                obj_type, obj_sha = obj["type"], obj["sha"]
            except (KeyError, TypeError):
                logger.warning("Skipping malformed tag ref in %s: %r", repo, ref)
                continue

            if obj_type == "commit":
                tags.append(Tag(name=name, sha=obj_sha, object_sha=obj_sha))
                continue

            commit = self._dereference(repo, obj_sha) if obj_type == "tag" else None
            if commit is None:
                logger.warning("Tag %s in %s (%s %s) does not resolve to a commit", name, repo, obj_type, obj_sha[:12])
            tags.append(Tag(name=name, sha=commit or "", object_sha=obj_sha, annotated=obj_type == "tag"))
        return tags

    def _dereference(self, repo: RepositoryRef, tag_sha: str) -> str | None:
        if tag_sha in self._peeled:
            return self._peeled[tag_sha]

        sha, obj_type = tag_sha, "tag"
        for _ in range(MAX_TAG_DEPTH):
            if obj_type != "tag":
                break
            try:
                target = self.client.get_tag_object(repo, sha)["object"]
            except NotFoundError:
                logger.warning("Tag object %s missing in %s", sha[:12], repo)
                target = None
            except (KeyError, TypeError):
                target = None
            if not target:
                self._peeled[tag_sha] = None
                return None
            sha, obj_type = target.get("sha", ""), target.get("type", "")

        result = sha if obj_type == "commit" else None
        self._peeled[tag_sha] = result
        return result


class GitTagSource:
    """Tags through ``git ls-remote``; ``url_for`` builds the (authenticated) remote URL."""

    def __init__(self, url_for: Callable[[RepositoryRef], str]):
        self.url_for = url_for

    def list_tags(self, repo: RepositoryRef) -> list[Tag]:
        return parse_ls_remote(ls_remote(self.url_for(repo), "--tags"))
