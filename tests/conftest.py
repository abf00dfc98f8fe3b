"""Shared fixtures: an in-memory GitHub served through ``httpx.MockTransport``."""

import json
import re
from urllib.parse import unquote

import httpx
import pytest

from forkwatch.github.client import GitHubClient
from forkwatch.models.repository import RepositoryRef

FORK = RepositoryRef("acme", "widget")
UPSTREAM = RepositoryRef("upstream-org", "widget")


def sha(label: str) -> str:
    """A deterministic 40-hex commit id for a short label."""
    return label.encode().hex().ljust(40, "0")[:40]


class FakeGitHub:
    """Just enough of the GitHub REST API for forkwatch, kept in memory."""

    def __init__(self):
        self.branches: dict[str, dict[str, str]] = {}
        self.parents: dict[str, list[str]] = {}
        self.tag_refs: dict[str, list[dict]] = {}
        self.tag_objects: dict[str, dict] = {}
        self.issues: list[dict] = []
        self.pulls: list[dict] = []
        self.comments: dict[int, list[dict]] = {}
        self.dependency_changes: list[dict] | None = []
        self.code_alerts: list[dict] | None = []
        self.dispatches: list[dict] = []
        self.code_scanning_refs: list[str] = []
        self.calls: list[tuple[str, str]] = []
        self.fail: dict[tuple[str, str], int] = {}
        self.user = {"login": "github-actions[bot]", "type": "Bot"}
        self._next_number = 1
        self._next_comment = 100

    # -- setup helpers -------------------------------------------------

    def commit(self, label: str, *parents: str) -> str:
        commit_sha = sha(label)
        self.parents[commit_sha] = [sha(p) for p in parents]
        return commit_sha

    def set_branch(self, repo: RepositoryRef, branch: str, commit_sha: str) -> None:
        self.branches.setdefault(repo.full_name, {})[branch] = commit_sha

    def branch(self, repo: RepositoryRef, branch: str) -> str | None:
        return self.branches.get(repo.full_name, {}).get(branch)

    def add_tag(self, repo: RepositoryRef, name: str, commit_sha: str, tag_object: str = "") -> None:
        if tag_object:
            self.tag_objects[tag_object] = {"sha": tag_object, "object": {"sha": commit_sha, "type": "commit"}}
            target = {"sha": tag_object, "type": "tag"}
        else:
            target = {"sha": commit_sha, "type": "commit"}
        refs = self.tag_refs.setdefault(repo.full_name, [])
        refs[:] = [r for r in refs if r["ref"] != f"refs/tags/{name}"]
        refs.append({"ref": f"refs/tags/{name}", "object": target})

    @property
    def writes(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] != "GET"]

    def _number(self) -> int:
        number = self._next_number
        self._next_number += 1
        return number

    # -- graph -----------------------------------------------------------

    def ancestors(self, commit_sha: str) -> set[str]:
        seen, stack = set(), [commit_sha]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.parents.get(current, []))
        return seen

    def _resolve(self, full_name: str, ref: str) -> str:
        return self.branches.get(full_name, {}).get(ref, ref)

    def _compare(self, full_name: str, base: str, head: str) -> dict:
        base, head = self._resolve(full_name, base), self._resolve(full_name, head)
        head_history, base_history = self.ancestors(head), self.ancestors(base)
        if base == head:
            status = "identical"
        elif base in head_history:
            status = "ahead"
        elif head in base_history:
            status = "behind"
        else:
            status = "diverged"
        new = sorted(head_history - base_history)
        return {
            "status": status,
            "ahead_by": len(new),
            "behind_by": len(base_history - head_history),
            "files": [
                {"filename": f"src/{c[:8]}.py", "additions": 2, "deletions": 1, "status": "modified"}
                for c in new
            ],
        }

    # -- transport -----------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path)
        method = request.method
        self.calls.append((method, path))
        for (fail_method, pattern), status in self.fail.items():
            if fail_method == method and re.search(pattern, path):
                return httpx.Response(status, json={"message": "injected failure"})

        body = json.loads(request.content) if request.content else {}
        params = dict(request.url.params)

        for pattern, route in self._routes():
            match = re.fullmatch(pattern, f"{method} {path}")
            if match:
                return route(body, params, *match.groups())
        return httpx.Response(404, json={"message": "Not Found"})

    def _routes(self):
        repo = r"/repos/([^/]+/[^/]+)"
        return [
            (rf"GET {repo}/git/ref/heads/(.+)", self._get_ref),
            (rf"PATCH {repo}/git/refs/heads/(.+)", self._update_ref),
            (rf"POST {repo}/git/refs", self._create_ref),
            (rf"GET {repo}/compare/(.+)\.\.\.(.+)", self._compare_route),
            (rf"GET {repo}/git/matching-refs/tags", self._list_tags),
            (rf"GET {repo}/git/tags/(\w+)", self._get_tag),
            (rf"GET {repo}/issues", self._list_issues),
            (rf"POST {repo}/issues", self._create_issue),
            (rf"PATCH {repo}/issues/(\d+)", self._update_issue),
            (rf"POST {repo}/issues/(\d+)/labels", self._add_labels),
            (rf"GET {repo}/issues/(\d+)/comments", self._list_comments),
            (rf"POST {repo}/issues/(\d+)/comments", self._create_comment),
            (rf"PATCH {repo}/issues/comments/(\d+)", self._update_comment),
            (rf"DELETE {repo}/issues/comments/(\d+)", self._delete_comment),
            (rf"GET {repo}/pulls", self._list_pulls),
            (rf"POST {repo}/pulls", self._create_pull),
            (rf"GET {repo}/pulls/(\d+)", self._get_pull),
            (rf"PATCH {repo}/pulls/(\d+)", self._update_pull),
            (rf"GET {repo}/dependency-graph/compare/(.+)\.\.\.(.+)", self._dependency_review),
            (rf"GET {repo}/code-scanning/alerts", self._code_scanning),
            (rf"POST {repo}/actions/workflows/([^/]+)/dispatches", self._dispatch),
        ]

    def _get_ref(self, body, params, full_name, branch):
        current = self.branches.get(full_name, {}).get(branch)
        if current is None:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(200, json={"ref": f"refs/heads/{branch}", "object": {"sha": current, "type": "commit"}})

    def _update_ref(self, body, params, full_name, branch):
        current = self.branches.get(full_name, {}).get(branch)
        if current is None:
            return httpx.Response(422, json={"message": "Reference does not exist"})
        if not body.get("force") and current not in self.ancestors(body["sha"]):
            return httpx.Response(422, json={"message": "Update is not a fast forward"})
        self.branches[full_name][branch] = body["sha"]
        return httpx.Response(200, json={"ref": f"refs/heads/{branch}", "object": {"sha": body["sha"]}})

    def _create_ref(self, body, params, full_name):
        branch = body["ref"][len("refs/heads/"):]
        if branch in self.branches.get(full_name, {}):
            return httpx.Response(422, json={"message": "Reference already exists"})
        self.branches.setdefault(full_name, {})[branch] = body["sha"]
        return httpx.Response(201, json={"ref": body["ref"], "object": {"sha": body["sha"]}})

    def _compare_route(self, body, params, full_name, base, head):
        return httpx.Response(200, json=self._compare(full_name, base, head))

    def _list_tags(self, body, params, full_name):
        return httpx.Response(200, json=list(self.tag_refs.get(full_name, [])))

    def _get_tag(self, body, params, full_name, tag_sha):
        if tag_sha not in self.tag_objects:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(200, json=self.tag_objects[tag_sha])

    def _list_issues(self, body, params, full_name):
        wanted = set(filter(None, params.get("labels", "").split(",")))
        found = [
            i
            for i in self.issues
            if i["state"] == "open" and wanted <= {label["name"] for label in i["labels"]}
        ]
        return httpx.Response(200, json=found)

    def _create_issue(self, body, params, full_name):
        number = self._number()
        issue = {
            "number": number,
            "title": body["title"],
            "body": body["body"],
            "labels": [{"name": name} for name in body.get("labels", [])],
            "state": "open",
            "html_url": f"https://github.com/{full_name}/issues/{number}",
        }
        self.issues.append(issue)
        return httpx.Response(201, json=issue)

    def _update_issue(self, body, params, full_name, number):
        issue = next(i for i in self.issues if i["number"] == int(number))
        issue.update({k: v for k, v in body.items() if k in ("title", "body", "state")})
        return httpx.Response(200, json=issue)

    def _add_labels(self, body, params, full_name, number):
        target = next(
            (x for x in self.issues + self.pulls if x["number"] == int(number)), None
        )
        if target is None:
            return httpx.Response(404, json={"message": "Not Found"})
        names = {label["name"] for label in target["labels"]}
        target["labels"] += [{"name": n} for n in body["labels"] if n not in names]
        return httpx.Response(200, json=target["labels"])

    def _list_comments(self, body, params, full_name, number):
        return httpx.Response(200, json=list(self.comments.get(int(number), [])))

    def _create_comment(self, body, params, full_name, number):
        comment = {"id": self._next_comment, "body": body["body"]}
        self._next_comment += 1
        self.comments.setdefault(int(number), []).append(comment)
        return httpx.Response(201, json=comment)

    def _find_comment(self, comment_id):
        for comments in self.comments.values():
            for comment in comments:
                if comment["id"] == int(comment_id):
                    return comments, comment
        return None, None

    def _update_comment(self, body, params, full_name, comment_id):
        _, comment = self._find_comment(comment_id)
        comment["body"] = body["body"]
        return httpx.Response(200, json=comment)

    def _delete_comment(self, body, params, full_name, comment_id):
        comments, comment = self._find_comment(comment_id)
        comments.remove(comment)
        return httpx.Response(204)

    def _list_pulls(self, body, params, full_name):
        found = [p for p in self.pulls if p["state"] == "open"]
        if params.get("head"):
            found = [p for p in found if f"{full_name.split('/')[0]}:{p['head']['ref']}" == params["head"]]
        if params.get("base"):
            found = [p for p in found if p["base"]["ref"] == params["base"]]
        return httpx.Response(200, json=found)

    def _create_pull(self, body, params, full_name):
        number = self._number()
        pull = {
            "number": number,
            "title": body["title"],
            "body": body["body"],
            "state": "open",
            "head": {"ref": body["head"], "sha": self._resolve(full_name, body["head"])},
            "base": {"ref": body["base"], "sha": self._resolve(full_name, body["base"])},
            "user": dict(self.user),
            "labels": [],
            "html_url": f"https://github.com/{full_name}/pull/{number}",
        }
        self.pulls.append(pull)
        return httpx.Response(201, json=pull)

    def _get_pull(self, body, params, full_name, number):
        pull = next((p for p in self.pulls if p["number"] == int(number)), None)
        if pull is None:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(200, json=pull)

    def _update_pull(self, body, params, full_name, number):
        pull = next(p for p in self.pulls if p["number"] == int(number))
        pull.update({k: v for k, v in body.items() if k in ("title", "body", "state")})
        return httpx.Response(200, json=pull)

    def _dependency_review(self, body, params, full_name, base, head):
        if self.dependency_changes is None:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(200, json=self.dependency_changes)

    def _code_scanning(self, body, params, full_name):
        self.code_scanning_refs.append(params.get("ref", ""))
        if self.code_alerts is None:
            return httpx.Response(404, json={"message": "no analysis found"})
        return httpx.Response(200, json=self.code_alerts)

    def _dispatch(self, body, params, full_name, workflow):
        self.dispatches.append({"workflow": workflow, **body})
        return httpx.Response(204)


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def client(github):
    with GitHubClient(token="test-token", transport=httpx.MockTransport(github.handler)) as c:
        yield c
