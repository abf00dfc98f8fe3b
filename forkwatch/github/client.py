"""GitHub REST client.

A thin synchronous wrapper around ``httpx.Client`` that knows the handful of
endpoints forkwatch needs and maps HTTP failures onto the forkwatch error
taxonomy:

* network errors, timeouts, 5xx and rate limiting -> ``TransientAPIError``
* 401 and permission 403s -> ``AuthorizationError`` naming the secret in use
* 404 -> ``NotFoundError``
* anything else >= 400 -> ``GitHubAPIError``
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator
from urllib.parse import quote

import httpx

from forkwatch import __version__
from forkwatch.config import DEFAULT_API_URL
from forkwatch.errors import (
    AuthorizationError,
    GitHubAPIError,
    NotFoundError,
    TransientAPIError,
)
from forkwatch.models.repository import RepositoryRef

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
DEFAULT_TIMEOUT = 30.0
PER_PAGE = 100


def _ref_path(ref: str) -> str:
    return quote(ref, safe="/")


class GitHubClient:
    """Synchronous GitHub REST API client.

    Parameters
    ----------
    token : str | Callable[[], str]
        Bearer token, or a callable returning a fresh one for every request
        (used by the app identity, whose tokens expire).
    secret_name : str
        Name of the secret that holds the token. It is reported in
        ``AuthorizationError`` so operators know what to fix.
    api_url : str
        API root, ``https://api.github.com`` unless running against GHES.
    transport : httpx.BaseTransport | None
        Injected transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        token: str | Callable[[], str],
        secret_name: str = "GITHUB_TOKEN",
        api_url: str = DEFAULT_API_URL,
        transport: httpx.BaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._token = token
        self.secret_name = secret_name
        self.api_url = api_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.api_url,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
                "User-Agent": f"forkwatch/{__version__}",
            },
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _bearer(self) -> str:
        token = self._token() if callable(self._token) else self._token
        if not token:
            raise AuthorizationError(self.secret_name, "no token available")
        return token

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._bearer()}"}
        try:
            response = self._client.request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.TimeoutException as e:
            raise TransientAPIError(
                f"Timed out calling GitHub: {method} {path}", method=method, path=path
            ) from e
        except httpx.TransportError as e:
            raise TransientAPIError(
                f"Failed to reach GitHub API: {e}", method=method, path=path
            ) from e

        logger.debug("%s %s -> %s", method, path, response.status_code)
        if response.status_code >= 400:
            self._raise_for_status(response, method, path)
        return response

    def _raise_for_status(self, response: httpx.Response, method: str, path: str) -> None:
        status = response.status_code
        try:
            message = response.json().get("message", "")
        except ValueError:
            message = response.text[:200]
        operation = f"{method} {path}"

        if status == 401:
            raise AuthorizationError(self.secret_name, f"GitHub rejected the token on {operation}")
        if status == 429 or (
            status == 403
            and (
                response.headers.get("x-ratelimit-remaining") == "0"
                or "rate limit" in message.lower()
            )
        ):
            raise TransientAPIError(
                f"GitHub rate limit hit on {operation}", status=status, method=method, path=path
            )
        if status == 403:
            raise AuthorizationError(self.secret_name, f"403 on {operation}: {message}")
        if status == 404:
            raise NotFoundError(
                f"Not found: {operation}", status=status, method=method, path=path
            )
        if status >= 500:
            raise TransientAPIError(
                f"GitHub API error ({status}) on {operation}: {message}",
                status=status,
                method=method,
                path=path,
            )
        raise GitHubAPIError(
            f"GitHub API error ({status}) on {operation}: {message}",
            status=status,
            method=method,
            path=path,
        )

    def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self.request(method, path, **kwargs)
        if not response.content:
            return {}
        return response.json()

    def _paginate(self, path: str, params: dict[str, Any] | None = None) -> Iterator[dict]:
        params = dict(params or {})
        params.setdefault("per_page", PER_PAGE)
        url: str | None = path
        while url:
            response = self.request("GET", url, params=params)
            payload = response.json()
            if isinstance(payload, dict):
                # Some list endpoints wrap their items, e.g. {"total_count": n, "items": [...]}
                payload = next((v for v in payload.values() if isinstance(v, list)), [])
            yield from payload
            url = response.links.get("next", {}).get("url")
            params = None  # the next link already carries the query string

    # ------------------------------------------------------------------
    # Repositories and refs
    # ------------------------------------------------------------------

    def get_repository(self, repo: RepositoryRef) -> dict:
        return self._json("GET", f"/repos/{repo.full_name}")

    def get_branch_sha(self, repo: RepositoryRef, branch: str) -> str | None:
        """Return the commit a branch points to, or ``None`` when it does not exist."""
        try:
            data = self._json("GET", f"/repos/{repo.full_name}/git/ref/heads/{_ref_path(branch)}")
        except NotFoundError:
            return None
        return data["object"]["sha"]

    def compare(self, repo: RepositoryRef, base: str, head: str) -> dict:
        """Compare two commits; ``status`` is one of identical/ahead/behind/diverged."""
        return self._json("GET", f"/repos/{repo.full_name}/compare/{base}...{head}")

    def update_branch(self, repo: RepositoryRef, branch: str, sha: str, force: bool = False) -> dict:
        return self._json(
            "PATCH",
            f"/repos/{repo.full_name}/git/refs/heads/{_ref_path(branch)}",
            json={"sha": sha, "force": force},
        )

    def create_branch(self, repo: RepositoryRef, branch: str, sha: str) -> dict:
        return self._json(
            "POST",
            f"/repos/{repo.full_name}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )

    def list_tag_refs(self, repo: RepositoryRef) -> list[dict]:
        return list(self._paginate(f"/repos/{repo.full_name}/git/matching-refs/tags"))

    def get_tag_object(self, repo: RepositoryRef, sha: str) -> dict:
        return self._json("GET", f"/repos/{repo.full_name}/git/tags/{sha}")

    # ------------------------------------------------------------------
    # Issues and comments
    # ------------------------------------------------------------------

    def list_open_issues(self, repo: RepositoryRef, labels: list[str] | None = None) -> list[dict]:
        params: dict[str, Any] = {"state": "open"}
        if labels:
            params["labels"] = ",".join(labels)
        return [
            issue
            for issue in self._paginate(f"/repos/{repo.full_name}/issues", params)
            if "pull_request" not in issue
        ]

    def create_issue(self, repo: RepositoryRef, title: str, body: str, labels: list[str]) -> dict:
        return self._json(
            "POST",
            f"/repos/{repo.full_name}/issues",
            json={"title": title, "body": body, "labels": labels},
        )

    def update_issue(self, repo: RepositoryRef, number: int, **changes: Any) -> dict:
        return self._json("PATCH", f"/repos/{repo.full_name}/issues/{number}", json=changes)

    def add_labels(self, repo: RepositoryRef, number: int, labels: list[str]) -> list[dict]:
        return self._json(
            "POST", f"/repos/{repo.full_name}/issues/{number}/labels", json={"labels": labels}
        )

    def list_comments(self, repo: RepositoryRef, number: int) -> list[dict]:
        return list(self._paginate(f"/repos/{repo.full_name}/issues/{number}/comments"))

    def create_comment(self, repo: RepositoryRef, number: int, body: str) -> dict:
        return self._json(
            "POST", f"/repos/{repo.full_name}/issues/{number}/comments", json={"body": body}
        )

    def update_comment(self, repo: RepositoryRef, comment_id: int, body: str) -> dict:
        return self._json(
            "PATCH", f"/repos/{repo.full_name}/issues/comments/{comment_id}", json={"body": body}
        )

    def delete_comment(self, repo: RepositoryRef, comment_id: int) -> None:
        self.request("DELETE", f"/repos/{repo.full_name}/issues/comments/{comment_id}")

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    def get_pull(self, repo: RepositoryRef, number: int) -> dict:
        return self._json("GET", f"/repos/{repo.full_name}/pulls/{number}")

    def list_open_pulls(
        self, repo: RepositoryRef, head: str | None = None, base: str | None = None
    ) -> list[dict]:
        params: dict[str, Any] = {"state": "open"}
        if head:
            params["head"] = f"{repo.owner}:{head}"
        if base:
            params["base"] = base
        return list(self._paginate(f"/repos/{repo.full_name}/pulls", params))

    def create_pull(self, repo: RepositoryRef, title: str, body: str, head: str, base: str) -> dict:
        return self._json(
            "POST",
            f"/repos/{repo.full_name}/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        )

    def update_pull(self, repo: RepositoryRef, number: int, **changes: Any) -> dict:
        return self._json("PATCH", f"/repos/{repo.full_name}/pulls/{number}", json=changes)

    # ------------------------------------------------------------------
    # Security services
    # ------------------------------------------------------------------

    def dependency_review(self, repo: RepositoryRef, base: str, head: str) -> list[dict]:
        """Dependency changes between two commits, with known vulnerabilities."""
        data = self._json("GET", f"/repos/{repo.full_name}/dependency-graph/compare/{base}...{head}")
        return data if isinstance(data, list) else []

    def code_scanning_alerts(self, repo: RepositoryRef, ref: str) -> list[dict]:
        return list(
            self._paginate(
                f"/repos/{repo.full_name}/code-scanning/alerts",
                {"ref": ref, "state": "open"},
            )
        )

    def dispatch_workflow(
        self, repo: RepositoryRef, workflow: str, ref: str, inputs: dict[str, str] | None = None
    ) -> None:
        self.request(
            "POST",
            f"/repos/{repo.full_name}/actions/workflows/{workflow}/dispatches",
            json={"ref": ref, "inputs": inputs or {}},
        )
