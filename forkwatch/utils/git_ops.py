"""Git operations — remote URLs, ls-remote, and throwaway bare workspaces."""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from git import Git, GitCommandError, Repo

from forkwatch.errors import GitBackendError
from forkwatch.models.repository import RepositoryRef

logger = logging.getLogger(__name__)

_TOKEN_IN_URL = re.compile(r"(https?://)[^@/\s]+@")


def web_url_from_api(api_url: str) -> str:
    """Map an API root to the web host used for git remotes.

    ``https://api.github.com`` -> ``https://github.com``;
    ``https://ghe.example.com/api/v3`` -> ``https://ghe.example.com``.
    """
    parsed = urlparse(api_url)
    host = parsed.netloc
    if host.startswith("api."):
        host = host[len("api."):]
    return f"{parsed.scheme or 'https'}://{host}"


def remote_url(repo: RepositoryRef, token: str = "", web_url: str = "https://github.com") -> str:
    """Return the HTTPS clone URL for ``repo``, with the token embedded when given."""
    parsed = urlparse(web_url)
    auth = f"x-access-token:{token}@" if token else ""
    return f"{parsed.scheme}://{auth}{parsed.netloc}/{repo.full_name}.git"


def redact(text: str) -> str:
    """Strip credentials from URLs in git output before it is logged or raised."""
    return _TOKEN_IN_URL.sub(r"\1***@", text)


def ls_remote(url: str, *options: str, patterns: tuple[str, ...] = ()) -> str:
    """Run ``git ls-remote [options] <url> [patterns]`` without a local repository."""
    try:
        return Git().ls_remote(*options, url, *patterns)
    except GitCommandError as e:
        raise GitBackendError(f"git ls-remote failed: {redact(str(e))}") from e


def parse_heads(output: str) -> dict[str, str]:
    """Parse ``git ls-remote --heads`` output into branch -> sha."""
    heads: dict[str, str] = {}
    for line in output.splitlines():
        sha, _, ref = line.strip().partition("\t")
        if ref.startswith("refs/heads/"):
            heads[ref[len("refs/heads/"):]] = sha
    return heads


@dataclass
class GitWorkspace:
    """A temporary bare repository with ``origin`` (fork) and ``upstream`` remotes.

    Use as a context manager so the temporary directory is removed::

        with GitWorkspace(fork_url, upstream_url) as ws:
            ws.fetch("upstream", "main")
        # temp repo is deleted here
    """

    fork_url: str
    upstream_url: str
    local_path: Path | None = None
    _repo: Repo | None = field(default=None, repr=False)
    _is_temp: bool = field(default=False, repr=False)

    def __enter__(self) -> "GitWorkspace":
        return self

    def __exit__(self, *exc) -> None:
        self.cleanup()

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            if self.local_path is None:
                self.local_path = Path(tempfile.mkdtemp(prefix="forkwatch_"))
                self._is_temp = True
            self._repo = Repo.init(self.local_path, bare=True)
            self._repo.create_remote("origin", self.fork_url)
            self._repo.create_remote("upstream", self.upstream_url)
        return self._repo

    def cleanup(self) -> None:
        """Remove the temporary repository, if one was created."""
        if self._repo is not None:
            self._repo.close()
            self._repo = None
        if self._is_temp and self.local_path and self.local_path.exists():
            shutil.rmtree(self.local_path, ignore_errors=True)

    def url_for(self, remote: str) -> str:
        return self.fork_url if remote == "origin" else self.upstream_url

    def remote_heads(self, remote: str, branch: str) -> dict[str, str]:
        return parse_heads(ls_remote(self.url_for(remote), "--heads", patterns=(branch,)))

    def fetch(self, remote: str, branch: str) -> str:
        """Fetch one branch into ``refs/remotes/<remote>/<branch>`` and return its sha."""
        target = f"refs/remotes/{remote}/{branch}"
        try:
            self.repo.git.fetch(remote, f"+refs/heads/{branch}:{target}")
            return self.repo.git.rev_parse(target)
        except GitCommandError as e:
            raise GitBackendError(
                f"git fetch {remote} {branch} failed: {redact(str(e))}"
            ) from e
