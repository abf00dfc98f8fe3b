"""Error taxonomy for forkwatch.

Every failure that should end a run is a ``ForkwatchError``. Divergence is
not an error (it is a ``SyncOutcome``) and malformed tag data is logged and
skipped, so neither appears here.
"""

from __future__ import annotations


class ForkwatchError(Exception):
    """Base class for errors that fail the current run."""


class ConfigError(ForkwatchError):
    """Required configuration is missing or invalid."""


class GitHubAPIError(ForkwatchError):
    """The GitHub API answered with an unexpected status."""

    def __init__(self, message: str, status: int = 0, method: str = "", path: str = ""):
        super().__init__(message)
        self.status = status
        self.method = method
        self.path = path


class TransientAPIError(GitHubAPIError):
    """Network failure, timeout, 5xx, or rate limiting. Safe to retry next schedule."""


class NotFoundError(GitHubAPIError):
    """The requested repository, ref, or object does not exist (or is hidden)."""


class AuthorizationError(ForkwatchError):
    """A credential is missing, expired, or lacks permission.

    ``secret_name`` names the secret the operator has to provide or rotate.
    """

    def __init__(self, secret_name: str, detail: str = ""):
        self.secret_name = secret_name
        self.detail = detail
        message = f"Missing or invalid credential: set the {secret_name} secret"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class ConcurrentUpdateError(ForkwatchError):
    """A ref moved between the read and the write. Retry to re-read fresh state."""

    def __init__(self, ref: str, expected_sha: str, actual_sha: str = ""):
        self.ref = ref
        self.expected_sha = expected_sha
        self.actual_sha = actual_sha
        detail = f"expected {expected_sha[:12]}"
        if actual_sha:
            detail += f", found {actual_sha[:12]}"
        super().__init__(f"Ref {ref} was updated concurrently ({detail})")


class GitBackendError(ForkwatchError):
    """A local git command failed."""


class SnapshotError(ForkwatchError):
    """The stored tag baseline exists but cannot be read. Repair or remove the file."""

    def __init__(self, path: str, detail: str = ""):
        self.path = path
        message = f"Tag snapshot {path} is unreadable"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class RunSuperseded(ForkwatchError):
    """A newer run for the same run group has started; this one must stop."""


class LockTimeoutError(ForkwatchError):
    """A previous run in the same run group did not finish in time."""
