"""GitHub access: REST client and pull-request actor identities."""

from forkwatch.github.client import GitHubClient
from forkwatch.github.identity import AppIdentity, TokenIdentity, ambient_identity, resolve_identity

__all__ = [
    "GitHubClient",
    "TokenIdentity",
    "AppIdentity",
    "ambient_identity",
    "resolve_identity",
]
