"""Actor identities used to create pull requests.

Pull requests opened with the ambient automation token do not start other
automation (the platform's anti-recursion policy), while pull requests opened
by a registered GitHub App do. The two strategies are interchangeable and
selected by ``identity.strategy``:

* ``token`` -> :class:`TokenIdentity`
* ``app``   -> :class:`AppIdentity`
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime
from typing import Callable, Mapping

import httpx
import jwt

from forkwatch.config import ForkwatchConfig
from forkwatch.errors import AuthorizationError, NotFoundError
from forkwatch.github.client import GitHubClient
from forkwatch.models.repository import OriginIdentity, RepositoryRef

logger = logging.getLogger(__name__)

# GitHub rejects app JWTs valid for more than ten minutes.
_JWT_LIFETIME = 540
_JWT_BACKDATE = 60
_TOKEN_REFRESH_MARGIN = 60


class TokenIdentity:
    """The ambient automation token (``GITHUB_TOKEN`` inside Actions)."""

    origin = OriginIdentity.AUTOMATION_TOKEN

    def __init__(self, token: str, secret_name: str = "GITHUB_TOKEN") -> None:
        self.token = token
        self.secret_name = secret_name

    def client(
        self, api_url: str, transport: httpx.BaseTransport | None = None
    ) -> GitHubClient:
        return GitHubClient(
            token=self.token, secret_name=self.secret_name, api_url=api_url, transport=transport
        )

    def describe(self) -> str:
        return f"automation token ({self.secret_name})"


class AppIdentity:
    """A registered GitHub App acting through its installation on the fork."""

    origin = OriginIdentity.INSTALLED_APPLICATION

    def __init__(
        self,
        app_id: str,
        private_key: str,
        repo: RepositoryRef,
        api_url: str,
        app_id_secret: str = "FORKWATCH_APP_ID",
        private_key_secret: str = "FORKWATCH_APP_PRIVATE_KEY",
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.app_id = app_id
        self.private_key = private_key
        self.repo = repo
        self.api_url = api_url
        self.app_id_secret = app_id_secret
        self.private_key_secret = private_key_secret
        self._transport = transport
        self._clock = clock
        self._token = ""
        self._token_expires_at = 0.0

    def app_jwt(self) -> str:
        """Sign a short-lived RS256 JWT that authenticates as the app itself."""
        now = int(self._clock())
        payload = {"iat": now - _JWT_BACKDATE, "exp": now + _JWT_LIFETIME, "iss": str(self.app_id)}
        try:
            return jwt.encode(payload, self.private_key, algorithm="RS256")
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise AuthorizationError(
                self.private_key_secret, f"private key could not sign the app JWT: {e}"
            ) from e

    def installation_token(self) -> str:
        """Return a cached installation token, exchanging a new JWT when it is about to expire."""
        if self._token and self._clock() < self._token_expires_at - _TOKEN_REFRESH_MARGIN:
            return self._token

        with GitHubClient(
            token=self.app_jwt(),
            secret_name=self.app_id_secret,
            api_url=self.api_url,
            transport=self._transport,
        ) as app_client:
            try:
                installation = app_client.request(
                    "GET", f"/repos/{self.repo.full_name}/installation"
                ).json()
            except NotFoundError as e:
                raise AuthorizationError(
                    self.app_id_secret, f"app {self.app_id} is not installed on {self.repo}"
                ) from e
            data = app_client.request(
                "POST", f"/app/installations/{installation['id']}/access_tokens"
            ).json()

        self._token = data["token"]
        self._token_expires_at = _parse_timestamp(data.get("expires_at", "")) or (
            self._clock() + 3600
        )
        logger.debug("Minted installation token for app %s on %s", self.app_id, self.repo)
        return self._token

    def client(
        self, api_url: str | None = None, transport: httpx.BaseTransport | None = None
    ) -> GitHubClient:
        return GitHubClient(
            token=self.installation_token,
            secret_name=self.private_key_secret,
            api_url=api_url or self.api_url,
            transport=transport or self._transport,
        )

    def describe(self) -> str:
        return f"GitHub App {self.app_id}"


def _parse_timestamp(value: str) -> float:
    if not value:
        return 0.0
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


def ambient_identity(
    config: ForkwatchConfig, env: Mapping[str, str] | None = None
) -> TokenIdentity:
    """The token used for reads and for everything except creating pull requests."""
    env = os.environ if env is None else env
    token = env.get(config.identity.token_env, "")
    if not token:
        raise AuthorizationError(config.identity.token_env)
    return TokenIdentity(token, secret_name=config.identity.token_env)


def resolve_identity(
    config: ForkwatchConfig,
    env: Mapping[str, str] | None = None,
    transport: httpx.BaseTransport | None = None,
) -> TokenIdentity | AppIdentity:
    """Build the pull-request actor identity named by ``identity.strategy``.

    Raises:
        AuthorizationError: naming the first secret that is not set.
    """
    env = os.environ if env is None else env
    settings = config.identity

    if settings.strategy == "token":
        return ambient_identity(config, env)

    app_id = env.get(settings.app_id_env, "")
    if not app_id:
        raise AuthorizationError(settings.app_id_env)
    private_key = env.get(settings.private_key_env, "")
    if not private_key:
        raise AuthorizationError(settings.private_key_env)

    return AppIdentity(
        app_id=app_id,
        private_key=private_key.replace("\\n", "\n"),
        repo=config.fork_repo,
        api_url=config.api_url,
        app_id_secret=settings.app_id_env,
        private_key_secret=settings.private_key_env,
        transport=transport,
    )
