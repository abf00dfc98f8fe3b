"""Configuration — YAML file, environment overrides, CLI overrides.

Resolution order (later wins):

1. dataclass defaults
2. ``forkwatch.yaml`` (or the file named by ``--config`` / ``FORKWATCH_CONFIG``)
3. environment variables (``GITHUB_REPOSITORY``, ``GITHUB_API_URL``, ``FORKWATCH_*``)
4. explicit overrides passed by the CLI

Secrets are never stored in the config itself; it only names the
environment variables that hold them.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from forkwatch.errors import ConfigError
from forkwatch.models.repository import RepositoryRef

DEFAULT_CONFIG_FILE = "forkwatch.yaml"
DEFAULT_API_URL = "https://api.github.com"

SEVERITY_LEVELS = ("low", "medium", "high", "critical")
IDENTITY_STRATEGIES = ("token", "app")
SYNC_BACKENDS = ("api", "git")
TAG_SOURCES = ("api", "git")
TAG_BASELINES = ("fork", "snapshot")


@dataclass
class IdentityConfig:
    """Which identity creates pull requests, and where its secrets live."""

    strategy: str = "token"
    token_env: str = "GITHUB_TOKEN"
    app_id_env: str = "FORKWATCH_APP_ID"
    private_key_env: str = "FORKWATCH_APP_PRIVATE_KEY"


@dataclass
class SyncConfig:
    backend: str = "api"
    tracking_branch: str = "upstream-sync"
    labels: list[str] = field(default_factory=lambda: ["upstream-sync"])
    divergence_labels: list[str] = field(default_factory=lambda: ["upstream-sync", "sync-blocked"])


@dataclass
class TagsConfig:
    source: str = "api"
    baseline: str = "fork"
    ignore: list[str] = field(default_factory=list)  # fnmatch patterns, e.g. fork-only release tags
    labels: list[str] = field(default_factory=lambda: ["upstream-tags"])
    notice_labels: list[str] = field(default_factory=lambda: ["upstream-tags", "priority: low"])
    alert_labels: list[str] = field(
        default_factory=lambda: ["security", "tag-mutation", "priority: high"]
    )


@dataclass
class ScanConfig:
    fail_on_severity: str = "high"
    inline_fallback: bool = True
    dispatch_workflow: str = ""
    trigger_label: str = "run-security-scan"
    enrich: bool = False
    model: str = ""


@dataclass
class ForkwatchConfig:
    """Fully resolved forkwatch configuration."""

    upstream_owner: str = ""
    upstream_repo: str = ""
    default_branch: str = "main"
    fork: str = ""  # owner/name
    fork_default_branch: str = "main"
    force: bool = False
    api_url: str = DEFAULT_API_URL
    state_dir: str = ".forkwatch"
    lock_timeout: float = 600.0
    webhook_secret_env: str = "FORKWATCH_WEBHOOK_SECRET"
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    tags: TagsConfig = field(default_factory=TagsConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)

    @property
    def upstream(self) -> RepositoryRef:
        return RepositoryRef(self.upstream_owner, self.upstream_repo, self.default_branch)

    @property
    def fork_repo(self) -> RepositoryRef:
        try:
            return RepositoryRef.parse(self.fork, default_branch=self.fork_default_branch)
        except ValueError as e:
            raise ConfigError(f"Invalid fork repository: {e}") from e

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir)

    def validate(self) -> None:
        """Raise ``ConfigError`` naming the first missing or invalid setting."""
        required = {
            "upstream_owner": self.upstream_owner,
            "upstream_repo": self.upstream_repo,
            "default_branch": self.default_branch,
            "fork": self.fork,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigError(
                "Missing required setting(s): "
                + ", ".join(missing)
                + " (set them in forkwatch.yaml, the environment, or on the command line)"
            )
        self.fork_repo  # raises on malformed owner/name

        if not self.sync.tracking_branch:
            raise ConfigError("sync.tracking_branch must not be empty")
        if self.sync.tracking_branch == self.fork_default_branch:
            raise ConfigError("sync.tracking_branch must differ from the fork default branch")

        _check_choice("identity.strategy", self.identity.strategy, IDENTITY_STRATEGIES)
        _check_choice("sync.backend", self.sync.backend, SYNC_BACKENDS)
        _check_choice("tags.source", self.tags.source, TAG_SOURCES)
        _check_choice("tags.baseline", self.tags.baseline, TAG_BASELINES)
        _check_choice("scan.fail_on_severity", self.scan.fail_on_severity, SEVERITY_LEVELS)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _check_choice(name: str, value: str, choices: tuple[str, ...]) -> None:
    if value not in choices:
        raise ConfigError(f"{name} must be one of {', '.join(choices)}; got {value!r}")


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _apply_section(target: Any, data: Mapping[str, Any], section: str) -> None:
    known = {f.name: f for f in fields(target)}
    for key, value in data.items():
        if key not in known:
            raise ConfigError(f"Unknown setting: {section}{key}")
        current = getattr(target, key)
        if hasattr(current, "__dataclass_fields__"):
            if not isinstance(value, Mapping):
                raise ConfigError(f"{section}{key} must be a mapping")
            _apply_section(current, value, f"{section}{key}.")
        elif isinstance(current, bool):
            setattr(target, key, _parse_bool(value))
        elif isinstance(current, float):
            setattr(target, key, float(value))
        elif isinstance(current, list):
            setattr(target, key, [str(v) for v in (value or [])])
        else:
            setattr(target, key, "" if value is None else str(value))


def _flatten_repo_sections(data: dict[str, Any]) -> dict[str, Any]:
    """Accept the nested ``upstream:`` / ``fork:`` layout used in config files."""
    data = dict(data)
    upstream = data.pop("upstream", None)
    if isinstance(upstream, Mapping):
        if "owner" in upstream:
            data.setdefault("upstream_owner", upstream["owner"])
        if "repo" in upstream:
            data.setdefault("upstream_repo", upstream["repo"])
        if "default_branch" in upstream:
            data.setdefault("default_branch", upstream["default_branch"])
    elif upstream:
        try:
            ref = RepositoryRef.parse(str(upstream))
        except ValueError as e:
            raise ConfigError(f"Invalid upstream repository: {e}") from e
        data.setdefault("upstream_owner", ref.owner)
        data.setdefault("upstream_repo", ref.name)

    fork = data.get("fork")
    if isinstance(fork, Mapping):
        data["fork"] = fork.get("repository", "")
        if "default_branch" in fork:
            data.setdefault("fork_default_branch", fork["default_branch"])
        if "tracking_branch" in fork:
            data.setdefault("sync", {})
            data["sync"] = dict(data["sync"], tracking_branch=fork["tracking_branch"])
    return data


_ENV_OVERRIDES = {
    "GITHUB_REPOSITORY": "fork",
    "GITHUB_API_URL": "api_url",
    "FORKWATCH_UPSTREAM_OWNER": "upstream_owner",
    "FORKWATCH_UPSTREAM_REPO": "upstream_repo",
    "FORKWATCH_DEFAULT_BRANCH": "default_branch",
    "FORKWATCH_FORCE": "force",
    "FORKWATCH_STATE_DIR": "state_dir",
}


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    validate: bool = True,
) -> ForkwatchConfig:
    """Resolve the configuration from file, environment, and overrides.

    Args:
        path: Config file. Falls back to ``FORKWATCH_CONFIG`` and then to
              ``./forkwatch.yaml`` when that file exists.
        env: Environment mapping (defaults to ``os.environ``).
        overrides: Top-level settings that win over everything else. ``None``
                   values are ignored so CLI options can be passed through as-is.
        validate: Run ``ForkwatchConfig.validate`` before returning.

    Raises:
        ConfigError: On unreadable files, unknown keys, or invalid values.
    """
    env = os.environ if env is None else env
    config = ForkwatchConfig()

    config_path = path or env.get("FORKWATCH_CONFIG")
    if config_path is None and Path(DEFAULT_CONFIG_FILE).exists():
        config_path = DEFAULT_CONFIG_FILE

    if config_path:
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not read config file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")
        _apply_section(config, _flatten_repo_sections(data), "")

    env_data = {attr: env[name] for name, attr in _ENV_OVERRIDES.items() if env.get(name)}
    if env.get("FORKWATCH_IDENTITY"):
        env_data["identity"] = {"strategy": env["FORKWATCH_IDENTITY"]}
    if env.get("FORKWATCH_SYNC_BACKEND"):
        env_data["sync"] = {"backend": env["FORKWATCH_SYNC_BACKEND"]}
    _apply_section(config, env_data, "")

    if overrides:
        _apply_section(config, {k: v for k, v in overrides.items() if v is not None}, "")

    if validate:
        config.validate()
    return config
