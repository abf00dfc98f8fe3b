"""Tests for configuration loading and validation."""

import tempfile
from pathlib import Path

import pytest
import yaml

from forkwatch.config import ForkwatchConfig, load_config
from forkwatch.errors import ConfigError

MINIMAL_ENV = {
    "FORKWATCH_UPSTREAM_OWNER": "upstream-org",
    "FORKWATCH_UPSTREAM_REPO": "widget",
    "GITHUB_REPOSITORY": "acme/widget",
}


def _write(data) -> str:
    tmp = tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False)
    with tmp:
        yaml.dump(data, tmp)
    return tmp.name


def test_defaults_from_environment_only():
    config = load_config(env=MINIMAL_ENV)

    assert config.upstream.full_name == "upstream-org/widget"
    assert config.upstream.default_branch == "main"
    assert config.fork_repo.full_name == "acme/widget"
    assert config.sync.tracking_branch == "upstream-sync"
    assert config.sync.backend == "api"
    assert config.tags.baseline == "fork"
    assert config.scan.fail_on_severity == "high"
    assert config.force is False
    assert config.state_path == Path(".forkwatch")


def test_missing_required_settings_are_named():
    with pytest.raises(ConfigError) as excinfo:
        load_config(env={"GITHUB_REPOSITORY": "acme/widget"})
    assert "upstream_owner" in str(excinfo.value)
    assert "upstream_repo" in str(excinfo.value)


def test_nested_yaml_layout():
    path = _write(
        {
            "upstream": {"owner": "upstream-org", "repo": "widget", "default_branch": "trunk"},
            "fork": {"repository": "acme/widget", "default_branch": "develop", "tracking_branch": "mirror"},
            "tags": {"baseline": "snapshot", "ignore": ["nightly-*"]},
            "scan": {"fail_on_severity": "critical", "inline_fallback": False},
        }
    )
    try:
        config = load_config(path, env={})
    finally:
        Path(path).unlink()

    assert config.upstream.default_branch == "trunk"
    assert config.fork_repo.default_branch == "develop"
    assert config.sync.tracking_branch == "mirror"
    assert config.tags.baseline == "snapshot"
    assert config.tags.ignore == ["nightly-*"]
    assert config.scan.fail_on_severity == "critical"
    assert config.scan.inline_fallback is False


def test_upstream_as_string():
    path = _write({"upstream": "upstream-org/widget", "fork": "acme/widget"})
    try:
        config = load_config(path, env={})
    finally:
        Path(path).unlink()
    assert config.upstream_owner == "upstream-org"
    assert config.upstream_repo == "widget"


def test_precedence_file_then_env_then_overrides():
    path = _write({"upstream": {"owner": "file-org", "repo": "widget"}, "fork": "acme/widget", "force": False})
    try:
        config = load_config(
            path,
            env={"FORKWATCH_UPSTREAM_OWNER": "env-org", "FORKWATCH_FORCE": "true"},
            overrides={"upstream_repo": "cli-repo", "upstream_owner": None},
        )
    finally:
        Path(path).unlink()

    assert config.upstream_owner == "env-org"
    assert config.upstream_repo == "cli-repo"
    assert config.force is True


def test_env_selects_identity_and_backend():
    config = load_config(env={**MINIMAL_ENV, "FORKWATCH_IDENTITY": "app", "FORKWATCH_SYNC_BACKEND": "git"})
    assert config.identity.strategy == "app"
    assert config.sync.backend == "git"


def test_unknown_key_is_rejected():
    path = _write({"upstream": "upstream-org/widget", "fork": "acme/widget", "sync": {"backnd": "git"}})
    try:
        with pytest.raises(ConfigError) as excinfo:
            load_config(path, env={})
    finally:
        Path(path).unlink()
    assert "sync.backnd" in str(excinfo.value)


@pytest.mark.parametrize(
    "overrides",
    [
        {"identity": {"strategy": "oauth"}},
        {"sync": {"backend": "svn"}},
        {"tags": {"baseline": "yesterday"}},
        {"scan": {"fail_on_severity": "moderate"}},
        {"sync": {"tracking_branch": "main"}},
        {"fork": "not-a-repo"},
    ],
)
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ConfigError):
        load_config(env=MINIMAL_ENV, overrides=overrides)


def test_unreadable_file():
    with pytest.raises(ConfigError):
        load_config("/nonexistent/forkwatch.yaml", env={})


def test_to_dict_holds_no_secret_values():
    data = ForkwatchConfig(fork="acme/widget").to_dict()
    assert data["identity"]["token_env"] == "GITHUB_TOKEN"
    assert data["webhook_secret_env"] == "FORKWATCH_WEBHOOK_SECRET"
