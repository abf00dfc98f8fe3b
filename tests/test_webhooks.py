"""Tests for the webhook service."""

import json

import pytest
from fastapi.testclient import TestClient

from forkwatch.config import ForkwatchConfig
from web.backend.app.main import app
from web.backend.app.routers.webhooks import compute_signature, get_config, get_scan_launcher

SECRET = "hush"


@pytest.fixture
def launched(monkeypatch):
    monkeypatch.setenv("FORKWATCH_WEBHOOK_SECRET", SECRET)
    calls = []
    config = ForkwatchConfig(upstream_owner="upstream-org", upstream_repo="widget", fork="acme/widget")
    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_scan_launcher] = lambda: (lambda cfg, number: calls.append(number))
    yield calls
    app.dependency_overrides.clear()


def _payload(action="opened", head="upstream-sync", repo="acme/widget", label=None, login="github-actions[bot]"):
    payload = {
        "action": action,
        "repository": {"full_name": repo},
        "pull_request": {
            "number": 9,
            "title": "Sync upstream",
            "state": "open",
            "head": {"ref": head, "sha": "b" * 40},
            "base": {"ref": "main", "sha": "a" * 40},
            "user": {"login": login, "type": "Bot"},
            "labels": [],
        },
    }
    if label:
        payload["label"] = {"name": label}
    return payload


def _post(payload, event="pull_request", secret=SECRET, signature=None):
    body = json.dumps(payload).encode()
    headers = {
        "X-GitHub-Event": event,
        "X-Hub-Signature-256": signature or compute_signature(body, secret),
        "Content-Type": "application/json",
    }
    return TestClient(app).post("/api/webhooks/github", content=body, headers=headers)


# --- Signature Tests ---


def test_valid_signature_starts_scan(launched):
    response = _post(_payload())

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "accepted"
    assert data["pull_request"] == 9
    assert data["origin"] == "automation-token"
    assert launched == [9]


def test_bad_signature_is_rejected(launched):
    response = _post(_payload(), secret="wrong")
    assert response.status_code == 401
    assert launched == []


def test_missing_signature_is_rejected(launched):
    body = json.dumps(_payload()).encode()
    response = TestClient(app).post(
        "/api/webhooks/github", content=body, headers={"X-GitHub-Event": "pull_request"}
    )
    assert response.status_code == 401
    assert launched == []


def test_missing_secret_is_a_configuration_error(launched, monkeypatch):
    monkeypatch.delenv("FORKWATCH_WEBHOOK_SECRET")
    response = _post(_payload())
    assert response.status_code == 503
    assert "FORKWATCH_WEBHOOK_SECRET" in response.json()["detail"]


# --- Routing Tests ---


@pytest.mark.parametrize("action", ["opened", "reopened", "synchronize"])
def test_scan_actions(launched, action):
    assert _post(_payload(action=action)).json()["status"] == "accepted"


def test_other_events_are_ignored(launched):
    response = _post({"zen": "Keep it logically awesome."}, event="ping")
    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    assert launched == []


def test_closed_action_is_ignored(launched):
    assert _post(_payload(action="closed")).json()["status"] == "ignored"
    assert launched == []


def test_non_sync_pull_request_is_ignored(launched):
    assert _post(_payload(head="feature/x")).json()["status"] == "ignored"
    assert _post(_payload(repo="someone/else")).json()["status"] == "ignored"
    assert launched == []


def test_only_the_trigger_label_starts_a_scan(launched):
    assert _post(_payload(action="labeled", label="upstream-sync")).json()["status"] == "ignored"
    assert _post(_payload(action="labeled", label="run-security-scan")).json()["status"] == "accepted"
    assert launched == [9]


# --- Health Tests ---


def test_health(monkeypatch):
    monkeypatch.setenv("FORKWATCH_UPSTREAM_OWNER", "upstream-org")
    monkeypatch.setenv("FORKWATCH_UPSTREAM_REPO", "widget")
    monkeypatch.setenv("GITHUB_REPOSITORY", "acme/widget")
    monkeypatch.setenv("FORKWATCH_WEBHOOK_SECRET", SECRET)

    response = TestClient(app).get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["repository"] == "acme/widget"
    assert data["webhook_secret_configured"] is True
