"""Tests for the GitHub client's error mapping and pagination."""

import httpx
import pytest

from forkwatch.errors import (
    AuthorizationError,
    GitHubAPIError,
    NotFoundError,
    TransientAPIError,
)
from forkwatch.github.client import GitHubClient
from tests.conftest import FORK


def _client(handler, **kwargs):
    return GitHubClient(token="t0ken", transport=httpx.MockTransport(handler), **kwargs)


def _status(status, headers=None, message="boom"):
    def handler(request):
        return httpx.Response(status, json={"message": message}, headers=headers or {})

    return handler


# --- Error Mapping Tests ---


@pytest.mark.parametrize(
    "status, headers, message, expected",
    [
        (401, None, "Bad credentials", AuthorizationError),
        (403, None, "Resource not accessible by integration", AuthorizationError),
        (403, {"x-ratelimit-remaining": "0"}, "forbidden", TransientAPIError),
        (403, None, "API rate limit exceeded", TransientAPIError),
        (429, None, "slow down", TransientAPIError),
        (404, None, "Not Found", NotFoundError),
        (502, None, "Bad gateway", TransientAPIError),
        (422, None, "Validation Failed", GitHubAPIError),
    ],
)
def test_status_mapping(status, headers, message, expected):
    with _client(_status(status, headers, message)) as client:
        with pytest.raises(expected) as excinfo:
            client.get_repository(FORK)
    if expected is not AuthorizationError:
        assert excinfo.value.status == status


def test_authorization_error_names_secret():
    with _client(_status(401), secret_name="FORKWATCH_APP_PRIVATE_KEY") as client:
        with pytest.raises(AuthorizationError) as excinfo:
            client.get_repository(FORK)
    assert "FORKWATCH_APP_PRIVATE_KEY" in str(excinfo.value)


def test_validation_error_is_not_transient():
    with _client(_status(422)) as client:
        with pytest.raises(GitHubAPIError) as excinfo:
            client.get_repository(FORK)
    assert not isinstance(excinfo.value, TransientAPIError)


def test_network_failure_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client:
        with pytest.raises(TransientAPIError):
            client.get_repository(FORK)


def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with _client(handler) as client:
        with pytest.raises(TransientAPIError):
            client.get_repository(FORK)


def test_missing_branch_is_none():
    with _client(_status(404)) as client:
        assert client.get_branch_sha(FORK, "nope") is None


def test_empty_token_is_an_authorization_error():
    with GitHubClient(token=lambda: "", secret_name="GITHUB_TOKEN") as client:
        with pytest.raises(AuthorizationError):
            client.get_repository(FORK)


# --- Request Tests ---


def test_headers_and_ref_quoting():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"object": {"sha": "a" * 40}})

    with _client(handler) as client:
        assert client.get_branch_sha(FORK, "release/1.x") == "a" * 40

    request = seen[0]
    assert request.headers["Authorization"] == "Bearer t0ken"
    assert request.headers["X-GitHub-Api-Version"] == "2022-11-28"
    assert request.headers["User-Agent"].startswith("forkwatch/")
    assert request.url.path == "/repos/acme/widget/git/ref/heads/release/1.x"


def test_pagination_follows_link_header():
    def handler(request):
        page = request.url.params.get("page", "1")
        if page == "1":
            return httpx.Response(
                200,
                json=[{"number": 1, "body": ""}, {"number": 2, "body": ""}],
                headers={"link": '<https://api.github.com/repos/acme/widget/issues?state=open&page=2>; rel="next"'},
            )
        return httpx.Response(200, json=[{"number": 3, "body": ""}, {"number": 4, "pull_request": {}}])

    with _client(handler) as client:
        issues = client.list_open_issues(FORK)

    assert [i["number"] for i in issues] == [1, 2, 3]


def test_wrapped_list_payload_is_unwrapped():
    def handler(request):
        return httpx.Response(200, json={"total_count": 1, "workflow_runs": [{"id": 7}]})

    with _client(handler) as client:
        assert list(client._paginate("/repos/acme/widget/actions/runs")) == [{"id": 7}]
