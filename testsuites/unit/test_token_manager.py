from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from api_runner.environment import Environment
from api_runner.errors import AuthError, SubstitutionError
from api_runner.token_manager import DEFAULT_SCOPES, TokenManager

from testsuites.conftest import TOKEN_URL, token_payload


pytestmark = pytest.mark.auth


def _form(request: httpx.Request):
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


def test_acquire_posts_refresh_grant(token_manager, fake_api, clock):
    token = token_manager.acquire_token("client-123", "secret-456", "rt-789")

    assert token.access_token == "at-1"
    assert token.authorization == "Bearer at-1"
    assert token.expires_at == clock.now + 3600
    assert token.refresh_token == "rt-789"

    (call,) = fake_api.calls_to(TOKEN_URL)
    assert call.method == "POST"
    assert call.headers["content-type"] == "application/x-www-form-urlencoded"
    assert _form(call) == {
        "client_id": "client-123",
        "client_secret": "secret-456",
        "refresh_token": "rt-789",
        "grant_type": "refresh_token",
    }


def test_cached_token_is_reused(token_manager, fake_api):
    first = token_manager.get_valid_token("client-123", "secret-456", "rt-789")
    second = token_manager.get_valid_token("client-123", "secret-456", "rt-789")

    assert first is second
    assert token_manager.acquisitions == 1
    assert len(fake_api.calls_to(TOKEN_URL)) == 1


def test_refreshes_within_margin_of_expiry(token_manager, fake_api, clock):
    token_manager.get_valid_token("client-123", "secret-456", "rt-789")
    fake_api.route("POST", TOKEN_URL, json_body=token_payload("at-2"))

    clock.advance(3600 - 61)
    assert token_manager.get_valid_token("client-123", "secret-456", "rt-789").access_token == "at-1"

    clock.advance(2)
    assert token_manager.get_valid_token("client-123", "secret-456", "rt-789").access_token == "at-2"
    assert token_manager.acquisitions == 2


def test_cache_is_keyed_by_credentials(token_manager):
    token_manager.get_valid_token("client-123", "secret-456", "rt-789")
    token_manager.get_valid_token("client-123", "secret-456", "rt-other")
    assert token_manager.acquisitions == 2


def test_invalidate_forces_new_acquisition(token_manager):
    token_manager.get_valid_token("client-123", "secret-456", "rt-789")
    token_manager.invalidate(client_id="client-123")
    token_manager.get_valid_token("client-123", "secret-456", "rt-789")
    assert token_manager.acquisitions == 2


def test_missing_expires_in_defaults_to_one_hour(token_manager, fake_api, clock):
    fake_api.route("POST", TOKEN_URL, json_body={"access_token": "at-9"})
    token = token_manager.acquire_token("c", "s", "r")
    assert token.expires_at == clock.now + 3600
    assert token.token_type == "Bearer"


@pytest.mark.parametrize(
    "route",
    [
        {"status": 400, "json_body": {"error": "invalid_grant", "error_description": "Token has been revoked"}},
        {"status": 500, "text": "boom"},
        {"status": 200, "text": "not json"},
        {"status": 200, "json_body": {"token_type": "Bearer"}},
        {"status": 200, "json_body": {"access_token": "x", "expires_in": "soon"}},
        {"status": 200, "json_body": ["at-1"]},
    ],
    ids=["revoked", "server-error", "non-json", "no-access-token", "bad-expires-in", "not-an-object"],
)
def test_acquisition_failures_raise_auth_error(token_manager, fake_api, route):
    fake_api.route("POST", TOKEN_URL, **route)
    with pytest.raises(AuthError):
        token_manager.acquire_token("client-123", "secret-456", "rt-789")


def test_rejection_carries_status_code(token_manager, fake_api):
    fake_api.route("POST", TOKEN_URL, status=401, json_body={"error": "invalid_client"})
    with pytest.raises(AuthError) as exc_info:
        token_manager.acquire_token("client-123", "secret-456", "rt-789")

    assert exc_info.value.status_code == 401
    assert "invalid_client" in str(exc_info.value)


def test_network_failure_raises_auth_error(token_manager, fake_api):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    fake_api.route("POST", TOKEN_URL, handler=refuse)
    with pytest.raises(AuthError):
        token_manager.acquire_token("client-123", "secret-456", "rt-789")
    assert token_manager.acquisitions == 1


def test_token_for_environment_writes_token_fields(token_manager, environment, clock):
    token = token_manager.token_for_environment(environment)

    assert environment["access_token"] == token.access_token == "at-1"
    assert environment["token_type"] == "Bearer"
    assert environment["token_expires_at"] == str(int(clock.now + 3600))


def test_token_for_environment_requires_credentials(token_manager, fake_api):
    with pytest.raises(SubstitutionError) as exc_info:
        token_manager.token_for_environment(Environment({"client_id": "c", "client_secret": "s"}))

    assert exc_info.value.name == "refresh_token"
    assert fake_api.calls == []


def test_authorization_url():
    url = TokenManager.authorization_url("client-123")
    query = parse_qs(urlparse(url).query)

    assert url.startswith("https://accounts.google.com/o/oauth2/auth?")
    assert query["client_id"] == ["client-123"]
    assert query["response_type"] == ["code"]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["scope"] == [" ".join(DEFAULT_SCOPES)]


def test_exchange_code_returns_refresh_token(token_manager, fake_api):
    fake_api.route("POST", TOKEN_URL, json_body={**token_payload("at-5"), "refresh_token": "rt-new"})

    token = token_manager.exchange_code("client-123", "secret-456", "auth-code")

    assert token.refresh_token == "rt-new"
    form = _form(fake_api.calls[-1])
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "auth-code"
