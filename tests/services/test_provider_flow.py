"""AuthorizationProvider: the browser half of the flow (authorize, login, consent)."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio

from oauth_server.core.errors import InvalidScopeError
from oauth_server.models.oauth_client import OAuthClient
from oauth_server.models.pending_authorization import AuthorizationParams
from oauth_server.services import pkce_service
from oauth_server.services.provider import AuthorizationProvider
from tests.conftest import REDIRECT_URI, FakeClock


@pytest_asyncio.fixture
async def oauth_client(provider: AuthorizationProvider) -> OAuthClient:
    return await provider.clients.register_client(
        {"redirect_uris": [REDIRECT_URI], "client_name": "Test App", "scope": "read write"}
    )


def _params(**overrides) -> AuthorizationParams:
    values = {
        "redirect_uri": REDIRECT_URI,
        "code_challenge": pkce_service.compute_code_challenge("v" * 43),
        "scopes": ("read",),
        "state": "st",
    }
    values.update(overrides)
    return AuthorizationParams(**values)


# ---- authorize ----


async def test_authorize_without_login_shows_login_page(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    result = await provider.authorize(oauth_client, _params())

    assert result.status_code == 200
    assert not result.is_redirect
    assert 'action="/oauth/login"' in result.html
    assert result.session_id

    pending = await provider.pending.get(result.session_id)
    assert pending is not None
    assert pending.user_id is None
    assert pending.valid_scopes == ("read",)
    # the snapshot never carries the secret
    assert pending.client.client_secret is None
    assert pending.client.client_id == oauth_client.client_id


async def test_authorize_keeps_callers_session_id(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    result = await provider.authorize(oauth_client, _params(), "my-session")
    assert result.session_id == "my-session"


async def test_authorize_defaults_and_filters_scopes(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    result = await provider.authorize(oauth_client, _params(scopes=()))
    pending = await provider.pending.get(result.session_id)
    assert pending.valid_scopes == ("read",)

    result = await provider.authorize(oauth_client, _params(scopes=("write", "bogus")))
    pending = await provider.pending.get(result.session_id)
    assert pending.valid_scopes == ("write",)


async def test_authorize_rejects_when_no_scope_is_allowed(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    with pytest.raises(InvalidScopeError):
        await provider.authorize(oauth_client, _params(scopes=("bogus",)))
    assert await provider.pending.get_all() == []


async def test_authorize_when_logged_in_shows_consent(
    provider: AuthorizationProvider, oauth_client: OAuthClient, clock: FakeClock
) -> None:
    await provider.sessions.create_session("sid", "alice", now=clock())
    result = await provider.authorize(oauth_client, _params(), "sid")

    assert result.status_code == 200
    assert "Test App" in result.html
    assert 'value="approve"' in result.html
    pending = await provider.pending.get("sid")
    assert pending.user_id == "alice"


async def test_expired_login_session_requires_login_again(
    provider: AuthorizationProvider, oauth_client: OAuthClient, clock: FakeClock
) -> None:
    await provider.sessions.create_session("sid", "alice", now=clock())
    clock.advance(provider.config.session_ttl + 1)

    result = await provider.authorize(oauth_client, _params(), "sid")

    assert 'action="/oauth/login"' in result.html
    assert await provider.sessions.get_session("sid") is None


# ---- login / register ----


async def test_login_requires_both_fields(provider: AuthorizationProvider) -> None:
    result = await provider.handle_login("sid", "", "pw")
    assert result.status_code == 400
    assert "Please provide username and password" in result.html


async def test_login_with_bad_password(provider: AuthorizationProvider) -> None:
    await provider.users.create_user("alice", "right")
    result = await provider.handle_login("sid", "alice", "wrong")
    assert result.status_code == 401
    assert "Username or password incorrect" in result.html
    assert await provider.sessions.get_session("sid") is None


async def test_login_without_pending_request_shows_success(
    provider: AuthorizationProvider,
) -> None:
    await provider.users.create_user("alice", "pw")
    result = await provider.handle_login(None, "alice", "pw")

    assert result.status_code == 200
    assert "Login successful" in result.html
    assert result.session_id
    session = await provider.sessions.get_session(result.session_id)
    assert session.username == "alice"


async def test_login_with_pending_request_shows_consent(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    await provider.users.create_user("alice", "pw")
    started = await provider.authorize(oauth_client, _params())

    result = await provider.handle_login(started.session_id, "alice", "pw")

    assert result.status_code == 200
    assert 'value="approve"' in result.html
    assert result.session_id == started.session_id
    pending = await provider.pending.get(started.session_id)
    assert pending.user_id == "alice"


async def test_register_password_mismatch(provider: AuthorizationProvider) -> None:
    result = await provider.handle_register("sid", "alice", "one", "two")
    assert result.status_code == 400
    assert "Passwords do not match" in result.html
    assert await provider.users.get_user("alice") is None


async def test_register_duplicate_username(provider: AuthorizationProvider) -> None:
    await provider.users.create_user("alice", "pw")
    result = await provider.handle_register("sid", "alice", "pw", "pw")
    assert result.status_code == 400
    assert "Username already exists" in result.html


async def test_register_logs_in(provider: AuthorizationProvider) -> None:
    result = await provider.handle_register("sid", "alice", "pw", "pw")
    assert result.status_code == 200
    assert "Registration successful" in result.html
    assert await provider.users.verify_password("alice", "pw")
    assert (await provider.sessions.get_session("sid")).username == "alice"


# ---- consent ----


async def _logged_in_pending(
    provider: AuthorizationProvider, client: OAuthClient, **overrides
) -> str:
    started = await provider.authorize(client, _params(**overrides))
    await provider.handle_register(started.session_id, "alice", "pw", "pw")
    return started.session_id


async def test_approve_issues_code_and_redirects(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    session_id = await _logged_in_pending(provider, oauth_client)

    result = await provider.handle_authorization_confirmation(session_id, "approve")

    assert result.status_code == 302
    location = urlparse(result.redirect_url)
    query = parse_qs(location.query)
    assert f"{location.scheme}://{location.netloc}{location.path}" == REDIRECT_URI
    assert query["state"] == ["st"]

    record = await provider.codes.get_code(query["code"][0])
    assert record is not None
    assert record.client_id == oauth_client.client_id
    assert record.scopes == ("read",)
    assert record.redirect_uri == REDIRECT_URI
    assert await provider.pending.get(session_id) is None


async def test_deny_redirects_with_access_denied(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    session_id = await _logged_in_pending(provider, oauth_client)

    result = await provider.handle_authorization_confirmation(session_id, "deny")

    query = parse_qs(urlparse(result.redirect_url).query)
    assert query["error"] == ["access_denied"]
    assert query["state"] == ["st"]
    assert await provider.codes.get_all_codes() == []
    assert await provider.pending.get(session_id) is None


async def test_redirect_keeps_existing_query(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    session_id = await _logged_in_pending(
        provider, oauth_client, redirect_uri=REDIRECT_URI + "?tenant=a", state=None
    )
    result = await provider.handle_authorization_confirmation(session_id, "approve")

    query = parse_qs(urlparse(result.redirect_url).query)
    assert query["tenant"] == ["a"]
    assert "code" in query
    assert "state" not in query


async def test_unknown_action_rerenders_consent(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    session_id = await _logged_in_pending(provider, oauth_client)
    result = await provider.handle_authorization_confirmation(session_id, "maybe")
    assert result.status_code == 400
    assert "Invalid action" in result.html
    assert await provider.pending.get(session_id) is not None


async def test_confirmation_without_session(provider: AuthorizationProvider) -> None:
    result = await provider.handle_authorization_confirmation(None, "approve")
    assert result.status_code == 400
    assert "Invalid session" in result.html


async def test_confirmation_without_pending_request(
    provider: AuthorizationProvider,
) -> None:
    result = await provider.handle_authorization_confirmation("sid", "approve")
    assert result.status_code == 400
    assert "Authorization request expired or does not exist" in result.html


async def test_confirmation_after_expiry(
    provider: AuthorizationProvider, oauth_client: OAuthClient, clock: FakeClock
) -> None:
    session_id = await _logged_in_pending(provider, oauth_client)
    clock.advance(provider.config.authorization_code_lifetime + 1)

    result = await provider.handle_authorization_confirmation(session_id, "approve")

    assert result.status_code == 400
    assert "Authorization request expired" in result.html
    assert await provider.pending.get(session_id) is None


async def test_confirmation_before_login(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    started = await provider.authorize(oauth_client, _params())
    result = await provider.handle_authorization_confirmation(
        started.session_id, "approve"
    )
    assert result.status_code == 401
    assert "Please login first" in result.html
