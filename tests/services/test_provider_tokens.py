"""AuthorizationProvider: code exchange, refresh, verification, revocation, cleanup."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio

from oauth_server.core.errors import InvalidGrantError, InvalidScopeError, InvalidTokenError
from oauth_server.models.oauth_client import OAuthClient
from oauth_server.models.pending_authorization import AuthorizationParams
from oauth_server.services import pkce_service
from oauth_server.services.provider import AuthorizationProvider
from tests.conftest import REDIRECT_URI, FakeClock

VERIFIER = pkce_service.generate_code_verifier()
RESOURCE = "https://api.example.com/mcp"


@pytest_asyncio.fixture
async def oauth_client(provider: AuthorizationProvider) -> OAuthClient:
    return await provider.clients.register_client(
        {"redirect_uris": [REDIRECT_URI], "scope": "read write"}
    )


@pytest_asyncio.fixture
async def other_client(provider: AuthorizationProvider) -> OAuthClient:
    return await provider.clients.register_client({"redirect_uris": [REDIRECT_URI]})


async def _issue_code(
    provider: AuthorizationProvider,
    client: OAuthClient,
    scopes: tuple[str, ...] = ("read", "write"),
    resource: str | None = None,
) -> str:
    params = AuthorizationParams(
        redirect_uri=REDIRECT_URI,
        code_challenge=pkce_service.compute_code_challenge(VERIFIER),
        scopes=scopes,
        resource=resource,
    )
    started = await provider.authorize(client, params)
    if await provider.users.get_user("alice") is None:
        await provider.handle_register(started.session_id, "alice", "pw", "pw")
    else:
        await provider.handle_login(started.session_id, "alice", "pw")
    result = await provider.handle_authorization_confirmation(started.session_id, "approve")
    return parse_qs(urlparse(result.redirect_url).query)["code"][0]


# ---- authorization_code ----


async def test_exchange_issues_token_pair(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)

    assert await provider.challenge_for_authorization_code(
        oauth_client, code
    ) == pkce_service.compute_code_challenge(VERIFIER)

    tokens = await provider.exchange_authorization_code(
        oauth_client, code, code_verifier=VERIFIER, redirect_uri=REDIRECT_URI
    )

    assert tokens.token_type == "bearer"
    assert tokens.expires_in == provider.config.access_token_lifetime
    assert tokens.scope == "read write"
    assert tokens.refresh_token

    access = await provider.tokens.get_token(tokens.access_token, "access")
    refresh = await provider.tokens.get_token(tokens.refresh_token, "refresh")
    assert access.refresh_token == refresh.token
    assert access.authorization_code == code
    assert refresh.expires_at - refresh.created_at == provider.config.refresh_token_lifetime
    assert await provider.codes.get_code(code) is None


async def test_code_is_single_use(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    await provider.exchange_authorization_code(oauth_client, code, VERIFIER)

    with pytest.raises(InvalidGrantError, match="Invalid authorization code"):
        await provider.exchange_authorization_code(oauth_client, code, VERIFIER)


async def test_expired_code_is_rejected_and_deleted(
    provider: AuthorizationProvider, oauth_client: OAuthClient, clock: FakeClock
) -> None:
    code = await _issue_code(provider, oauth_client)
    clock.advance(provider.config.authorization_code_lifetime + 1)

    with pytest.raises(InvalidGrantError, match="Authorization code has expired"):
        await provider.challenge_for_authorization_code(oauth_client, code)
    with pytest.raises(InvalidGrantError, match="Authorization code has expired"):
        await provider.exchange_authorization_code(oauth_client, code, VERIFIER)
    assert await provider.codes.get_code(code) is None


async def test_code_bound_to_client(
    provider: AuthorizationProvider, oauth_client: OAuthClient, other_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)

    with pytest.raises(InvalidGrantError, match="not issued to this client"):
        await provider.challenge_for_authorization_code(other_client, code)
    with pytest.raises(InvalidGrantError, match="not issued to this client"):
        await provider.exchange_authorization_code(other_client, code, VERIFIER)
    # the rightful owner can still use it
    assert await provider.codes.get_code(code) is not None


async def test_redirect_uri_must_match(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    with pytest.raises(InvalidGrantError, match="Invalid redirect_uri"):
        await provider.exchange_authorization_code(
            oauth_client, code, VERIFIER, redirect_uri="http://localhost/elsewhere"
        )


async def test_resource_must_match(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client, resource=RESOURCE)
    with pytest.raises(InvalidGrantError, match="Invalid resource"):
        await provider.exchange_authorization_code(
            oauth_client, code, VERIFIER, resource="https://other.example.com"
        )

    tokens = await provider.exchange_authorization_code(
        oauth_client, code, VERIFIER, resource=RESOURCE
    )
    info = await provider.verify_access_token(tokens.access_token)
    assert info.resource == RESOURCE


async def test_resource_on_unbound_code_rejected(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    with pytest.raises(InvalidGrantError, match="Invalid resource"):
        await provider.exchange_authorization_code(
            oauth_client, code, VERIFIER, resource=RESOURCE
        )
    # the failed attempt does not consume the code
    tokens = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)
    info = await provider.verify_access_token(tokens.access_token)
    assert info.resource is None


async def test_resource_on_unbound_refresh_rejected(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    first = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)
    with pytest.raises(InvalidGrantError, match="Invalid resource"):
        await provider.exchange_refresh_token(
            oauth_client, first.refresh_token, resource=RESOURCE
        )


async def test_wrong_verifier_fails(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    with pytest.raises(InvalidGrantError, match="PKCE verification failed"):
        await provider.exchange_authorization_code(
            oauth_client, code, pkce_service.generate_code_verifier()
        )
    assert await provider.codes.get_code(code) is not None


# ---- refresh_token ----


async def test_refresh_mints_new_access_token(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    first = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)

    refreshed = await provider.exchange_refresh_token(oauth_client, first.refresh_token)

    assert refreshed.access_token != first.access_token
    assert refreshed.refresh_token == first.refresh_token
    assert refreshed.scope == "read write"
    assert await provider.validate_access_token(refreshed.access_token) is not None


async def test_refresh_can_narrow_scope(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    first = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)

    refreshed = await provider.exchange_refresh_token(
        oauth_client, first.refresh_token, scopes=["read"]
    )
    assert refreshed.scope == "read"


async def test_refresh_cannot_widen_scope(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client, scopes=("read",))
    first = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)

    with pytest.raises(InvalidScopeError):
        await provider.exchange_refresh_token(
            oauth_client, first.refresh_token, scopes=["read", "write"]
        )


async def test_refresh_bound_to_client(
    provider: AuthorizationProvider, oauth_client: OAuthClient, other_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    first = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)

    with pytest.raises(InvalidGrantError, match="not issued to this client"):
        await provider.exchange_refresh_token(other_client, first.refresh_token)


async def test_expired_refresh_token_is_deleted(
    provider: AuthorizationProvider, oauth_client: OAuthClient, clock: FakeClock
) -> None:
    code = await _issue_code(provider, oauth_client)
    first = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)
    clock.advance(provider.config.refresh_token_lifetime + 1)

    with pytest.raises(InvalidGrantError, match="Refresh token has expired"):
        await provider.exchange_refresh_token(oauth_client, first.refresh_token)
    assert await provider.tokens.get_token(first.refresh_token) is None


async def test_access_token_is_not_a_refresh_token(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    first = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)
    with pytest.raises(InvalidGrantError, match="Invalid refresh token"):
        await provider.exchange_refresh_token(oauth_client, first.access_token)


# ---- verification ----


async def test_verify_access_token(
    provider: AuthorizationProvider, oauth_client: OAuthClient, clock: FakeClock
) -> None:
    code = await _issue_code(provider, oauth_client)
    tokens = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)

    info = await provider.verify_access_token(tokens.access_token)

    assert info.client_id == oauth_client.client_id
    assert info.scopes == ("read", "write")
    assert isinstance(info.expires_at, int)
    assert info.expires_at == int(clock() + provider.config.access_token_lifetime)


async def test_refresh_token_is_not_an_access_token(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    tokens = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)
    with pytest.raises(InvalidTokenError, match="Invalid access token"):
        await provider.verify_access_token(tokens.refresh_token)


async def test_expired_access_token(
    provider: AuthorizationProvider, oauth_client: OAuthClient, clock: FakeClock
) -> None:
    code = await _issue_code(provider, oauth_client)
    tokens = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)
    clock.advance(provider.config.access_token_lifetime + 1)

    with pytest.raises(InvalidTokenError, match="Access token has expired"):
        await provider.verify_access_token(tokens.access_token)
    assert await provider.validate_access_token(tokens.access_token) is None
    assert await provider.tokens.get_token(tokens.access_token) is None


# ---- revocation ----


async def test_revoke_own_token(
    provider: AuthorizationProvider, oauth_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    tokens = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)

    await provider.revoke_token(oauth_client, tokens.access_token)
    assert await provider.validate_access_token(tokens.access_token) is None

    await provider.revoke_token(oauth_client, tokens.refresh_token, "refresh_token")
    assert await provider.tokens.get_token(tokens.refresh_token) is None


async def test_revoke_other_clients_token_is_noop(
    provider: AuthorizationProvider, oauth_client: OAuthClient, other_client: OAuthClient
) -> None:
    code = await _issue_code(provider, oauth_client)
    tokens = await provider.exchange_authorization_code(oauth_client, code, VERIFIER)

    await provider.revoke_token(other_client, tokens.access_token)
    await provider.revoke_token(other_client, "never-issued")

    assert await provider.validate_access_token(tokens.access_token) is not None


# ---- cleanup ----


async def test_cleanup_removes_expired_rows(
    provider: AuthorizationProvider, oauth_client: OAuthClient, clock: FakeClock
) -> None:
    code = await _issue_code(provider, oauth_client)
    await provider.exchange_authorization_code(oauth_client, code, VERIFIER)
    await _issue_code(provider, oauth_client)  # left unexchanged
    await provider.authorize(
        oauth_client,
        AuthorizationParams(redirect_uri=REDIRECT_URI, code_challenge="c", scopes=("read",)),
    )

    assert await provider.cleanup() == {
        "authorization_codes": 0,
        "tokens": 0,
        "user_sessions": 0,
        "pending_authorizations": 0,
    }

    clock.advance(provider.config.refresh_token_lifetime + 1)
    removed = await provider.cleanup()

    assert removed == {
        "authorization_codes": 1,
        "tokens": 2,
        "user_sessions": 2,
        "pending_authorizations": 1,
    }
    assert await provider.tokens.get_all_tokens() == []
