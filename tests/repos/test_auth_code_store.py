from __future__ import annotations

import pytest

from oauth_server.db.engine import Database
from oauth_server.models.authorization_code import AuthorizationCode
from oauth_server.repos.auth_code_repo import AuthorizationCodeStore

NOW = 1_700_000_000.0


def _code(code: str, client_id: str = "client-1", now: float = NOW) -> AuthorizationCode:
    return AuthorizationCode.new(
        code=code,
        client_id=client_id,
        code_challenge="challenge",
        redirect_uri="http://localhost/callback",
        scopes=("read", "write"),
        resource="https://api.example.com",
        now=now,
        lifetime=600,
    )


@pytest.fixture
def codes(database: Database) -> AuthorizationCodeStore:
    return AuthorizationCodeStore(database.session_factory)


async def test_create_and_get(codes: AuthorizationCodeStore) -> None:
    record = _code("abc")
    await codes.create_code(record)
    assert await codes.get_code("abc") == record
    assert await codes.get_code("missing") is None


async def test_delete_reports_only_the_first_deleter(codes: AuthorizationCodeStore) -> None:
    await codes.create_code(_code("abc"))
    assert await codes.delete_code("abc") is True
    assert await codes.delete_code("abc") is False


async def test_cleanup_expired(codes: AuthorizationCodeStore) -> None:
    await codes.create_code(_code("old", now=NOW - 700))
    await codes.create_code(_code("live"))

    assert await codes.cleanup_expired(now=NOW) == 1
    assert [c.code for c in await codes.get_all_codes()] == ["live"]


async def test_codes_by_client(codes: AuthorizationCodeStore) -> None:
    await codes.create_code(_code("a1", "client-a"))
    await codes.create_code(_code("a2", "client-a"))
    await codes.create_code(_code("b1", "client-b"))

    assert {c.code for c in await codes.get_codes_by_client_id("client-a")} == {"a1", "a2"}
    assert await codes.delete_codes_by_client_id("client-a") == 2
    assert [c.code for c in await codes.get_all_codes()] == ["b1"]
