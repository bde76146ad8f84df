from __future__ import annotations

import pytest

from oauth_server.core.errors import AlreadyExistsError
from oauth_server.db.engine import Database
from oauth_server.repos.user_repo import UserDirectory
from oauth_server.services.password_hasher import Sha256PasswordHasher


@pytest.fixture
def users(database: Database) -> UserDirectory:
    return UserDirectory(database.session_factory, Sha256PasswordHasher())


async def test_create_and_verify(users: UserDirectory) -> None:
    user = await users.create_user("alice", "s3cret")
    assert user.username == "alice"
    assert user.password_hash != "s3cret"
    assert ":" in user.password_hash

    assert await users.verify_password("alice", "s3cret") is True
    assert await users.verify_password("alice", "wrong") is False


async def test_unknown_user_does_not_verify(users: UserDirectory) -> None:
    assert await users.verify_password("ghost", "anything") is False
    assert await users.get_user("ghost") is None


async def test_duplicate_username_rejected(users: UserDirectory) -> None:
    await users.create_user("alice", "one")
    with pytest.raises(AlreadyExistsError, match="User already exists"):
        await users.create_user("alice", "two")
    assert await users.verify_password("alice", "one") is True


async def test_update_password(users: UserDirectory) -> None:
    await users.create_user("alice", "old")
    assert await users.update_password("alice", "new") is True
    assert await users.verify_password("alice", "new") is True
    assert await users.verify_password("alice", "old") is False


async def test_update_password_unknown_user(users: UserDirectory) -> None:
    assert await users.update_password("ghost", "new") is False


async def test_delete_user(users: UserDirectory) -> None:
    await users.create_user("alice", "pw")
    assert await users.delete_user("alice") is True
    assert await users.delete_user("alice") is False
    assert await users.get_all_users() == []


async def test_near_miss_password_rejected(users: UserDirectory) -> None:
    await users.create_user("bob", "abc123")
    assert await users.verify_password("bob", "abc123") is True
    assert await users.verify_password("bob", "abc1234") is False
