from __future__ import annotations

import hashlib

import pytest

from oauth_server.services.password_hasher import (
    Argon2PasswordHasher,
    PasswordHasher,
    Sha256PasswordHasher,
    get_password_hasher,
)


def test_sha256_hash_is_salted() -> None:
    hasher = Sha256PasswordHasher()
    first = hasher.hash("secret")
    second = hasher.hash("secret")
    assert first != second
    salt, _, digest = first.partition(":")
    assert len(salt) == 32
    assert digest == hashlib.sha256(("secret" + salt).encode()).hexdigest()


def test_sha256_verify() -> None:
    hasher = Sha256PasswordHasher()
    stored = hasher.hash("secret")
    assert hasher.verify("secret", stored) is True
    assert hasher.verify("Secret", stored) is False
    assert hasher.verify("secret", "") is False


def test_sha256_accepts_legacy_unsalted_digest() -> None:
    legacy = hashlib.sha256(b"secret").hexdigest()
    assert Sha256PasswordHasher().verify("secret", legacy) is True


def test_argon2_verify() -> None:
    hasher = Argon2PasswordHasher()
    stored = hasher.hash("secret")
    assert stored.startswith("$argon2")
    assert hasher.verify("secret", stored) is True
    assert hasher.verify("wrong", stored) is False
    assert hasher.verify("secret", "not-an-argon2-hash") is False


@pytest.mark.parametrize(
    ("name", "cls"),
    [("sha256", Sha256PasswordHasher), ("argon2", Argon2PasswordHasher)],
)
def test_get_password_hasher(name: str, cls: type) -> None:
    hasher = get_password_hasher(name)
    assert isinstance(hasher, cls)
    assert isinstance(hasher, PasswordHasher)


def test_get_password_hasher_rejects_unknown() -> None:
    with pytest.raises(ValueError, match="Unknown password hasher"):
        get_password_hasher("md5")
