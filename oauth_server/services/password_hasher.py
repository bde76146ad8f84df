"""Pluggable password hashing for the UserDirectory.

Sha256PasswordHasher (default)
    Stores `salt:hash` where salt is 16 random bytes as hex and hash is
    hex SHA-256 of password + salt.  This is demo-grade: SHA-256 is fast,
    so a leaked users table can be brute-forced quickly.  A stored value
    with no `:` is a legacy unsalted SHA-256 digest and still verifies.

Argon2PasswordHasher
    argon2id via argon2-cffi.  Memory-hard, salt and parameters encoded in
    the returned string.  Select with PASSWORD_HASHER=argon2.

Switching hashers does not migrate existing rows: users created under one
scheme cannot log in under the other.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Protocol, runtime_checkable

from argon2 import PasswordHasher as _Argon2
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

SALT_BYTES = 16


@runtime_checkable
class PasswordHasher(Protocol):
    def hash(self, password: str) -> str: ...
    def verify(self, password: str, stored_hash: str) -> bool: ...


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class Sha256PasswordHasher:
    def hash(self, password: str) -> str:
        salt = secrets.token_hex(SALT_BYTES)
        return f"{salt}:{_sha256_hex(password + salt)}"

    def verify(self, password: str, stored_hash: str) -> bool:
        if not stored_hash:
            return False
        salt, sep, digest = stored_hash.partition(":")
        if not sep:
            # legacy row: unsalted digest
            return hmac.compare_digest(_sha256_hex(password), stored_hash)
        return hmac.compare_digest(_sha256_hex(password + salt), digest)


class Argon2PasswordHasher:
    def __init__(self) -> None:
        self._ph = _Argon2()

    def hash(self, password: str) -> str:
        return self._ph.hash(password)

    def verify(self, password: str, stored_hash: str) -> bool:
        if not stored_hash:
            return False
        try:
            return self._ph.verify(stored_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHash):
            return False


def get_password_hasher(name: str) -> PasswordHasher:
    if name == "argon2":
        return Argon2PasswordHasher()
    if name == "sha256":
        return Sha256PasswordHasher()
    raise ValueError(f"Unknown password hasher {name!r}")
