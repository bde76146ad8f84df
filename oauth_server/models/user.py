from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class User:
    username: str
    password_hash: str
    created_at: float
    updated_at: float

    @staticmethod
    def new(*, username: str, password_hash: str, now: float) -> User:
        return User(
            username=username,
            password_hash=password_hash,
            created_at=now,
            updated_at=now,
        )
