from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class UserSession:
    """This browser (session_id) is logged in as username since created_at."""

    session_id: str
    username: str
    created_at: float

    def is_expired(self, ttl_seconds: float, now: float) -> bool:
        # Absolute age, not last use.
        return self.created_at < now - ttl_seconds
