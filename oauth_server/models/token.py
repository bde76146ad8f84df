from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel

TokenType = Literal["access", "refresh"]


@dataclass(frozen=True, slots=True)
class Token:
    token: str
    type: TokenType
    client_id: str
    scopes: tuple[str, ...]
    created_at: float
    expires_at: float
    resource: str | None = None
    refresh_token: str | None = None  # on access tokens: the refresh token that pairs with it
    authorization_code: str | None = None  # the code this grant chain started from

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass(frozen=True, slots=True)
class AuthInfo:
    """What a resource server learns from a valid access token."""

    token: str
    client_id: str
    scopes: tuple[str, ...]
    expires_at: int  # epoch seconds
    resource: str | None = None


class OAuthTokens(BaseModel):
    """RFC 6749 section 5.1 token response."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    scope: str
    refresh_token: str | None = None
