from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from oauth_server.models.oauth_client import OAuthClient


@dataclass(frozen=True, slots=True)
class AuthorizationParams:
    """What an /authorize request asked for, after the HTTP layer validated it.

    Only the PKCE challenge is kept; the verifier never reaches the server
    until the token exchange.
    """

    redirect_uri: str
    code_challenge: str
    scopes: tuple[str, ...] = ()
    state: str | None = None
    resource: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "redirect_uri": self.redirect_uri,
            "code_challenge": self.code_challenge,
            "scopes": list(self.scopes),
            "state": self.state,
            "resource": self.resource,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> AuthorizationParams:
        return AuthorizationParams(
            redirect_uri=data["redirect_uri"],
            code_challenge=data["code_challenge"],
            scopes=tuple(data.get("scopes") or ()),
            state=data.get("state"),
            resource=data.get("resource"),
        )


@dataclass(frozen=True, slots=True)
class PendingAuthorization:
    session_id: str
    client: OAuthClient  # snapshot taken at /authorize time
    params: AuthorizationParams
    valid_scopes: tuple[str, ...]
    created_at: float
    expires_at: float
    user_id: str | None = None

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at
