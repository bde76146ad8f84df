from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AuthorizationCode:
    code: str
    client_id: str
    code_challenge: str
    redirect_uri: str
    scopes: tuple[str, ...]
    created_at: float
    expires_at: float
    resource: str | None = None

    @staticmethod
    def new(
        *,
        code: str,
        client_id: str,
        code_challenge: str,
        redirect_uri: str,
        scopes: tuple[str, ...],
        resource: str | None,
        now: float,
        lifetime: float,
    ) -> AuthorizationCode:
        return AuthorizationCode(
            code=code,
            client_id=client_id,
            code_challenge=code_challenge,
            redirect_uri=redirect_uri,
            scopes=tuple(scopes),
            created_at=now,
            expires_at=now + lifetime,
            resource=resource,
        )

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at
