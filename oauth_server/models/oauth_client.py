from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

# RFC 7591 client metadata fields a registration may set.  Anything else in
# a registration request is ignored.
CLIENT_METADATA_FIELDS = (
    "redirect_uris",
    "scope",
    "client_name",
    "client_uri",
    "grant_types",
    "response_types",
    "token_endpoint_auth_method",
)


@dataclass(frozen=True, slots=True)
class OAuthClient:
    client_id: str
    client_secret: str | None
    redirect_uris: tuple[str, ...]
    scope: str
    client_id_issued_at: int
    client_secret_expires_at: int = 0  # 0 = never
    client_name: str | None = None
    client_uri: str | None = None
    grant_types: tuple[str, ...] = ("authorization_code", "refresh_token")
    response_types: tuple[str, ...] = ("code",)
    token_endpoint_auth_method: str = "client_secret_post"

    @property
    def scopes(self) -> tuple[str, ...]:
        return tuple(self.scope.split())

    @property
    def display_name(self) -> str:
        return self.client_name or self.client_id

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form; lists instead of tuples, secret included."""
        data = asdict(self)
        for key in ("redirect_uris", "grant_types", "response_types"):
            data[key] = list(data[key])
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> OAuthClient:
        return OAuthClient(
            client_id=data["client_id"],
            client_secret=data.get("client_secret"),
            redirect_uris=tuple(data.get("redirect_uris") or ()),
            scope=data.get("scope") or "",
            client_id_issued_at=int(data.get("client_id_issued_at") or 0),
            client_secret_expires_at=int(data.get("client_secret_expires_at") or 0),
            client_name=data.get("client_name"),
            client_uri=data.get("client_uri"),
            grant_types=tuple(
                data.get("grant_types") or ("authorization_code", "refresh_token")
            ),
            response_types=tuple(data.get("response_types") or ("code",)),
            token_endpoint_auth_method=data.get("token_endpoint_auth_method")
            or "client_secret_post",
        )
