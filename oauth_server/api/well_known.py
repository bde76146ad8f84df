"""Discovery documents.

  /.well-known/oauth-authorization-server   RFC 8414
  /.well-known/oauth-protected-resource     RFC 9728

When the protected resource URL has a path (https://api.example/mcp), RFC
9728 places its document at /.well-known/oauth-protected-resource/mcp; both
that path and the bare one are served.
"""

from __future__ import annotations

from typing import Annotated, Any
from urllib.parse import urljoin, urlsplit

from fastapi import APIRouter, Depends, HTTPException, status

from oauth_server.api.dependencies import get_settings
from oauth_server.core.config import Settings

router = APIRouter(tags=["discovery"])

SettingsDep = Annotated[Settings, Depends(get_settings)]


def authorization_server_metadata(settings: Settings) -> dict[str, Any]:
    issuer = settings.issuer_url
    metadata: dict[str, Any] = {
        "issuer": issuer,
        "authorization_endpoint": urljoin(issuer, "/authorize"),
        "token_endpoint": urljoin(issuer, "/token"),
        "registration_endpoint": urljoin(issuer, "/register"),
        "revocation_endpoint": urljoin(issuer, "/revoke"),
        "scopes_supported": list(settings.allowed_scopes),
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": [
            "client_secret_post",
            "client_secret_basic",
            "none",
        ],
        "revocation_endpoint_auth_methods_supported": [
            "client_secret_post",
            "client_secret_basic",
        ],
        "code_challenge_methods_supported": ["S256"],
    }
    if settings.service_documentation_url:
        metadata["service_documentation"] = settings.service_documentation_url
    return metadata


def protected_resource_metadata(settings: Settings) -> dict[str, Any]:
    return {
        "resource": settings.resource_server_url,
        "authorization_servers": [settings.issuer_url],
        "scopes_supported": list(settings.allowed_scopes),
        "bearer_methods_supported": ["header"],
        "resource_name": settings.resource_name,
    }


@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server(settings: SettingsDep) -> dict[str, Any]:
    return authorization_server_metadata(settings)


@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource(settings: SettingsDep) -> dict[str, Any]:
    return protected_resource_metadata(settings)


@router.get("/.well-known/oauth-protected-resource/{resource_path:path}")
async def oauth_protected_resource_for_path(
    resource_path: str, settings: SettingsDep
) -> dict[str, Any]:
    own_path = urlsplit(settings.resource_server_url).path.strip("/")
    if not own_path or resource_path.strip("/") != own_path:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Unknown protected resource")
    return protected_resource_metadata(settings)
