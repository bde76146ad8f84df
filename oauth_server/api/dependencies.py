"""Shared FastAPI dependencies and helpers for the OAuth routes.

- get_settings / get_provider: pull the per-app singletons off app.state
- get_session_id: the browser's session id (cookie, then ?sessionId=)
- authenticate_client: client_secret_post / client_secret_basic / none
- require_access_token, require_scopes: bearer protection for resource routes
- auth_page_response: AuthPageResult -> HTML or redirect, plus the cookie
"""

from __future__ import annotations

import base64
import binascii
import hmac
import logging
import re
import time
from typing import Annotated
from urllib.parse import unquote, urljoin

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.security import OAuth2AuthorizationCodeBearer

from oauth_server.core.config import Settings
from oauth_server.core.errors import InvalidClientError, InvalidTokenError
from oauth_server.models.oauth_client import OAuthClient
from oauth_server.models.token import AuthInfo
from oauth_server.services.provider import AuthorizationProvider, AuthPageResult

logger = logging.getLogger(__name__)

SESSION_COOKIE = "sessionId"

# fits the session_id columns; fresh ids are UUIDs
_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9\-_.]{1,128}$")

oauth2_scheme = OAuth2AuthorizationCodeBearer(
    authorizationUrl="/authorize",
    tokenUrl="/token",
    refreshUrl="/token",
    auto_error=False,
)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_provider(request: Request) -> AuthorizationProvider:
    return request.app.state.provider


def get_session_id(request: Request) -> str | None:
    """Cookie first, then ?sessionId=.  Malformed values count as absent."""
    for candidate in (
        request.cookies.get(SESSION_COOKIE),
        request.query_params.get(SESSION_COOKIE),
    ):
        if not candidate:
            continue
        if _SESSION_ID_RE.match(candidate):
            return candidate
        logger.warning("Ignoring malformed session id (length=%d)", len(candidate))
    return None


# ---------------------------------------------------------------------------
# Client authentication (token and revocation endpoints)
# ---------------------------------------------------------------------------


def _basic_credentials(request: Request) -> tuple[str, str] | None:
    header = request.headers.get("authorization", "")
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise InvalidClientError("Malformed Basic authorization header") from None
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        raise InvalidClientError("Malformed Basic authorization header")
    # RFC 6749 section 2.3.1: both parts are form-urlencoded
    return unquote(client_id), unquote(client_secret)


async def authenticate_client(
    request: Request,
    provider: AuthorizationProvider,
    client_id: str | None,
    client_secret: str | None,
) -> OAuthClient:
    basic = _basic_credentials(request)
    if basic is not None:
        if client_id and client_id != basic[0]:
            raise InvalidClientError("client_id does not match the Basic credentials")
        client_id, client_secret = basic

    if not client_id:
        raise InvalidClientError("client_id is required")

    client = await provider.clients.get_client(client_id)
    if client is None:
        logger.warning("Client authentication failed: unknown client_id=%s", client_id)
        raise InvalidClientError("Invalid client_id")

    if client.token_endpoint_auth_method == "none" or not client.client_secret:
        return client

    if not client_secret:
        raise InvalidClientError("Client secret is required")
    if not hmac.compare_digest(client.client_secret, client_secret):
        logger.warning("Client authentication failed: bad secret client_id=%s", client_id)
        raise InvalidClientError("Invalid client_secret")
    if 0 < client.client_secret_expires_at < int(time.time()):
        raise InvalidClientError("Client secret has expired")
    return client


# ---------------------------------------------------------------------------
# Bearer protection
# ---------------------------------------------------------------------------


def protected_resource_metadata_url(settings: Settings) -> str:
    return urljoin(settings.issuer_url, "/.well-known/oauth-protected-resource")


def _bearer_challenge(settings: Settings, error: str, description: str) -> str:
    return (
        f'Bearer error="{error}", error_description="{description}", '
        f'resource_metadata="{protected_resource_metadata_url(settings)}"'
    )


async def require_access_token(
    raw_token: Annotated[str | None, Depends(oauth2_scheme)],
    provider: Annotated[AuthorizationProvider, Depends(get_provider)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthInfo:
    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={
                "WWW-Authenticate": _bearer_challenge(
                    settings, "invalid_token", "Missing bearer token"
                )
            },
        )
    try:
        return await provider.verify_access_token(raw_token)
    except InvalidTokenError as exc:
        logger.warning("Bearer token rejected: %s", exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={
                "WWW-Authenticate": _bearer_challenge(
                    settings, "invalid_token", exc.message
                )
            },
        ) from None


def require_scopes(*scopes: str):
    """Dependency factory: the access token must carry every scope given."""

    async def _guard(
        auth: Annotated[AuthInfo, Depends(require_access_token)],
        settings: Annotated[Settings, Depends(get_settings)],
    ) -> AuthInfo:
        missing = [s for s in scopes if s not in auth.scopes]
        if missing:
            logger.warning(
                "Insufficient scope client_id=%s missing=%s",
                auth.client_id,
                " ".join(missing),
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient scope",
                headers={
                    "WWW-Authenticate": _bearer_challenge(
                        settings, "insufficient_scope", f"Requires {' '.join(scopes)}"
                    )
                },
            )
        return auth

    return _guard


# ---------------------------------------------------------------------------
# Browser responses
# ---------------------------------------------------------------------------


def auth_page_response(result: AuthPageResult, settings: Settings) -> Response:
    if result.redirect_url is not None:
        response: Response = RedirectResponse(
            url=result.redirect_url, status_code=status.HTTP_302_FOUND
        )
    else:
        response = HTMLResponse(result.html or "", status_code=result.status_code)

    if result.session_id:
        response.set_cookie(
            key=SESSION_COOKIE,
            value=result.session_id,
            httponly=True,
            samesite="lax",
            secure=settings.use_https,
            path="/",
            max_age=settings.session_ttl,
        )
    return response
