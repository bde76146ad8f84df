from __future__ import annotations

import logging
from typing import Annotated, Any
from urllib.parse import urlsplit

from fastapi import APIRouter, Body, Depends, Form, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from oauth_server.api.dependencies import (
    auth_page_response,
    authenticate_client,
    get_provider,
    get_session_id,
    get_settings,
)
from oauth_server.api.ratelimit import (
    REGISTER_CLIENT_LIMIT,
    TOKEN_LIMIT,
    require_rate_limit,
)
from oauth_server.core.config import Settings
from oauth_server.core.errors import (
    InvalidClientMetadataError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    UnsupportedGrantTypeError,
)
from oauth_server.core.urls import with_query
from oauth_server.models.pending_authorization import AuthorizationParams
from oauth_server.services import pkce_service
from oauth_server.services.provider import AuthorizationProvider

# ---------------------------------------------------------------------------
# Authorization server endpoints
#
#   GET  /authorize  validate the request, hand it to the provider (login/consent)
#   POST /token      authorization_code and refresh_token grants
#   POST /register   RFC 7591 dynamic client registration
#   POST /revoke     RFC 7009 token revocation
# ---------------------------------------------------------------------------

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])

ProviderDep = Annotated[AuthorizationProvider, Depends(get_provider)]
SettingsDep = Annotated[Settings, Depends(get_settings)]

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _redirect_error(
    redirect_uri: str, error: str, description: str, state: str | None
) -> RedirectResponse:
    return RedirectResponse(
        url=with_query(
            redirect_uri,
            {"error": error, "error_description": description, "state": state},
        ),
        status_code=status.HTTP_302_FOUND,
    )


def _is_absolute_uri(value: str) -> bool:
    parts = urlsplit(value)
    return bool(parts.scheme) and not parts.fragment


# ========================== GET /authorize ================================
# Until the redirect URI is known to belong to the client, errors are shown
# to the user (400).  After that they go back to the client as a redirect.


@router.get("/authorize", response_model=None)
async def authorize(
    request: Request,
    provider: ProviderDep,
    settings: SettingsDep,
    client_id: str | None = Query(None),
    redirect_uri: str | None = Query(None),
    response_type: str | None = Query(None),
    code_challenge: str | None = Query(None),
    code_challenge_method: str | None = Query(None),
    scope: str | None = Query(None),
    state: str | None = Query(None),
    resource: str | None = Query(None),
) -> Response:
    logger.info(
        "OAUTH FLOW [authorize] request received  client_id=%s scope=%s",
        client_id,
        scope,
    )

    if not client_id:
        raise InvalidRequestError("client_id is required")
    client = await provider.clients.get_client(client_id)
    if client is None:
        logger.warning("OAUTH FLOW [authorize] FAIL: unknown client_id=%s", client_id)
        raise InvalidRequestError("Invalid client_id")

    if redirect_uri is None:
        if len(client.redirect_uris) != 1:
            raise InvalidRequestError(
                "redirect_uri must be specified when the client has several"
            )
        redirect_uri = client.redirect_uris[0]
    elif redirect_uri not in client.redirect_uris:
        logger.warning("OAUTH FLOW [authorize] FAIL: redirect_uri not registered")
        raise InvalidRequestError("Unregistered redirect_uri")

    # --- from here on, errors are redirected to the client ---------------
    if response_type != "code":
        return _redirect_error(
            redirect_uri,
            "unsupported_response_type",
            "response_type must be 'code'",
            state,
        )
    if not code_challenge:
        return _redirect_error(
            redirect_uri, "invalid_request", "code_challenge is required", state
        )
    if code_challenge_method not in pkce_service.SUPPORTED_METHODS:
        return _redirect_error(
            redirect_uri,
            "invalid_request",
            "code_challenge_method must be S256",
            state,
        )
    # FAIL POINT: a malformed challenge can never be matched by a verifier
    if not pkce_service.is_valid_code_challenge(code_challenge):
        return _redirect_error(
            redirect_uri,
            "invalid_request",
            "code_challenge must be 43-128 unreserved characters",
            state,
        )
    if resource is not None and not _is_absolute_uri(resource):
        return _redirect_error(
            redirect_uri,
            "invalid_target",
            "resource must be an absolute URI without a fragment",
            state,
        )

    requested = tuple(scope.split()) if scope else ()
    outside_client = [s for s in requested if s not in client.scopes]
    if outside_client:
        return _redirect_error(
            redirect_uri,
            "invalid_scope",
            f"Client was not registered with scope {' '.join(outside_client)}",
            state,
        )

    params = AuthorizationParams(
        redirect_uri=redirect_uri,
        code_challenge=code_challenge,
        scopes=requested,
        state=state,
        resource=resource,
    )
    try:
        result = await provider.authorize(client, params, get_session_id(request))
    except InvalidScopeError as exc:
        return _redirect_error(redirect_uri, exc.error_code, exc.message, state)

    return auth_page_response(result, settings)


# ========================== POST /token ===================================


@router.post(
    "/token",
    dependencies=[Depends(require_rate_limit("token", TOKEN_LIMIT))],
)
async def token(
    request: Request,
    provider: ProviderDep,
    grant_type: str | None = Form(None),
    code: str | None = Form(None),
    code_verifier: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    refresh_token: str | None = Form(None),
    scope: str | None = Form(None),
    resource: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
) -> JSONResponse:
    # Never log code, code_verifier, refresh_token or client_secret.
    client = await authenticate_client(request, provider, client_id, client_secret)
    logger.info(
        "OAUTH FLOW [token] request  client_id=%s grant_type=%s",
        client.client_id,
        grant_type,
    )

    if grant_type == "authorization_code":
        if not code:
            raise InvalidRequestError("code is required")
        if not code_verifier:
            raise InvalidRequestError("code_verifier is required")

        challenge = await provider.challenge_for_authorization_code(client, code)
        if not pkce_service.verify_code_challenge(code_verifier, challenge):
            logger.warning("OAUTH FLOW [token] FAIL: PKCE verification failed")
            raise InvalidGrantError("code_verifier does not match the challenge")

        tokens = await provider.exchange_authorization_code(
            client,
            code,
            code_verifier=code_verifier,
            redirect_uri=redirect_uri,
            resource=resource,
        )
    elif grant_type == "refresh_token":
        if not refresh_token:
            raise InvalidRequestError("refresh_token is required")
        tokens = await provider.exchange_refresh_token(
            client,
            refresh_token,
            scopes=scope.split() if scope else None,
            resource=resource,
        )
    else:
        raise UnsupportedGrantTypeError(
            f"grant_type must be authorization_code or refresh_token (got {grant_type!r})"
        )

    return JSONResponse(tokens.model_dump(exclude_none=True), headers=_NO_STORE)


# ========================== POST /register ================================


class ClientRegistrationIn(BaseModel):
    """RFC 7591 client metadata.  Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    redirect_uris: list[str]
    client_name: str | None = None
    client_uri: str | None = None
    scope: str | None = None
    grant_types: list[str] | None = None
    response_types: list[str] | None = None
    token_endpoint_auth_method: str | None = None

    @field_validator("redirect_uris")
    @classmethod
    def _check_redirect_uris(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one redirect_uri is required")
        bad = [uri for uri in value if not _is_absolute_uri(uri)]
        if bad:
            raise ValueError(f"redirect_uris must be absolute URIs: {', '.join(bad)}")
        return value

    @field_validator("token_endpoint_auth_method")
    @classmethod
    def _check_auth_method(cls, value: str | None) -> str | None:
        if value is not None and value not in (
            "none",
            "client_secret_post",
            "client_secret_basic",
        ):
            raise ValueError(f"unsupported token_endpoint_auth_method {value!r}")
        return value


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_rate_limit("register_client", REGISTER_CLIENT_LIMIT))],
)
async def register_client(
    provider: ProviderDep,
    payload: Annotated[dict[str, Any], Body()],
) -> JSONResponse:
    try:
        metadata = ClientRegistrationIn.model_validate(payload)
    except ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise InvalidClientMetadataError(messages) from None

    try:
        client = await provider.clients.register_client(
            metadata.model_dump(exclude_none=True)
        )
    except InvalidScopeError as exc:
        raise InvalidClientMetadataError(exc.message) from None

    return JSONResponse(
        client.to_dict(), status_code=status.HTTP_201_CREATED, headers=_NO_STORE
    )


# ========================== POST /revoke ==================================


@router.post("/revoke")
async def revoke(
    request: Request,
    provider: ProviderDep,
    token: str | None = Form(None),
    token_type_hint: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
) -> JSONResponse:
    client = await authenticate_client(request, provider, client_id, client_secret)
    if not token:
        raise InvalidRequestError("token is required")

    await provider.revoke_token(client, token, token_type_hint)
    return JSONResponse({}, headers=_NO_STORE)
