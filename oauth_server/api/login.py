"""Form targets for the pages the provider renders.

The login/register page and the consent page post here; each route reads
the browser's session id and hands the form fields to the provider, which
decides what the browser sees next.  Missing fields are passed through as
empty strings so the provider can re-render the page with its own message
instead of FastAPI answering 422.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import Response

from oauth_server.api.dependencies import (
    auth_page_response,
    get_provider,
    get_session_id,
    get_settings,
)
from oauth_server.api.ratelimit import LOGIN_LIMIT, require_rate_limit
from oauth_server.core.config import Settings
from oauth_server.services.provider import AuthorizationProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth", tags=["login"])

ProviderDep = Annotated[AuthorizationProvider, Depends(get_provider)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


@router.post(
    "/login",
    response_model=None,
    dependencies=[Depends(require_rate_limit("login", LOGIN_LIMIT))],
)
async def login_submit(
    request: Request,
    provider: ProviderDep,
    settings: SettingsDep,
    username: str = Form(""),
    password: str = Form(""),
) -> Response:
    logger.info("Login attempt  username=%s", username)
    result = await provider.handle_login(
        get_session_id(request), username.strip(), password
    )
    return auth_page_response(result, settings)


@router.post(
    "/register",
    response_model=None,
    dependencies=[Depends(require_rate_limit("login", LOGIN_LIMIT))],
)
async def register_submit(
    request: Request,
    provider: ProviderDep,
    settings: SettingsDep,
    username: str = Form(""),
    password: str = Form(""),
    password_confirm: str = Form("", alias="passwordConfirm"),
) -> Response:
    logger.info("Registration attempt  username=%s", username)
    result = await provider.handle_register(
        get_session_id(request), username.strip(), password, password_confirm
    )
    return auth_page_response(result, settings)


@router.post("/authorize", response_model=None)
async def consent_submit(
    request: Request,
    provider: ProviderDep,
    settings: SettingsDep,
    action: str = Form(""),
) -> Response:
    result = await provider.handle_authorization_confirmation(
        get_session_id(request), action
    )
    return auth_page_response(result, settings)
