from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from oauth_server.api.dependencies import require_scopes
from oauth_server.models.token import AuthInfo

logger = logging.getLogger(__name__)

router = APIRouter(tags=["resource"])


class TokenInfoOut(BaseModel):
    client_id: str
    scopes: list[str]
    expires_at: int
    resource: str | None = None


@router.get("/resource/me", response_model=TokenInfoOut)
async def whoami(
    auth: Annotated[AuthInfo, Depends(require_scopes("read"))],
) -> TokenInfoOut:
    """The last leg of the flow: a resource server accepting the access token."""
    logger.info("Resource accessed by client_id=%s", auth.client_id)
    return TokenInfoOut(
        client_id=auth.client_id,
        scopes=list(auth.scopes),
        expires_at=auth.expires_at,
        resource=auth.resource,
    )
