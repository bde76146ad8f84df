"""ClientRegistry: OAuth client registrations (RFC 7591).

Scopes a client may request are checked against the server allow-list
at registration and on every update that touches `scope`.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from oauth_server.core.errors import AlreadyExistsError, InvalidScopeError
from oauth_server.db.tables import OAuthClientRow
from oauth_server.models.oauth_client import CLIENT_METADATA_FIELDS, OAuthClient

logger = logging.getLogger(__name__)

_LIST_FIELDS = ("redirect_uris", "grant_types", "response_types")


class ClientRegistry:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        allowed_scopes: Iterable[str],
    ) -> None:
        self._sessions = session_factory
        self._allowed_scopes = tuple(allowed_scopes)

    @property
    def allowed_scopes(self) -> tuple[str, ...]:
        return self._allowed_scopes

    def validate_scope(self, scope: str | None) -> str:
        """Normalize a space-joined scope string against the allow-list.

        Blank means "everything allowed".  Raises InvalidScopeError naming
        the offending scopes otherwise.
        """
        requested = (scope or "").split()
        if not requested:
            return " ".join(self._allowed_scopes)

        invalid = [s for s in requested if s not in self._allowed_scopes]
        if invalid:
            raise InvalidScopeError(
                f'Invalid scopes: "{", ".join(invalid)}". '
                f'Allowed scopes are: "{", ".join(self._allowed_scopes)}"'
            )
        return " ".join(requested)

    async def get_client(self, client_id: str) -> OAuthClient | None:
        async with self._sessions() as session:
            row = await _get_row(session, client_id)
            return _row_to_client(row) if row is not None else None

    async def register_client(self, metadata: Mapping[str, Any]) -> OAuthClient:
        """Create a client with a generated id and secret."""
        fields = _known_fields(metadata)
        fields["scope"] = self.validate_scope(fields.get("scope"))

        client = OAuthClient.from_dict(
            {
                **fields,
                "client_id": str(uuid.uuid4()),
                "client_secret": str(uuid.uuid4()),
                "client_id_issued_at": int(time.time()),
                "client_secret_expires_at": 0,
            }
        )
        try:
            async with self._sessions.begin() as session:
                session.add(_client_to_row(client))
        except IntegrityError:
            raise AlreadyExistsError(
                f"Client {client.client_id} already exists"
            ) from None

        logger.info(
            "Client registered  client_id=%s name=%s scope=%s",
            client.client_id,
            client.client_name,
            client.scope,
        )
        return client

    async def update_client(
        self, client_id: str, updates: Mapping[str, Any]
    ) -> OAuthClient | None:
        """Merge `updates` into the stored client.  None when it doesn't exist."""
        changes = _known_fields(updates)
        if "client_secret" in updates:
            changes["client_secret"] = updates["client_secret"]
        if "client_secret_expires_at" in updates:
            changes["client_secret_expires_at"] = int(updates["client_secret_expires_at"])
        if "scope" in changes:
            changes["scope"] = self.validate_scope(changes["scope"])

        async with self._sessions.begin() as session:
            row = await _get_row(session, client_id)
            if row is None:
                return None
            for key, value in changes.items():
                setattr(row, key, list(value) if key in _LIST_FIELDS else value)
            return _row_to_client(row)

    async def delete_client(self, client_id: str) -> bool:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(OAuthClientRow).where(OAuthClientRow.client_id == client_id)
            )
            return result.rowcount > 0

    async def get_all_clients(self) -> list[OAuthClient]:
        """Every client, with client_secret stripped."""
        async with self._sessions() as session:
            rows = (await session.execute(select(OAuthClientRow))).scalars().all()
            return [
                _row_to_client(row, include_secret=False) for row in rows
            ]


def _known_fields(metadata: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: metadata[key]
        for key in CLIENT_METADATA_FIELDS
        if key in metadata and metadata[key] is not None
    }


async def _get_row(session: AsyncSession, client_id: str) -> OAuthClientRow | None:
    stmt = select(OAuthClientRow).where(OAuthClientRow.client_id == client_id)
    return (await session.execute(stmt)).scalar_one_or_none()


def _client_to_row(client: OAuthClient) -> OAuthClientRow:
    return OAuthClientRow(
        client_id=client.client_id,
        client_secret=client.client_secret,
        redirect_uris=list(client.redirect_uris),
        scope=client.scope,
        client_name=client.client_name,
        client_uri=client.client_uri,
        grant_types=list(client.grant_types),
        response_types=list(client.response_types),
        token_endpoint_auth_method=client.token_endpoint_auth_method,
        client_id_issued_at=client.client_id_issued_at,
        client_secret_expires_at=client.client_secret_expires_at,
    )


def _row_to_client(row: OAuthClientRow, *, include_secret: bool = True) -> OAuthClient:
    return OAuthClient(
        client_id=row.client_id,
        client_secret=row.client_secret if include_secret else None,
        redirect_uris=tuple(row.redirect_uris or ()),
        scope=row.scope,
        client_id_issued_at=row.client_id_issued_at,
        client_secret_expires_at=row.client_secret_expires_at,
        client_name=row.client_name,
        client_uri=row.client_uri,
        grant_types=tuple(row.grant_types or ()),
        response_types=tuple(row.response_types or ()),
        token_endpoint_auth_method=row.token_endpoint_auth_method,
    )
