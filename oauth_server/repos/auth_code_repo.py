"""AuthorizationCodeStore: single-use codes awaiting exchange."""

from __future__ import annotations

import time

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from oauth_server.db.tables import AuthorizationCodeRow
from oauth_server.models.authorization_code import AuthorizationCode


class AuthorizationCodeStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def create_code(self, record: AuthorizationCode) -> None:
        async with self._sessions.begin() as session:
            session.add(
                AuthorizationCodeRow(
                    code=record.code,
                    client_id=record.client_id,
                    code_challenge=record.code_challenge,
                    redirect_uri=record.redirect_uri,
                    scopes=list(record.scopes),
                    resource=record.resource,
                    created_at=record.created_at,
                    expires_at=record.expires_at,
                )
            )

    async def get_code(self, code: str) -> AuthorizationCode | None:
        async with self._sessions() as session:
            stmt = select(AuthorizationCodeRow).where(AuthorizationCodeRow.code == code)
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_auth_code(row) if row is not None else None

    async def delete_code(self, code: str) -> bool:
        """Delete a code.  True only for the caller that actually removed the row,
        which is what makes a code single-use under concurrent exchanges."""
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(AuthorizationCodeRow).where(AuthorizationCodeRow.code == code)
            )
            return result.rowcount > 0

    async def cleanup_expired(self, *, now: float | None = None) -> int:
        cutoff = time.time() if now is None else now
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(AuthorizationCodeRow).where(
                    AuthorizationCodeRow.expires_at < cutoff
                )
            )
            return result.rowcount

    async def get_all_codes(self) -> list[AuthorizationCode]:
        async with self._sessions() as session:
            rows = (await session.execute(select(AuthorizationCodeRow))).scalars().all()
            return [_row_to_auth_code(row) for row in rows]

    async def get_codes_by_client_id(self, client_id: str) -> list[AuthorizationCode]:
        async with self._sessions() as session:
            stmt = select(AuthorizationCodeRow).where(
                AuthorizationCodeRow.client_id == client_id
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_auth_code(row) for row in rows]

    async def delete_codes_by_client_id(self, client_id: str) -> int:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(AuthorizationCodeRow).where(
                    AuthorizationCodeRow.client_id == client_id
                )
            )
            return result.rowcount


def _row_to_auth_code(row: AuthorizationCodeRow) -> AuthorizationCode:
    return AuthorizationCode(
        code=row.code,
        client_id=row.client_id,
        code_challenge=row.code_challenge,
        redirect_uri=row.redirect_uri,
        scopes=tuple(row.scopes or ()),
        resource=row.resource,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
