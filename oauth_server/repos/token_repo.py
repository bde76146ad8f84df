"""TokenStore: access and refresh tokens in one table, told apart by `type`."""

from __future__ import annotations

import time

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from oauth_server.db.tables import TokenRow
from oauth_server.models.token import Token, TokenType


class TokenStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def create_token(self, record: Token) -> None:
        async with self._sessions.begin() as session:
            session.add(
                TokenRow(
                    token=record.token,
                    type=record.type,
                    client_id=record.client_id,
                    scopes=list(record.scopes),
                    resource=record.resource,
                    created_at=record.created_at,
                    expires_at=record.expires_at,
                    refresh_token=record.refresh_token,
                    authorization_code=record.authorization_code,
                )
            )

    async def get_token(
        self, token: str, token_type: TokenType | None = None
    ) -> Token | None:
        """Look a token up; with token_type, a token of the other type is None."""
        stmt = select(TokenRow).where(TokenRow.token == token)
        if token_type is not None:
            stmt = stmt.where(TokenRow.type == token_type)
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_token(row) if row is not None else None

    async def delete_token(self, token: str) -> bool:
        async with self._sessions.begin() as session:
            result = await session.execute(delete(TokenRow).where(TokenRow.token == token))
            return result.rowcount > 0

    async def cleanup_expired(self, *, now: float | None = None) -> int:
        cutoff = time.time() if now is None else now
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(TokenRow).where(TokenRow.expires_at < cutoff)
            )
            return result.rowcount

    async def get_all_tokens(self) -> list[Token]:
        async with self._sessions() as session:
            rows = (await session.execute(select(TokenRow))).scalars().all()
            return [_row_to_token(row) for row in rows]

    async def get_tokens_by_client_id(self, client_id: str) -> list[Token]:
        async with self._sessions() as session:
            stmt = select(TokenRow).where(TokenRow.client_id == client_id)
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_token(row) for row in rows]

    async def delete_tokens_by_client_id(self, client_id: str) -> int:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(TokenRow).where(TokenRow.client_id == client_id)
            )
            return result.rowcount


def _row_to_token(row: TokenRow) -> Token:
    return Token(
        token=row.token,
        type=row.type,  # type: ignore[arg-type]
        client_id=row.client_id,
        scopes=tuple(row.scopes or ()),
        resource=row.resource,
        created_at=row.created_at,
        expires_at=row.expires_at,
        refresh_token=row.refresh_token,
        authorization_code=row.authorization_code,
    )
