"""SessionStore: browser login sessions (session_id -> username)."""

from __future__ import annotations

import time

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from oauth_server.db.tables import UserSessionRow
from oauth_server.models.user_session import UserSession


class SessionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def create_session(
        self, session_id: str, username: str, *, now: float | None = None
    ) -> UserSession:
        """Log session_id in as username.  Replaces an existing login for the id."""
        user_session = UserSession(
            session_id=session_id,
            username=username,
            created_at=time.time() if now is None else now,
        )
        async with self._sessions.begin() as session:
            await session.execute(
                delete(UserSessionRow).where(UserSessionRow.session_id == session_id)
            )
            session.add(
                UserSessionRow(
                    session_id=user_session.session_id,
                    username=user_session.username,
                    created_at=user_session.created_at,
                )
            )
        return user_session

    async def get_session(self, session_id: str) -> UserSession | None:
        async with self._sessions() as session:
            stmt = select(UserSessionRow).where(UserSessionRow.session_id == session_id)
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_session(row) if row is not None else None

    async def delete_session(self, session_id: str) -> bool:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(UserSessionRow).where(UserSessionRow.session_id == session_id)
            )
            return result.rowcount > 0

    async def cleanup_expired(self, ttl_seconds: float, *, now: float | None = None) -> int:
        """Delete sessions created more than ttl_seconds ago; return how many."""
        cutoff = (time.time() if now is None else now) - ttl_seconds
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(UserSessionRow).where(UserSessionRow.created_at < cutoff)
            )
            return result.rowcount

    async def get_all_sessions(self) -> list[UserSession]:
        async with self._sessions() as session:
            rows = (await session.execute(select(UserSessionRow))).scalars().all()
            return [_row_to_session(row) for row in rows]


def _row_to_session(row: UserSessionRow) -> UserSession:
    return UserSession(
        session_id=row.session_id,
        username=row.username,
        created_at=row.created_at,
    )
