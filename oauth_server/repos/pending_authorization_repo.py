"""PendingAuthorizationStore: /authorize requests waiting for login or consent.

One row per browser session.  `upsert_fresh_or_replace` is the only write
the provider needs while a request is in flight:

  live row for the session    -> overwrite it in place
  row past its expires_at     -> delete it, insert the new one
  no row                      -> insert

All three branches run in one transaction.  Two concurrent calls for the
same session can still interleave between the read and the write; a
session is driven by one browser tab, so the last writer wins.
"""

from __future__ import annotations

import time
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from oauth_server.db.tables import PendingAuthorizationRow
from oauth_server.models.oauth_client import OAuthClient
from oauth_server.models.pending_authorization import (
    AuthorizationParams,
    PendingAuthorization,
)

_UPDATABLE = frozenset(
    {"client", "params", "valid_scopes", "user_id", "created_at", "expires_at"}
)


class PendingAuthorizationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def create(self, pending: PendingAuthorization) -> None:
        async with self._sessions.begin() as session:
            session.add(_pending_to_row(pending))

    async def get(self, session_id: str) -> PendingAuthorization | None:
        async with self._sessions() as session:
            row = await _get_row(session, session_id)
            return _row_to_pending(row) if row is not None else None

    async def update(self, session_id: str, **fields: Any) -> bool:
        """Merge the given fields into the row.  False when there is no row."""
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        async with self._sessions.begin() as session:
            row = await _get_row(session, session_id)
            if row is None:
                return False
            for key, value in _to_columns(fields).items():
                setattr(row, key, value)
            return True

    async def delete(self, session_id: str) -> bool:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(PendingAuthorizationRow).where(
                    PendingAuthorizationRow.session_id == session_id
                )
            )
            return result.rowcount > 0

    async def upsert_fresh_or_replace(
        self, pending: PendingAuthorization, now: float
    ) -> None:
        async with self._sessions.begin() as session:
            row = await _get_row(session, pending.session_id)
            if row is not None and row.expires_at >= now:
                for key, value in _to_columns(_pending_fields(pending)).items():
                    setattr(row, key, value)
                return
            if row is not None:
                await session.delete(row)
                await session.flush()
            session.add(_pending_to_row(pending))

    async def cleanup_expired(self, *, now: float | None = None) -> int:
        cutoff = time.time() if now is None else now
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(PendingAuthorizationRow).where(
                    PendingAuthorizationRow.expires_at < cutoff
                )
            )
            return result.rowcount

    async def get_all(self) -> list[PendingAuthorization]:
        async with self._sessions() as session:
            rows = (
                await session.execute(select(PendingAuthorizationRow))
            ).scalars().all()
            return [_row_to_pending(row) for row in rows]


async def _get_row(
    session: AsyncSession, session_id: str
) -> PendingAuthorizationRow | None:
    stmt = select(PendingAuthorizationRow).where(
        PendingAuthorizationRow.session_id == session_id
    )
    return (await session.execute(stmt)).scalar_one_or_none()


def _pending_fields(pending: PendingAuthorization) -> dict[str, Any]:
    return {
        "client": pending.client,
        "params": pending.params,
        "valid_scopes": pending.valid_scopes,
        "user_id": pending.user_id,
        "created_at": pending.created_at,
        "expires_at": pending.expires_at,
    }


def _to_columns(fields: dict[str, Any]) -> dict[str, Any]:
    columns = dict(fields)
    if isinstance(columns.get("client"), OAuthClient):
        columns["client"] = columns["client"].to_dict()
    if isinstance(columns.get("params"), AuthorizationParams):
        columns["params"] = columns["params"].to_dict()
    if "valid_scopes" in columns:
        columns["valid_scopes"] = list(columns["valid_scopes"])
    return columns


def _pending_to_row(pending: PendingAuthorization) -> PendingAuthorizationRow:
    return PendingAuthorizationRow(
        session_id=pending.session_id,
        **_to_columns(_pending_fields(pending)),
    )


def _row_to_pending(row: PendingAuthorizationRow) -> PendingAuthorization:
    return PendingAuthorization(
        session_id=row.session_id,
        client=OAuthClient.from_dict(row.client),
        params=AuthorizationParams.from_dict(row.params),
        valid_scopes=tuple(row.valid_scopes or ()),
        user_id=row.user_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
