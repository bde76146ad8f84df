"""UserDirectory: local accounts for the login form.

Hashing is delegated to a PasswordHasher so the scheme can change without
touching this contract.  Listings return hashes; redacting them is the
caller's job.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from oauth_server.core.errors import AlreadyExistsError
from oauth_server.db.tables import UserRow
from oauth_server.models.user import User
from oauth_server.services.password_hasher import PasswordHasher

logger = logging.getLogger(__name__)


class UserDirectory:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hasher: PasswordHasher,
    ) -> None:
        self._sessions = session_factory
        self._hasher = hasher

    async def create_user(self, username: str, password: str) -> User:
        if await self.get_user(username) is not None:
            raise AlreadyExistsError("User already exists")

        user = User.new(
            username=username,
            password_hash=self._hasher.hash(password),
            now=time.time(),
        )
        try:
            async with self._sessions.begin() as session:
                session.add(
                    UserRow(
                        username=user.username,
                        password_hash=user.password_hash,
                        created_at=user.created_at,
                        updated_at=user.updated_at,
                    )
                )
        except IntegrityError:
            # lost a race with a concurrent registration of the same name
            raise AlreadyExistsError("User already exists") from None

        logger.info("User created  username=%s", username)
        return user

    async def get_user(self, username: str) -> User | None:
        async with self._sessions() as session:
            stmt = select(UserRow).where(UserRow.username == username)
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_user(row) if row is not None else None

    async def verify_password(self, username: str, password: str) -> bool:
        user = await self.get_user(username)
        if user is None:
            return False
        return self._hasher.verify(password, user.password_hash)

    async def update_password(self, username: str, new_password: str) -> bool:
        async with self._sessions.begin() as session:
            result = await session.execute(
                update(UserRow)
                .where(UserRow.username == username)
                .values(
                    password_hash=self._hasher.hash(new_password),
                    updated_at=time.time(),
                )
            )
            updated = result.rowcount > 0
        if updated:
            logger.info("Password updated  username=%s", username)
        return updated

    async def delete_user(self, username: str) -> bool:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(UserRow).where(UserRow.username == username)
            )
            return result.rowcount > 0

    async def get_all_users(self) -> list[User]:
        async with self._sessions() as session:
            rows = (await session.execute(select(UserRow))).scalars().all()
            return [_row_to_user(row) for row in rows]


def _row_to_user(row: UserRow) -> User:
    return User(
        username=row.username,
        password_hash=row.password_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
