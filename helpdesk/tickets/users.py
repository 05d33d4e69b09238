from __future__ import annotations

from typing import Iterable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk.db.models import UserTable

from .models import Role, UserRecord


class UserDirectory(Protocol):
    """Lookup of platform users, used to validate assignment targets."""

    async def get_user(self, user_id: str) -> UserRecord | None:
        ...


class InMemoryUserDirectory:
    def __init__(self, users: Iterable[UserRecord] = ()) -> None:
        self._users: dict[str, UserRecord] = {user.id: user for user in users}

    def add_user(self, user: UserRecord) -> None:
        self._users[user.id] = user

    async def get_user(self, user_id: str) -> UserRecord | None:
        return self._users.get(user_id)


class SQLUserDirectory:
    """User lookups backed by the `users` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add_user(self, user: UserRecord, *, username: str | None = None) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(
                    UserTable(
                        id=user.id,
                        username=username or user.id,
                        display_name=user.display_name,
                        role=user.role.value,
                        is_active=user.is_active,
                    )
                )

    async def get_user(self, user_id: str) -> UserRecord | None:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
        if row is None:
            return None
        return UserRecord(
            id=row.id,
            role=Role(row.role),
            is_active=row.is_active,
            display_name=row.display_name,
        )
