"""
SQL-backed defaults for the catalog and directory ports.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgauthz.models.permission import Permission
from orgauthz.models.user import User
from orgauthz.ports import PermissionCatalog, UserDirectory, UserSummary
from orgauthz.services.paging import LIKE_ESCAPE


class SqlPermissionCatalog(PermissionCatalog):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_names(self, permission_ids: Collection[uuid.UUID]) -> dict[uuid.UUID, str]:
        if not permission_ids:
            return {}
        result = await self._session.execute(
            select(Permission.id, Permission.name).where(Permission.id.in_(list(permission_ids)))
        )
        return {permission_id: name for permission_id, name in result.all() if name and name.strip()}

    async def get_ids(self, names: Collection[str]) -> dict[str, uuid.UUID]:
        lowered = {name.strip().lower() for name in names if name and name.strip()}
        if not lowered:
            return {}
        result = await self._session.execute(
            select(Permission.id, Permission.name).where(func.lower(Permission.name).in_(list(lowered)))
        )
        return {name.lower(): permission_id for permission_id, name in result.all()}


class SqlUserDirectory(UserDirectory):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def search_user_ids(self, pattern: str) -> list[uuid.UUID]:
        result = await self._session.execute(
            select(User.id).where(
                or_(
                    User.email.ilike(pattern, escape=LIKE_ESCAPE),
                    User.display_name.ilike(pattern, escape=LIKE_ESCAPE),
                    User.username.ilike(pattern, escape=LIKE_ESCAPE),
                )
            )
        )
        return list(result.scalars().all())

    async def get_users(self, user_ids: Collection[uuid.UUID]) -> dict[uuid.UUID, UserSummary]:
        if not user_ids:
            return {}
        result = await self._session.execute(select(User).where(User.id.in_(list(user_ids))))
        return {
            user.id: UserSummary(id=user.id, email=user.email, display_name=user.display_name)
            for user in result.scalars().all()
        }
