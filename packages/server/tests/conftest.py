"""Test fixtures for the organization authorization engine."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import orgauthz.models  # noqa: F401
from orgauthz.core.config import Settings
from orgauthz.core.errors import LifecycleHookRejectedError
from orgauthz.models.permission import Permission
from orgauthz.models.user import User
from orgauthz.ports import (
    OrganizationLifecycleContext,
    OrganizationLifecycleEvent,
    OrganizationLifecycleListener,
    RoleAssignmentService,
)
from orgauthz.services.catalog import SqlPermissionCatalog, SqlUserDirectory
from orgauthz.services.lifecycle import OrganizationLifecycleDispatcher

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class StaticRoleAssignmentService(RoleAssignmentService):
    """Global permissions keyed by user id."""

    def __init__(self, permissions: dict[uuid.UUID, list[str]] | None = None):
        self.permissions = permissions or {}

    async def get_effective_permissions(self, user_id: uuid.UUID) -> list[str]:
        return list(self.permissions.get(user_id, []))


class RecordingLifecycleListener(OrganizationLifecycleListener):
    """Records every hook call; vetoes the events listed in ``reject``."""

    def __init__(self):
        self.before_calls: list[OrganizationLifecycleContext] = []
        self.after_calls: list[OrganizationLifecycleContext] = []
        self.reject: set[OrganizationLifecycleEvent] = set()

    async def before(self, context: OrganizationLifecycleContext) -> None:
        self.before_calls.append(context)
        if context.event in self.reject:
            raise LifecycleHookRejectedError(context.event.value, "not allowed")

    async def after(self, context: OrganizationLifecycleContext) -> None:
        self.after_calls.append(context)

    @property
    def after_events(self) -> list[OrganizationLifecycleEvent]:
        return [context.event for context in self.after_calls]


@pytest.fixture
async def async_engine():
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    async_session_maker = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def settings():
    return Settings(database_url=TEST_DATABASE_URL)


@pytest.fixture
def catalog(session):
    return SqlPermissionCatalog(session)


@pytest.fixture
def directory(session):
    return SqlUserDirectory(session)


@pytest.fixture
def role_assignments():
    return StaticRoleAssignmentService()


@pytest.fixture
def listener():
    return RecordingLifecycleListener()


@pytest.fixture
def lifecycle(listener, settings):
    return OrganizationLifecycleDispatcher([listener], settings)


@pytest.fixture
def make_permissions(session):
    async def _make(*names: str) -> dict[str, Permission]:
        permissions = {name: Permission(name=name) for name in names}
        session.add_all(permissions.values())
        await session.flush()
        return permissions

    return _make


@pytest.fixture
def make_user(session):
    async def _make(email: str | None = None, **kwargs) -> User:
        user = User(email=email or f"{uuid.uuid4().hex[:8]}@example.com", **kwargs)
        session.add(user)
        await session.flush()
        return user

    return _make
