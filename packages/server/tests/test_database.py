"""
Tests for the session boundary: one transaction per logical operation.
"""

from __future__ import annotations

import importlib
import uuid

import pytest
from sqlmodel import select

from orgauthz.core import config
from orgauthz.core.errors import ConflictError
from orgauthz.models.organization import Organization
from orgauthz.services.organizations import create_organization
from orgauthz_shared.schemas.organizations import OrganizationCreateRequest


@pytest.fixture
async def database(tmp_path, monkeypatch):
    monkeypatch.setenv("ORGAUTHZ_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'orgauthz.db'}")
    config.get_settings.cache_clear()

    import orgauthz.core.database as database

    database = importlib.reload(database)
    await database.init_db()
    yield database
    await database.engine.dispose()
    config.get_settings.cache_clear()


async def _slugs(database):
    async with database.get_session_context() as session:
        result = await session.execute(select(Organization.slug).order_by(Organization.slug))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_session_commits_on_success(database):
    async with database.get_session_context() as session:
        await create_organization(OrganizationCreateRequest(slug="acme", display_name="Acme"), session)

    assert await _slugs(database) == ["acme"]


@pytest.mark.asyncio
async def test_session_rolls_back_whole_operation_on_failure(database):
    tenant = uuid.uuid4()
    async with database.get_session_context() as session:
        await create_organization(
            OrganizationCreateRequest(slug="acme", display_name="Acme", tenant_id=tenant), session
        )

    with pytest.raises(ConflictError):
        async with database.get_session_context() as session:
            await create_organization(
                OrganizationCreateRequest(slug="globex", display_name="Globex", tenant_id=tenant), session
            )
            await create_organization(
                OrganizationCreateRequest(slug="acme", display_name="Other", tenant_id=tenant), session
            )

    assert await _slugs(database) == ["acme"]


@pytest.mark.asyncio
async def test_get_session_generator(database):
    sessions = database.get_session()
    session = await sessions.__anext__()
    await create_organization(OrganizationCreateRequest(slug="acme", display_name="Acme"), session)
    with pytest.raises(StopAsyncIteration):
        await sessions.__anext__()

    assert await _slugs(database) == ["acme"]
