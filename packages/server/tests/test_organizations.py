"""
Tests for the organization directory.

Tests cover:
- Slug / display name / metadata validation
- Tenant-scoped uniqueness
- Tenant-scoped reads
- Paged listing: literal search, status filter, sort
- Partial update and archive lifecycle
"""

from __future__ import annotations

import uuid

import pytest

from orgauthz.core.errors import ConflictError, NotFoundError, ValidationError
from orgauthz.services.organizations import (
    archive_organization,
    create_organization,
    get_organization,
    get_organization_by_slug,
    list_organizations,
    list_organizations_paged,
    normalize_slug,
    update_organization,
    validate_metadata,
)
from orgauthz_shared.schemas.organizations import (
    OrganizationCreateRequest,
    OrganizationListRequest,
    OrganizationStatus,
    OrganizationUpdateRequest,
)


async def _create(session, settings, slug="acme", display_name="Acme", tenant_id=None, **kw):
    req = OrganizationCreateRequest(slug=slug, display_name=display_name, tenant_id=tenant_id, **kw)
    return await create_organization(req, session, settings)


# ---------------------------------------------------------------------------
# Validation (no DB needed)
# ---------------------------------------------------------------------------

class TestValidation:

    def test_slug_is_lowercased_and_trimmed(self, settings):
        assert normalize_slug("  Acme-Co.EU_1 ", settings) == "acme-co.eu_1"

    @pytest.mark.parametrize("slug", ["", "   ", "-acme", ".acme", "ac me", "acme!"])
    def test_invalid_slugs(self, settings, slug):
        with pytest.raises(ValidationError) as exc_info:
            normalize_slug(slug, settings)
        assert exc_info.value.status_code == 422

    def test_slug_max_length(self, settings):
        with pytest.raises(ValidationError):
            normalize_slug("a" * (settings.slug_max_length + 1), settings)

    def test_metadata_key_length(self, settings):
        with pytest.raises(ValidationError):
            validate_metadata({"k" * (settings.metadata_max_key_length + 1): "v"}, settings)

    def test_metadata_value_length(self, settings):
        with pytest.raises(ValidationError):
            validate_metadata({"k": "v" * (settings.metadata_max_value_length + 1)}, settings)

    def test_metadata_total_size(self, settings):
        settings.metadata_max_bytes = 64
        with pytest.raises(ValidationError):
            validate_metadata({f"k{i}": "value" for i in range(10)}, settings)


# ---------------------------------------------------------------------------
# Create / read
# ---------------------------------------------------------------------------

class TestCreate:

    @pytest.mark.asyncio
    async def test_create_normalizes_and_persists_active(self, session, settings):
        tenant = uuid.uuid4()
        org = await _create(
            session, settings, slug=" ACME ", display_name="  Acme Inc ", tenant_id=tenant,
            metadata={"region": "eu"},
        )
        assert org.slug == "acme"
        assert org.display_name == "Acme Inc"
        assert org.status == OrganizationStatus.ACTIVE.value
        assert org.metadata_ == {"region": "eu"}
        assert org.archived_at is None

        fetched = await get_organization(org.id, session)
        assert fetched is not None and fetched.id == org.id

    @pytest.mark.asyncio
    async def test_blank_display_name_rejected(self, session, settings):
        with pytest.raises(ValidationError):
            await _create(session, settings, display_name="   ")

    @pytest.mark.asyncio
    async def test_duplicate_slug_in_tenant_conflicts(self, session, settings):
        tenant = uuid.uuid4()
        await _create(session, settings, tenant_id=tenant)
        with pytest.raises(ConflictError) as exc_info:
            await _create(session, settings, slug="ACME", display_name="Other", tenant_id=tenant)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_duplicate_display_name_in_global_scope_conflicts(self, session, settings):
        await _create(session, settings)
        with pytest.raises(ConflictError):
            await _create(session, settings, slug="acme-2", display_name="Acme")

    @pytest.mark.asyncio
    async def test_same_slug_allowed_in_other_tenant(self, session, settings):
        await _create(session, settings, tenant_id=uuid.uuid4())
        await _create(session, settings, tenant_id=uuid.uuid4())
        await _create(session, settings, tenant_id=None)


class TestReads:

    @pytest.mark.asyncio
    async def test_get_by_slug_is_tenant_scoped(self, session, settings):
        tenant = uuid.uuid4()
        org = await _create(session, settings, tenant_id=tenant)

        assert (await get_organization_by_slug(tenant, "  ACME ", session)).id == org.id
        assert await get_organization_by_slug(None, "acme", session) is None
        assert await get_organization_by_slug(uuid.uuid4(), "acme", session) is None
        assert await get_organization_by_slug(tenant, "  ", session) is None

    @pytest.mark.asyncio
    async def test_list_is_tenant_scoped_and_ordered(self, session, settings):
        tenant = uuid.uuid4()
        await _create(session, settings, slug="zeta", display_name="Zeta", tenant_id=tenant)
        await _create(session, settings, slug="alpha", display_name="Alpha", tenant_id=tenant)
        await _create(session, settings, slug="global", display_name="Global")

        orgs = await list_organizations(tenant, session)
        assert [o.slug for o in orgs] == ["alpha", "zeta"]
        assert [o.slug for o in await list_organizations(None, session)] == ["global"]

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, session):
        assert await get_organization(uuid.uuid4(), session) is None
        assert await get_organization(None, session) is None


class TestListPaged:

    @pytest.mark.asyncio
    async def test_pages_in_display_name_order(self, session, settings):
        tenant = uuid.uuid4()
        for slug in ("delta", "alpha", "charlie", "bravo"):
            await _create(session, settings, slug=slug, display_name=slug.title(), tenant_id=tenant)
        await _create(session, settings, slug="global", display_name="Global")

        first = await list_organizations_paged(
            OrganizationListRequest(tenant_id=tenant, page_size=3), session, settings
        )
        assert first.total_count == 4
        assert [o.slug for o in first.organizations] == ["alpha", "bravo", "charlie"]
        assert first.organizations[0].status == OrganizationStatus.ACTIVE

        second = await list_organizations_paged(
            OrganizationListRequest(tenant_id=tenant, page=2, page_size=3), session, settings
        )
        assert [o.slug for o in second.organizations] == ["delta"]

        past_end = await list_organizations_paged(
            OrganizationListRequest(tenant_id=tenant, page=3, page_size=3), session, settings
        )
        assert past_end.page == 3
        assert past_end.organizations == []

    @pytest.mark.asyncio
    async def test_search_status_and_sort(self, session, settings):
        await _create(session, settings, slug="team_a", display_name="Team A")
        await _create(session, settings, slug="teamxa", display_name="Team X")
        archived = await _create(session, settings, slug="archive-me", display_name="Old Team")
        await archive_organization(archived.id, session)

        literal = await list_organizations_paged(
            OrganizationListRequest(search="M_A"), session, settings
        )
        assert [o.slug for o in literal.organizations] == ["team_a"]

        only_archived = await list_organizations_paged(
            OrganizationListRequest(status=OrganizationStatus.ARCHIVED), session, settings
        )
        assert [o.slug for o in only_archived.organizations] == ["archive-me"]
        assert only_archived.organizations[0].archived_at is not None

        by_slug_desc = await list_organizations_paged(
            OrganizationListRequest(sort=["slug:desc"]), session, settings
        )
        assert [o.slug for o in by_slug_desc.organizations] == ["teamxa", "team_a", "archive-me"]

        nothing = await list_organizations_paged(
            OrganizationListRequest(search="nomatch"), session, settings
        )
        assert nothing.total_count == 0



# ---------------------------------------------------------------------------
# Update / archive
# ---------------------------------------------------------------------------

class TestUpdate:

    @pytest.mark.asyncio
    async def test_rename_checks_uniqueness_excluding_self(self, session, settings):
        org = await _create(session, settings)
        await _create(session, settings, slug="other", display_name="Other")

        same = await update_organization(org.id, OrganizationUpdateRequest(display_name="Acme"), session, settings)
        assert same.updated_at is None

        with pytest.raises(ConflictError):
            await update_organization(org.id, OrganizationUpdateRequest(display_name="Other"), session, settings)

    @pytest.mark.asyncio
    async def test_blank_display_name_in_patch_rejected(self, session, settings):
        org = await _create(session, settings)
        with pytest.raises(ValidationError):
            await update_organization(org.id, OrganizationUpdateRequest(display_name=" "), session, settings)

    @pytest.mark.asyncio
    async def test_status_transitions_stamp_and_clear_archive_time(self, session, settings):
        org = await _create(session, settings)

        org = await update_organization(
            org.id, OrganizationUpdateRequest(status=OrganizationStatus.ARCHIVED), session, settings
        )
        assert org.status == OrganizationStatus.ARCHIVED.value
        assert org.archived_at is not None
        assert org.updated_at is not None

        org = await update_organization(
            org.id, OrganizationUpdateRequest(status=OrganizationStatus.ACTIVE), session, settings
        )
        assert org.archived_at is None

    @pytest.mark.asyncio
    async def test_metadata_patch(self, session, settings):
        org = await _create(session, settings, metadata={"a": "1"})
        org = await update_organization(org.id, OrganizationUpdateRequest(metadata={"b": "2"}), session, settings)
        assert org.metadata_ == {"b": "2"}

    @pytest.mark.asyncio
    async def test_update_missing_raises_not_found(self, session, settings):
        with pytest.raises(NotFoundError) as exc_info:
            await update_organization(uuid.uuid4(), OrganizationUpdateRequest(display_name="X"), session, settings)
        assert exc_info.value.status_code == 404


class TestArchive:

    @pytest.mark.asyncio
    async def test_archive_is_idempotent(self, session, settings):
        org = await _create(session, settings)
        await archive_organization(org.id, session)
        first_archived_at = org.archived_at

        await archive_organization(org.id, session)
        assert org.status == OrganizationStatus.ARCHIVED.value
        assert org.archived_at == first_archived_at

    @pytest.mark.asyncio
    async def test_archive_missing_raises_not_found(self, session):
        with pytest.raises(NotFoundError):
            await archive_organization(uuid.uuid4(), session)
