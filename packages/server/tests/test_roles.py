"""
Tests for the role catalog and the template/override inheritance algorithm.
"""

from __future__ import annotations

import uuid

import pytest

from orgauthz.core.errors import ConflictError, NotFoundError, ValidationError, flush_or_conflict
from orgauthz.models.role import OrganizationRole, OrganizationRolePermission
from orgauthz.services.organizations import create_organization
from orgauthz.services.roles import (
    create_role,
    dedupe_permission_names,
    delete_role,
    get_role,
    get_role_permissions,
    list_roles,
    merge_permission_sets,
    update_role_permissions,
)
from orgauthz_shared.schemas.organizations import OrganizationCreateRequest
from orgauthz_shared.schemas.roles import RoleCreateRequest


@pytest.fixture
def make_org(session, settings):
    async def _make(slug: str, tenant_id=None):
        req = OrganizationCreateRequest(slug=slug, display_name=slug.title(), tenant_id=tenant_id)
        return await create_organization(req, session, settings)

    return _make


async def _role(session, settings, name, **kw):
    return await create_role(RoleCreateRequest(name=name, **kw), session, settings)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestMergePermissionSets:

    def test_effective_is_union(self):
        merged = merge_permission_sets(["x.read"], ["x.write"])
        assert merged.effective == ["x.read", "x.write"]
        assert merged.explicit == ["x.write"]

    def test_case_insensitive_dedup_and_sort(self):
        merged = merge_permission_sets(["B.read", "a.read", None], ["b.READ", " c.read ", ""])
        assert merged.explicit == ["b.READ", "c.read"]
        assert [n.lower() for n in merged.effective] == ["a.read", "b.read", "c.read"]

    def test_effective_contains_explicit(self):
        merged = merge_permission_sets([], ["z", "y"])
        assert set(merged.explicit) <= set(merged.effective)

    def test_dedupe_keeps_first_spelling(self):
        assert dedupe_permission_names(["Users.Read", "users.read", "  "]) == ["Users.Read"]


# ---------------------------------------------------------------------------
# Role CRUD
# ---------------------------------------------------------------------------

class TestCreateRole:

    @pytest.mark.asyncio
    async def test_tenant_inferred_from_organization(self, session, settings, make_org):
        tenant = uuid.uuid4()
        org = await make_org("acme", tenant)
        role = await _role(session, settings, "  Admin ", organization_id=org.id)
        assert role.name == "Admin"
        assert role.tenant_id == tenant
        assert not role.is_template

    @pytest.mark.asyncio
    async def test_tenant_disagreement_conflicts(self, session, settings, make_org):
        org = await make_org("acme", uuid.uuid4())
        with pytest.raises(ConflictError):
            await _role(session, settings, "Admin", organization_id=org.id, tenant_id=uuid.uuid4())

    @pytest.mark.asyncio
    async def test_missing_organization(self, session, settings):
        with pytest.raises(NotFoundError):
            await _role(session, settings, "Admin", organization_id=uuid.uuid4())

    @pytest.mark.asyncio
    async def test_name_validation(self, session, settings):
        with pytest.raises(ValidationError):
            await _role(session, settings, "   ")
        with pytest.raises(ValidationError):
            await _role(session, settings, "n" * (settings.role_name_max_length + 1))
        with pytest.raises(ValidationError):
            await _role(
                session, settings, "Admin", description="d" * (settings.role_description_max_length + 1)
            )

    @pytest.mark.asyncio
    async def test_name_unique_per_exact_scope(self, session, settings, make_org):
        tenant = uuid.uuid4()
        org = await make_org("acme", tenant)

        await _role(session, settings, "Manager")
        await _role(session, settings, "Manager", tenant_id=tenant)
        await _role(session, settings, "Manager", organization_id=org.id)

        with pytest.raises(ConflictError):
            await _role(session, settings, "Manager")
        with pytest.raises(ConflictError):
            await _role(session, settings, "Manager", tenant_id=tenant)

    @pytest.mark.asyncio
    async def test_store_rejects_duplicate_name_in_organization_scope(self, session, settings, make_org):
        org = await make_org("acme", uuid.uuid4())
        await _role(session, settings, "Manager", organization_id=org.id)

        session.add(OrganizationRole(organization_id=org.id, tenant_id=org.tenant_id, name="Manager"))
        with pytest.raises(ConflictError):
            await flush_or_conflict(session, "duplicate role")



class TestListAndDelete:

    @pytest.mark.asyncio
    async def test_list_templates_first_then_name(self, session, settings, make_org):
        tenant = uuid.uuid4()
        org = await make_org("acme", tenant)
        other = await make_org("globex", tenant)
        await _role(session, settings, "Zeta", organization_id=org.id)
        await _role(session, settings, "Alpha", organization_id=org.id)
        await _role(session, settings, "Template", tenant_id=tenant)
        await _role(session, settings, "Global")
        await _role(session, settings, "Foreign", organization_id=other.id)
        await _role(session, settings, "OtherTenant", tenant_id=uuid.uuid4())

        roles = await list_roles(tenant, org.id, session)
        assert [r.name for r in roles] == ["Global", "Template", "Alpha", "Zeta"]

        global_only = await list_roles(None, None, session)
        assert [r.name for r in global_only] == ["Global"]

    @pytest.mark.asyncio
    async def test_system_role_cannot_be_deleted(self, session, settings):
        role = await _role(session, settings, "Owner", is_system_role=True)
        with pytest.raises(ConflictError):
            await delete_role(role.id, session)
        assert await get_role(role.id, session) is not None

    @pytest.mark.asyncio
    async def test_delete_role_and_missing_role(self, session, settings):
        role = await _role(session, settings, "Temp")
        await delete_role(role.id, session)
        assert await get_role(role.id, session) is None
        await delete_role(uuid.uuid4(), session)


# ---------------------------------------------------------------------------
# Inheritance
# ---------------------------------------------------------------------------

class TestRolePermissions:

    @pytest.mark.asyncio
    async def test_template_baseline_with_organization_override(
        self, session, settings, catalog, make_org, make_permissions
    ):
        tenant = uuid.uuid4()
        acme = await make_org("acme", tenant)
        perms = await make_permissions("x.read", "x.write")
        manager = await _role(session, settings, "Manager")
        session.add(OrganizationRolePermission(role_id=manager.id, permission_id=perms["x.read"].id))
        await session.flush()

        await update_role_permissions(manager.id, acme.id, ["x.write"], session, catalog)

        result = await get_role_permissions(manager.id, acme.id, session, catalog)
        assert result.effective == ["x.read", "x.write"]
        assert result.explicit == ["x.write"]

    @pytest.mark.asyncio
    async def test_override_does_not_leak_to_other_organizations(
        self, session, settings, catalog, make_org, make_permissions
    ):
        tenant = uuid.uuid4()
        acme = await make_org("acme", tenant)
        globex = await make_org("globex", tenant)
        perms = await make_permissions("x.read", "x.write")
        manager = await _role(session, settings, "Manager")
        session.add(OrganizationRolePermission(role_id=manager.id, permission_id=perms["x.read"].id))
        await session.flush()
        await update_role_permissions(manager.id, acme.id, ["x.write"], session, catalog)

        result = await get_role_permissions(manager.id, globex.id, session, catalog)
        assert result.effective == ["x.read"]
        assert result.explicit == []

    @pytest.mark.asyncio
    async def test_grants_of_other_tenant_are_invisible(
        self, session, settings, catalog, make_org, make_permissions
    ):
        acme = await make_org("acme", uuid.uuid4())
        perms = await make_permissions("x.read", "x.secret")
        manager = await _role(session, settings, "Manager")
        session.add_all([
            OrganizationRolePermission(role_id=manager.id, permission_id=perms["x.read"].id),
            OrganizationRolePermission(
                role_id=manager.id, permission_id=perms["x.secret"].id, tenant_id=uuid.uuid4()
            ),
        ])
        await session.flush()

        result = await get_role_permissions(manager.id, acme.id, session, catalog)
        assert result.effective == ["x.read"]

    @pytest.mark.asyncio
    async def test_organization_role_has_no_baseline(
        self, session, settings, catalog, make_org, make_permissions
    ):
        acme = await make_org("acme")
        await make_permissions("a", "b")
        role = await _role(session, settings, "Local", organization_id=acme.id)
        await update_role_permissions(role.id, acme.id, ["a", "b"], session, catalog)

        result = await get_role_permissions(role.id, acme.id, session, catalog)
        assert result.effective == result.explicit == ["a", "b"]

    @pytest.mark.asyncio
    async def test_update_round_trip_and_delta(self, session, settings, catalog, make_org, make_permissions):
        acme = await make_org("acme")
        await make_permissions("users.read", "users.write", "billing.read")
        role = await _role(session, settings, "Manager")

        names = ["users.write", "USERS.WRITE", " users.read ", "billing.read"]
        await update_role_permissions(role.id, acme.id, names, session, catalog)
        result = await get_role_permissions(role.id, acme.id, session, catalog)
        assert result.explicit == dedupe_permission_names(names)

        await update_role_permissions(role.id, acme.id, ["users.read"], session, catalog)
        result = await get_role_permissions(role.id, acme.id, session, catalog)
        assert result.explicit == ["users.read"]

        await update_role_permissions(role.id, acme.id, [], session, catalog)
        result = await get_role_permissions(role.id, acme.id, session, catalog)
        assert result.explicit == []

    @pytest.mark.asyncio
    async def test_unknown_permission_rejects_whole_update(
        self, session, settings, catalog, make_org, make_permissions
    ):
        acme = await make_org("acme")
        await make_permissions("users.read")
        role = await _role(session, settings, "Manager")

        with pytest.raises(NotFoundError) as exc_info:
            await update_role_permissions(role.id, acme.id, ["users.read", "nope"], session, catalog)
        assert "nope" in exc_info.value.detail

        result = await get_role_permissions(role.id, acme.id, session, catalog)
        assert result.explicit == []

    @pytest.mark.asyncio
    async def test_role_of_other_organization_cannot_be_customized(
        self, session, settings, catalog, make_org
    ):
        acme = await make_org("acme")
        globex = await make_org("globex")
        role = await _role(session, settings, "Local", organization_id=globex.id)
        with pytest.raises(ConflictError):
            await update_role_permissions(role.id, acme.id, [], session, catalog)

    @pytest.mark.asyncio
    async def test_stale_permission_ids_are_dropped(self, session, settings, catalog, make_org):
        acme = await make_org("acme")
        role = await _role(session, settings, "Manager")
        session.add(
            OrganizationRolePermission(role_id=role.id, permission_id=uuid.uuid4(), organization_id=acme.id)
        )
        await session.flush()

        result = await get_role_permissions(role.id, acme.id, session, catalog)
        assert result.effective == []
        assert result.explicit == []

    @pytest.mark.asyncio
    async def test_missing_role_or_organization(self, session, settings, catalog, make_org):
        acme = await make_org("acme")
        role = await _role(session, settings, "Manager")
        with pytest.raises(NotFoundError):
            await get_role_permissions(uuid.uuid4(), acme.id, session, catalog)
        with pytest.raises(NotFoundError):
            await get_role_permissions(role.id, uuid.uuid4(), session, catalog)
