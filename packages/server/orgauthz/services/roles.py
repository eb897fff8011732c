"""
Organization role catalog: role CRUD and scoped permission grants.

A role with ``organization_id=None`` is a template usable by every organization
in its tenant. Its grants at its own scope form the *baseline*; grants made at
some organization's scope are that organization's *explicit* overrides. The
effective set an organization sees is the union of the two.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection, Iterable
from typing import Optional

import structlog
from sqlalchemy import case, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgauthz.core.config import Settings, get_settings
from orgauthz.core.errors import ConflictError, NotFoundError, ValidationError, flush_or_conflict
from orgauthz.models.organization import Organization
from orgauthz.models.role import OrganizationRole, OrganizationRolePermission
from orgauthz.ports import PermissionCatalog
from orgauthz.services.organizations import require_organization

from orgauthz_shared.schemas.roles import RoleCreateRequest, RolePermissionSet

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def dedupe_permission_names(names: Iterable[Optional[str]]) -> list[str]:
    """Trim, drop blanks, de-duplicate case-insensitively and sort.

    The first spelling seen for a name wins.
    """
    seen: dict[str, str] = {}
    for name in names:
        if not name or not name.strip():
            continue
        name = name.strip()
        seen.setdefault(name.lower(), name)
    return sorted(seen.values(), key=lambda n: (n.lower(), n))


def merge_permission_sets(
    baseline: Iterable[Optional[str]], explicit: Iterable[Optional[str]]
) -> RolePermissionSet:
    """Combine inherited and organization-level grants.

    Args:
        baseline: Names granted at the role's own scope. Empty when the role
            belongs to the queried organization itself.
        explicit: Names granted at the queried organization's scope.

    Returns:
        ``effective`` is baseline ∪ explicit; ``explicit`` is passed through.
        Both are normalized with :func:`dedupe_permission_names`.
    """
    explicit = dedupe_permission_names(explicit)
    effective = dedupe_permission_names([*baseline, *explicit])
    return RolePermissionSet(effective=effective, explicit=explicit)


def tenant_visible(column, tenant_id: Optional[uuid.UUID]):
    """Rows with no tenant are global; otherwise the tenant must match exactly."""
    if tenant_id is not None:
        return or_(column.is_(None), column == tenant_id)
    return column.is_(None)


def _same_scope(column, value: Optional[uuid.UUID]):
    """Exact scope match; ``None`` is its own scope value, not a wildcard."""
    if value is None:
        return column.is_(None)
    return column == value


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

async def get_role(role_id: uuid.UUID, session: AsyncSession) -> Optional[OrganizationRole]:
    result = await session.execute(select(OrganizationRole).where(OrganizationRole.id == role_id))
    return result.scalar_one_or_none()


async def list_roles(
    tenant_id: Optional[uuid.UUID],
    organization_id: Optional[uuid.UUID],
    session: AsyncSession,
) -> list[OrganizationRole]:
    """Roles visible to a tenant; narrowed to one organization plus templates when given."""
    stmt = select(OrganizationRole).where(tenant_visible(OrganizationRole.tenant_id, tenant_id))
    if organization_id is not None:
        stmt = stmt.where(
            or_(
                OrganizationRole.organization_id == organization_id,
                OrganizationRole.organization_id.is_(None),
            )
        )
    stmt = stmt.order_by(
        case((OrganizationRole.organization_id.is_(None), 0), else_=1),
        OrganizationRole.name,
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_role(
    req: RoleCreateRequest,
    session: AsyncSession,
    settings: Optional[Settings] = None,
) -> OrganizationRole:
    settings = settings or get_settings()

    if not req.name or not req.name.strip():
        raise ValidationError("Role name is required")
    name = req.name.strip()
    if len(name) > settings.role_name_max_length:
        raise ValidationError(f"Role name cannot exceed {settings.role_name_max_length} characters")
    if req.description and len(req.description) > settings.role_description_max_length:
        raise ValidationError(
            f"Role description cannot exceed {settings.role_description_max_length} characters"
        )

    tenant_id = req.tenant_id
    if req.organization_id is not None:
        org = await require_organization(req.organization_id, session)
        if tenant_id is not None and org.tenant_id is not None and tenant_id != org.tenant_id:
            raise ConflictError("Role tenant does not match the organization tenant")
        tenant_id = tenant_id or org.tenant_id

    existing = await session.execute(
        select(OrganizationRole.id)
        .where(
            OrganizationRole.name == name,
            _same_scope(OrganizationRole.tenant_id, tenant_id),
            _same_scope(OrganizationRole.organization_id, req.organization_id),
        )
        .limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"A role named '{name}' already exists in this scope")

    role = OrganizationRole(
        organization_id=req.organization_id,
        tenant_id=tenant_id,
        name=name,
        description=req.description,
        is_system_role=req.is_system_role,
    )
    session.add(role)
    await flush_or_conflict(session, f"A role named '{name}' already exists in this scope")

    log.info(
        "role.created",
        role_id=str(role.id),
        name=name,
        org_id=str(req.organization_id),
        tenant_id=str(tenant_id),
    )
    return role


async def delete_role(role_id: uuid.UUID, session: AsyncSession) -> None:
    """Delete a non-system role and its grants. Missing roles are ignored.

    Assignments referencing the role are left in place; permission resolution
    skips them because no grant rows remain for the role.
    """
    role = await get_role(role_id, session)
    if role is None:
        return
    if role.is_system_role:
        raise ConflictError("System roles cannot be deleted")

    await session.execute(
        delete(OrganizationRolePermission).where(OrganizationRolePermission.role_id == role_id)
    )
    await session.delete(role)
    await session.flush()

    log.info("role.deleted", role_id=str(role_id))


async def ensure_roles_assignable(
    role_ids: Collection[uuid.UUID], org: Organization, session: AsyncSession
) -> list[OrganizationRole]:
    """Load every role and check it may be granted inside ``org``.

    Raises:
        NotFoundError: a role id does not exist; nothing is written.
        ConflictError: a role is scoped to another organization or tenant.
    """
    if not role_ids:
        return []

    result = await session.execute(
        select(OrganizationRole).where(OrganizationRole.id.in_(list(role_ids)))
    )
    roles = list(result.scalars().all())
    if len(roles) != len(set(role_ids)):
        missing = set(role_ids) - {role.id for role in roles}
        raise NotFoundError(
            "One or more roles could not be found: " + ", ".join(sorted(str(r) for r in missing))
        )

    for role in roles:
        if not role.is_template and role.organization_id != org.id:
            raise ConflictError(f"Role {role.id} does not belong to organization {org.id}")
        if (
            org.tenant_id is not None
            and role.tenant_id is not None
            and role.tenant_id != org.tenant_id
        ):
            raise ConflictError(f"Role {role.id} does not belong to the tenant for this organization")
    return roles


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------

async def _resolve_names(
    permission_ids: set[uuid.UUID], catalog: PermissionCatalog, role_id: uuid.UUID
) -> dict[uuid.UUID, str]:
    names = await catalog.get_names(permission_ids)
    stale = permission_ids - names.keys()
    if stale:
        log.warning(
            "role.permissions.stale_ids",
            role_id=str(role_id),
            permission_ids=sorted(str(p) for p in stale),
        )
    return names


async def get_role_permissions(
    role_id: uuid.UUID,
    organization_id: uuid.UUID,
    session: AsyncSession,
    catalog: PermissionCatalog,
) -> RolePermissionSet:
    """What ``role_id`` grants inside ``organization_id``.

    Only grants visible to the organization's tenant are considered. Grants
    at the organization's own scope are explicit; when the role is owned by a
    different scope (a template, typically), grants at that scope are the
    inherited baseline.
    """
    role = await get_role(role_id, session)
    if role is None:
        raise NotFoundError(f"Organization role {role_id} was not found")
    org = await require_organization(organization_id, session)

    tenant_id = org.tenant_id or role.tenant_id
    visible = select(OrganizationRolePermission).where(
        OrganizationRolePermission.role_id == role.id,
        tenant_visible(OrganizationRolePermission.tenant_id, tenant_id),
    )

    result = await session.execute(
        visible.where(OrganizationRolePermission.organization_id == org.id)
    )
    explicit_ids = {row.permission_id for row in result.scalars().all()}

    baseline_ids: set[uuid.UUID] = set()
    if role.organization_id != org.id:
        result = await session.execute(
            visible.where(_same_scope(OrganizationRolePermission.organization_id, role.organization_id))
        )
        baseline_ids = {row.permission_id for row in result.scalars().all()}

    names = await _resolve_names(baseline_ids | explicit_ids, catalog, role.id)
    return merge_permission_sets(
        baseline=(names.get(p) for p in baseline_ids),
        explicit=(names.get(p) for p in explicit_ids),
    )


async def update_role_permissions(
    role_id: uuid.UUID,
    organization_id: uuid.UUID,
    permission_names: Iterable[str],
    session: AsyncSession,
    catalog: PermissionCatalog,
) -> None:
    """Replace the grants made at exactly (role, organization) with ``permission_names``.

    Every name must exist in the catalog or nothing is written. Only the
    added and removed rows are touched.
    """
    org = await require_organization(organization_id, session)
    role = await get_role(role_id, session)
    if role is None:
        raise NotFoundError(f"Organization role {role_id} was not found")
    if role.organization_id is not None and role.organization_id != org.id:
        raise ConflictError("Role does not belong to the specified organization scope")

    desired_names = dedupe_permission_names(permission_names)
    desired_ids: set[uuid.UUID] = set()
    if desired_names:
        lookup = await catalog.get_ids(desired_names)
        missing = [name for name in desired_names if name.lower() not in lookup]
        if missing:
            raise NotFoundError(f"Unknown permissions: {', '.join(missing)}")
        desired_ids = {lookup[name.lower()] for name in desired_names}

    result = await session.execute(
        select(OrganizationRolePermission).where(
            OrganizationRolePermission.role_id == role.id,
            OrganizationRolePermission.organization_id == org.id,
        )
    )
    existing = {row.permission_id: row for row in result.scalars().all()}

    removed = existing.keys() - desired_ids
    added = desired_ids - existing.keys()
    if not removed and not added:
        return

    for permission_id in removed:
        await session.delete(existing[permission_id])

    tenant_id = org.tenant_id or role.tenant_id
    for permission_id in added:
        session.add(
            OrganizationRolePermission(
                role_id=role.id,
                permission_id=permission_id,
                organization_id=org.id,
                tenant_id=tenant_id,
            )
        )
    await flush_or_conflict(session, "Role permissions were modified concurrently")

    log.info(
        "role.permissions.updated",
        role_id=str(role.id),
        org_id=str(org.id),
        added=len(added),
        removed=len(removed),
    )
