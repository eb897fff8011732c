"""
Permission resolution: what a user may do, globally and inside one organization.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgauthz.models.membership import OrganizationMembership, OrganizationRoleAssignment
from orgauthz.models.role import OrganizationRolePermission
from orgauthz.ports import NullRoleAssignmentService, PermissionCatalog, RoleAssignmentService
from orgauthz.services.roles import dedupe_permission_names, tenant_visible

log = structlog.get_logger()


async def is_in_scope(
    user_id: Optional[uuid.UUID],
    organization_id: Optional[uuid.UUID],
    session: AsyncSession,
) -> bool:
    """Whether ``user_id`` may act inside ``organization_id``.

    No organization means no scope restriction; otherwise the user must be a member.
    """
    if user_id is None:
        return False
    if organization_id is None:
        return True
    result = await session.execute(
        select(OrganizationMembership.user_id).where(
            OrganizationMembership.organization_id == organization_id,
            OrganizationMembership.user_id == user_id,
        )
    )
    return result.first() is not None


class OrganizationPermissionResolver:
    """Aggregates global RBAC permissions with organization role grants.

    Unlike :func:`orgauthz.services.roles.get_role_permissions`, which answers
    what a role *defines*, this answers what a user's role *assignments*
    grant. Both apply the same null-or-exact visibility to tenant and
    organization.
    """

    def __init__(
        self,
        session: AsyncSession,
        role_assignments: Optional[RoleAssignmentService] = None,
        catalog: Optional[PermissionCatalog] = None,
    ):
        self._session = session
        self._role_assignments = role_assignments or NullRoleAssignmentService()
        # None puts organization resolution in degraded mode
        self._catalog = catalog

    async def get_permissions(
        self, organization_id: Optional[uuid.UUID], user_id: Optional[uuid.UUID]
    ) -> list[str]:
        if user_id is None:
            return []

        permissions = list(await self._role_assignments.get_effective_permissions(user_id))
        if organization_id is not None:
            permissions.extend(await self.get_organization_permissions(organization_id, user_id))
        return dedupe_permission_names(permissions)

    async def get_organization_permissions(
        self, organization_id: Optional[uuid.UUID], user_id: Optional[uuid.UUID]
    ) -> list[str]:
        if organization_id is None or user_id is None:
            return []

        result = await self._session.execute(
            select(OrganizationMembership.tenant_id).where(
                OrganizationMembership.organization_id == organization_id,
                OrganizationMembership.user_id == user_id,
            )
        )
        membership = result.first()
        if membership is None:
            return []
        tenant_id = membership.tenant_id

        result = await self._session.execute(
            select(OrganizationRoleAssignment.role_id).where(
                OrganizationRoleAssignment.organization_id == organization_id,
                OrganizationRoleAssignment.user_id == user_id,
            )
        )
        role_ids = set(result.scalars().all())
        if not role_ids:
            return []

        # Assignments to deleted roles have no grant rows left and drop out here
        result = await self._session.execute(
            select(OrganizationRolePermission.permission_id)
            .where(
                OrganizationRolePermission.role_id.in_(list(role_ids)),
                or_(
                    OrganizationRolePermission.organization_id.is_(None),
                    OrganizationRolePermission.organization_id == organization_id,
                ),
                tenant_visible(OrganizationRolePermission.tenant_id, tenant_id),
            )
            .distinct()
        )
        permission_ids = set(result.scalars().all())
        if not permission_ids:
            return []

        if self._catalog is None:
            log.warning(
                "permissions.catalog_unavailable",
                org_id=str(organization_id),
                user_id=str(user_id),
            )
            return []

        names = await self._catalog.get_names(permission_ids)
        return dedupe_permission_names(names.values())
