"""
Membership service: add/update/remove members, primary exclusivity, member and
user-organization listings.
"""

from __future__ import annotations

import math
import uuid
from typing import Optional

import structlog
from sqlalchemy import delete, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgauthz.core.config import Settings, get_settings
from orgauthz.core.errors import ConflictError, NotFoundError, flush_or_conflict
from orgauthz.models.base import utcnow
from orgauthz.models.membership import OrganizationMembership, OrganizationRoleAssignment
from orgauthz.models.organization import Organization
from orgauthz.ports import OrganizationLifecycleEvent, UserDirectory
from orgauthz.services.lifecycle import NULL_LIFECYCLE, OrganizationLifecycleDispatcher, lifecycle_context
from orgauthz.services.organizations import require_organization
from orgauthz.services.paging import (
    LIKE_ESCAPE,
    build_ordering,
    create_search_pattern,
    normalize_paging,
    parse_sorts,
)
from orgauthz.services.roles import ensure_roles_assignable

from orgauthz_shared.schemas.memberships import (
    MemberListItem,
    MemberListRequest,
    MemberListResult,
    MemberSort,
    MembershipCreateRequest,
    MembershipResponse,
    MembershipUpdateRequest,
    UserOrganizationListRequest,
    UserOrganizationListResult,
    UserOrganizationMembership,
)
from orgauthz_shared.schemas.organizations import OrganizationStatus

log = structlog.get_logger()


async def _role_ids(
    organization_id: uuid.UUID, user_id: uuid.UUID, session: AsyncSession
) -> list[uuid.UUID]:
    result = await session.execute(
        select(OrganizationRoleAssignment.role_id).where(
            OrganizationRoleAssignment.organization_id == organization_id,
            OrganizationRoleAssignment.user_id == user_id,
        )
    )
    return list(result.scalars().all())


async def _role_ids_by_user(
    organization_id: uuid.UUID, user_ids: list[uuid.UUID], session: AsyncSession
) -> dict[uuid.UUID, list[uuid.UUID]]:
    if not user_ids:
        return {}
    result = await session.execute(
        select(OrganizationRoleAssignment.user_id, OrganizationRoleAssignment.role_id).where(
            OrganizationRoleAssignment.organization_id == organization_id,
            OrganizationRoleAssignment.user_id.in_(user_ids),
        )
    )
    by_user: dict[uuid.UUID, list[uuid.UUID]] = {}
    for user_id, role_id in result.all():
        by_user.setdefault(user_id, []).append(role_id)
    return by_user


async def _role_ids_by_organization(
    user_id: uuid.UUID, organization_ids: list[uuid.UUID], session: AsyncSession
) -> dict[uuid.UUID, list[uuid.UUID]]:
    if not organization_ids:
        return {}
    result = await session.execute(
        select(OrganizationRoleAssignment.organization_id, OrganizationRoleAssignment.role_id).where(
            OrganizationRoleAssignment.user_id == user_id,
            OrganizationRoleAssignment.organization_id.in_(organization_ids),
        )
    )
    by_org: dict[uuid.UUID, list[uuid.UUID]] = {}
    for organization_id, role_id in result.all():
        by_org.setdefault(organization_id, []).append(role_id)
    return by_org


def _to_response(
membership: OrganizationMembership, role_ids: list[uuid.UUID]) -> MembershipResponse:
    return MembershipResponse(
        organization_id=membership.organization_id,
        user_id=membership.user_id,
        tenant_id=membership.tenant_id,
        is_primary=membership.is_primary,
        role_ids=role_ids,
        created_at=membership.created_at,
        updated_at=membership.updated_at,
    )


async def _get_membership_row(
    organization_id: uuid.UUID, user_id: uuid.UUID, session: AsyncSession
) -> Optional[OrganizationMembership]:
    result = await session.execute(
        select(OrganizationMembership).where(
            OrganizationMembership.organization_id == organization_id,
            OrganizationMembership.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def _clear_primary(
    user_id: uuid.UUID, tenant_id: Optional[uuid.UUID], session: AsyncSession
) -> None:
    """Drop the primary flag from the user's memberships in ``tenant_id``.

    With no tenant, every primary membership of the user is cleared.
    """
    stmt = (
        update(OrganizationMembership)
        .where(
            OrganizationMembership.user_id == user_id,
            OrganizationMembership.is_primary.is_(True),
        )
        .values(is_primary=False, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    if tenant_id is not None:
        stmt = stmt.where(OrganizationMembership.tenant_id == tenant_id)
    await session.execute(stmt)
    # The new primary row must not be flushed before the old flags are cleared
    await session.flush()


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def add_member(
    req: MembershipCreateRequest,
    session: AsyncSession,
    lifecycle: Optional[OrganizationLifecycleDispatcher] = None,
) -> MembershipResponse:
    """Create a membership together with its role assignments.

    Raises:
        NotFoundError: organization or a role is missing.
        ConflictError: tenant mismatch, existing membership, or a role scoped elsewhere.
        LifecycleHookRejectedError: a listener vetoed the addition.
    """
    lifecycle = lifecycle or NULL_LIFECYCLE
    org = await require_organization(req.organization_id, session)

    if org.tenant_id is not None and req.tenant_id is not None and org.tenant_id != req.tenant_id:
        raise ConflictError("Organization tenant does not match the requested tenant")

    if await _get_membership_row(org.id, req.user_id, session) is not None:
        raise ConflictError("User is already a member of the organization")

    role_ids = list(dict.fromkeys(req.role_ids))
    roles = await ensure_roles_assignable(role_ids, org, session)

    context = lifecycle_context(
        OrganizationLifecycleEvent.MEMBER_ADDED,
        org,
        user_id=req.user_id,
        role_ids=[role.id for role in roles],
    )
    await lifecycle.ensure_allowed(context)

    if req.is_primary:
        await _clear_primary(req.user_id, org.tenant_id, session)

    membership = OrganizationMembership(
        organization_id=org.id,
        user_id=req.user_id,
        tenant_id=org.tenant_id,
        is_primary=req.is_primary,
    )
    session.add(membership)
    for role in roles:
        session.add(
            OrganizationRoleAssignment(
                organization_id=org.id,
                user_id=req.user_id,
                role_id=role.id,
                tenant_id=org.tenant_id,
            )
        )
    await flush_or_conflict(session, "User is already a member of the organization")

    log.info(
        "membership.created",
        org_id=str(org.id),
        user_id=str(req.user_id),
        is_primary=req.is_primary,
        role_count=len(roles),
    )
    await lifecycle.notify(context)
    return _to_response(membership, [role.id for role in roles])


async def get_membership(
    organization_id: uuid.UUID, user_id: uuid.UUID, session: AsyncSession
) -> Optional[MembershipResponse]:
    membership = await _get_membership_row(organization_id, user_id, session)
    if membership is None:
        return None
    return _to_response(membership, await _role_ids(organization_id, user_id, session))


async def get_memberships_for_user(
    user_id: uuid.UUID, tenant_id: Optional[uuid.UUID], session: AsyncSession
) -> list[MembershipResponse]:
    """All memberships of a user, primary first. A tenant narrows the result."""
    stmt = select(OrganizationMembership).where(OrganizationMembership.user_id == user_id)
    if tenant_id is not None:
        stmt = stmt.where(OrganizationMembership.tenant_id == tenant_id)
    stmt = stmt.order_by(
        OrganizationMembership.is_primary.desc(), OrganizationMembership.organization_id
    )
    result = await session.execute(stmt)
    memberships = list(result.scalars().all())

    responses = []
    for membership in memberships:
        role_ids = await _role_ids(membership.organization_id, user_id, session)
        responses.append(_to_response(membership, role_ids))
    return responses


async def get_members(
    req: MemberListRequest,
    session: AsyncSession,
    directory: UserDirectory,
    settings: Optional[Settings] = None,
) -> MemberListResult:
    """Page through an organization's members.

    Search text is matched literally against email, display name and
    username via ``directory``. Pages past the end clamp to the last page.
    """
    settings = settings or get_settings()

    page, page_size = normalize_paging(req.page, req.page_size, settings)

    conditions = [OrganizationMembership.organization_id == req.organization_id]
    if req.is_primary is not None:
        conditions.append(OrganizationMembership.is_primary == req.is_primary)
    if req.role_id is not None:
        conditions.append(
            OrganizationMembership.user_id.in_(
                select(OrganizationRoleAssignment.user_id).where(
                    OrganizationRoleAssignment.organization_id == req.organization_id,
                    OrganizationRoleAssignment.role_id == req.role_id,
                )
            )
        )

    if req.search and req.search.strip():
        user_ids = await directory.search_user_ids(create_search_pattern(req.search))
        if not user_ids:
            return MemberListResult.empty(page, page_size)
        conditions.append(OrganizationMembership.user_id.in_(user_ids))

    count_result = await session.execute(
        select(func.count()).select_from(OrganizationMembership).where(*conditions)
    )
    total_count = count_result.scalar_one()
    if total_count == 0:
        return MemberListResult.empty(page, page_size)

    max_page = math.ceil(total_count / page_size)
    page = min(page, max_page)

    if req.sort == MemberSort.CREATED_AT_ASC:
        order = (
            OrganizationMembership.is_primary.asc(),
            OrganizationMembership.created_at.asc(),
            OrganizationMembership.user_id,
        )
    else:
        order = (
            OrganizationMembership.is_primary.desc(),
            OrganizationMembership.created_at.desc(),
            OrganizationMembership.user_id,
        )

    result = await session.execute(
        select(OrganizationMembership)
        .where(*conditions)
        .order_by(*order)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    memberships = list(result.scalars().all())

    user_ids = [m.user_id for m in memberships]
    roles_by_user = await _role_ids_by_user(req.organization_id, user_ids, session)
    users = await directory.get_users(user_ids)

    members = []
    for membership in memberships:
        user = users.get(membership.user_id)
        members.append(
            MemberListItem(
                **_to_response(membership, roles_by_user.get(membership.user_id, [])).model_dump(),
                email=user.email if user else None,
                display_name=user.display_name if user else None,
            )
        )

    log.debug(
        "membership.listed",
        org_id=str(req.organization_id),
        count=len(members),
        page=page,
        total_pages=max_page,
    )
    return MemberListResult(page=page, page_size=page_size, total_count=total_count, members=members)


async def get_user_organizations(
    req: UserOrganizationListRequest,
    session: AsyncSession,
    settings: Optional[Settings] = None,
) -> UserOrganizationListResult:
    """Page through the organizations a user belongs to.

    Archived organizations are skipped unless ``include_archived``. Search
    matches display name or slug literally. Sortable fields are
    ``display_name``, ``slug`` and ``created_at`` (membership creation);
    display name then organization id break ties. Pages past the end are empty.
    """
    settings = settings or get_settings()
    page, page_size = normalize_paging(req.page, req.page_size, settings)

    conditions = [OrganizationMembership.user_id == req.user_id]
    if req.tenant_id is not None:
        conditions.append(OrganizationMembership.tenant_id == req.tenant_id)
    if not req.include_archived:
        conditions.append(Organization.status != OrganizationStatus.ARCHIVED.value)
    if req.search and req.search.strip():
        pattern = create_search_pattern(req.search)
        conditions.append(
            or_(
                Organization.display_name.ilike(pattern, escape=LIKE_ESCAPE),
                Organization.slug.ilike(pattern, escape=LIKE_ESCAPE),
            )
        )
    joined = Organization.id == OrganizationMembership.organization_id

    count_result = await session.execute(
        select(func.count())
        .select_from(OrganizationMembership)
        .join(Organization, joined)
        .where(*conditions)
    )
    total_count = count_result.scalar_one()
    if total_count == 0:
        return UserOrganizationListResult.empty(page, page_size)

    order = build_ordering(
        parse_sorts(req.sort),
        {
            "displayname": Organization.display_name,
            "slug": Organization.slug,
            "createdat": OrganizationMembership.created_at,
        },
        default=[],
        tiebreak=[Organization.display_name, OrganizationMembership.organization_id],
    )
    result = await session.execute(
        select(OrganizationMembership, Organization)
        .join(Organization, joined)
        .where(*conditions)
        .order_by(*order)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    rows = result.all()

    roles_by_org = await _role_ids_by_organization(
        req.user_id, [membership.organization_id for membership, _ in rows], session
    )
    items = [
        UserOrganizationMembership(
            organization_id=membership.organization_id,
            tenant_id=membership.tenant_id,
            slug=org.slug,
            display_name=org.display_name,
            status=org.status,
            is_primary=membership.is_primary,
            role_ids=roles_by_org.get(membership.organization_id, []),
            created_at=membership.created_at,
            updated_at=membership.updated_at,
        )
        for membership, org in rows
    ]
    return UserOrganizationListResult(
        page=page, page_size=page_size, total_count=total_count, items=items
    )


async def update_membership(
    req: MembershipUpdateRequest,
    session: AsyncSession,
    lifecycle: Optional[OrganizationLifecycleDispatcher] = None,
) -> MembershipResponse:
    """Reconcile primary flag and role set. Nothing is written when nothing changes.

    Every check runs before the first write, so a rejected update leaves the
    user's other memberships untouched.
    """
    membership = await _get_membership_row(req.organization_id, req.user_id, session)
    if membership is None:
        raise NotFoundError("Membership not found")
    org = await require_organization(req.organization_id, session)

    current_role_ids = await _role_ids(org.id, req.user_id, session)
    existing = set(current_role_ids)
    desired = existing if req.role_ids is None else set(req.role_ids)

    primary_changed = req.is_primary is not None and req.is_primary != membership.is_primary
    roles_changed = desired != existing
    if not primary_changed and not roles_changed:
        return _to_response(membership, current_role_ids)

    if roles_changed:
        await ensure_roles_assignable(desired, org, session)
    role_ids = list(dict.fromkeys(req.role_ids)) if roles_changed else current_role_ids

    lifecycle = lifecycle or NULL_LIFECYCLE
    context = lifecycle_context(
        OrganizationLifecycleEvent.MEMBERSHIP_UPDATED,
        org,
        user_id=req.user_id,
        role_ids=role_ids,
    )
    await lifecycle.ensure_allowed(context)

    if primary_changed:
        if req.is_primary:
            await _clear_primary(req.user_id, org.tenant_id, session)
        membership.is_primary = req.is_primary

    if roles_changed:
        removed = existing - desired
        if removed:
            await session.execute(
                delete(OrganizationRoleAssignment).where(
                    OrganizationRoleAssignment.organization_id == org.id,
                    OrganizationRoleAssignment.user_id == req.user_id,
                    OrganizationRoleAssignment.role_id.in_(list(removed)),
                )
            )
        for role_id in desired - existing:
            session.add(
                OrganizationRoleAssignment(
                    organization_id=org.id,
                    user_id=req.user_id,
                    role_id=role_id,
                    tenant_id=org.tenant_id,
                )
            )

    membership.updated_at = utcnow()
    session.add(membership)
    await flush_or_conflict(session, "Membership was modified concurrently")

    log.info("membership.updated", org_id=str(org.id), user_id=str(req.user_id))
    await lifecycle.notify(context)
    return _to_response(membership, role_ids)


async def remove_member(
    organization_id: uuid.UUID,
    user_id: uuid.UUID,
    session: AsyncSession,
    lifecycle: Optional[OrganizationLifecycleDispatcher] = None,
) -> None:
    """Remove a membership and its role assignments. Missing memberships are ignored."""
    membership = await _get_membership_row(organization_id, user_id, session)
    if membership is None:
        return
    org = await require_organization(organization_id, session)
    role_ids = await _role_ids(organization_id, user_id, session)

    await session.execute(
        delete(OrganizationRoleAssignment).where(
            OrganizationRoleAssignment.organization_id == organization_id,
            OrganizationRoleAssignment.user_id == user_id,
        )
    )
    await session.delete(membership)
    await session.flush()

    log.info("membership.removed", org_id=str(organization_id), user_id=str(user_id))
    await (lifecycle or NULL_LIFECYCLE).notify(
        lifecycle_context(
            OrganizationLifecycleEvent.MEMBERSHIP_REVOKED, org, user_id=user_id, role_ids=role_ids
        )
    )
