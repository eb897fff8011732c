"""
Invitation service: create, accept, revoke, find, list.

An invitation is single-use: accepting or revoking deletes it. Expired
invitations are treated as absent and purged lazily whenever they are looked
up; nothing sweeps them on a schedule.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgauthz.core.config import Settings, get_settings
from orgauthz.core.errors import (
    InvitationAlreadyExistsError,
    InvitationEmailMismatchError,
    ValidationError,
)
from orgauthz.models.base import ensure_utc, utcnow
from orgauthz.models.invitation import OrganizationInvitation
from orgauthz.models.user import User
from orgauthz.ports import OrganizationLifecycleContext, OrganizationLifecycleEvent
from orgauthz.services.lifecycle import NULL_LIFECYCLE, OrganizationLifecycleDispatcher, lifecycle_context
from orgauthz.services.memberships import add_member, get_membership, update_membership
from orgauthz.services.organizations import get_organization, require_organization
from orgauthz.services.roles import ensure_roles_assignable

from orgauthz_shared.schemas.invitations import InvitationAcceptanceResult, InvitationCreateRequest
from orgauthz_shared.schemas.memberships import MembershipCreateRequest, MembershipUpdateRequest

log = structlog.get_logger()


def redact_email(email: Optional[str]) -> str:
    """``alice@example.com`` -> ``a***@example.com``."""
    if not email:
        return ""
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def normalize_email(email: Optional[str]) -> str:
    if not email or not email.strip():
        raise ValidationError("Email is required")
    return email.strip().lower()


def resolve_lifetime(expires_in_hours: Optional[int], settings: Settings) -> timedelta:
    if expires_in_hours is None:
        return timedelta(hours=settings.invitation_default_lifetime_hours)
    hours = max(0, expires_in_hours)
    hours = max(settings.invitation_min_lifetime_hours, min(hours, settings.invitation_max_lifetime_hours))
    return timedelta(hours=hours)


def is_expired(invitation: OrganizationInvitation) -> bool:
    return ensure_utc(invitation.expires_at) <= utcnow()


async def _purge(invitation: OrganizationInvitation, session: AsyncSession) -> None:
    await session.delete(invitation)
    await session.flush()
    log.info(
        "invitation.expired",
        code=str(invitation.code),
        org_id=str(invitation.organization_id),
    )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def create_invitation(
    req: InvitationCreateRequest,
    session: AsyncSession,
    settings: Optional[Settings] = None,
    lifecycle: Optional[OrganizationLifecycleDispatcher] = None,
) -> OrganizationInvitation:
    """Invite an address into an organization with a set of roles.

    Raises:
        NotFoundError: organization or a role is missing.
        ConflictError: a role is scoped to another organization or tenant.
        InvitationAlreadyExistsError: an unexpired invitation exists for the address.
        LifecycleHookRejectedError: a listener vetoed the invitation.
    """
    settings = settings or get_settings()
    lifecycle = lifecycle or NULL_LIFECYCLE

    org = await require_organization(req.organization_id, session)
    email = normalize_email(req.email)
    role_ids = list(dict.fromkeys(req.role_ids))
    await ensure_roles_assignable(role_ids, org, session)

    now = utcnow()
    active = await session.execute(
        select(OrganizationInvitation.code).where(
            OrganizationInvitation.organization_id == org.id,
            OrganizationInvitation.email == email,
            OrganizationInvitation.expires_at > now,
        )
    )
    if active.first() is not None:
        raise InvitationAlreadyExistsError(email)

    code = uuid.uuid4()
    context = lifecycle_context(
        OrganizationLifecycleEvent.INVITATION_CREATED,
        org,
        actor_user_id=req.created_by,
        invitation_code=code,
        role_ids=role_ids,
    )
    await lifecycle.ensure_allowed(context)

    # Expired rows would otherwise trip the (organization, email) constraint
    await session.execute(
        delete(OrganizationInvitation).where(
            OrganizationInvitation.organization_id == org.id,
            OrganizationInvitation.email == email,
        )
    )

    invitation = OrganizationInvitation(
        code=code,
        organization_id=org.id,
        organization_slug=org.slug,
        organization_name=org.display_name,
        email=email,
        role_ids=[str(role_id) for role_id in role_ids],
        created_by=req.created_by,
        created_at=now,
        expires_at=now + resolve_lifetime(req.expires_in_hours, settings),
    )
    session.add(invitation)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise InvitationAlreadyExistsError(email) from exc

    log.info(
        "invitation.created",
        code=str(invitation.code),
        org_id=str(org.id),
        email=redact_email(email),
    )
    await lifecycle.notify(context)
    return invitation


async def find_invitation(code: uuid.UUID, session: AsyncSession) -> Optional[OrganizationInvitation]:
    result = await session.execute(
        select(OrganizationInvitation).where(OrganizationInvitation.code == code)
    )
    invitation = result.scalar_one_or_none()
    if invitation is None:
        return None
    if is_expired(invitation):
        await _purge(invitation, session)
        return None
    return invitation


async def list_invitations(
    organization_id: uuid.UUID, session: AsyncSession
) -> list[OrganizationInvitation]:
    """Unexpired invitations of an organization, soonest expiry first."""
    result = await session.execute(
        select(OrganizationInvitation)
        .where(
            OrganizationInvitation.organization_id == organization_id,
            OrganizationInvitation.expires_at > utcnow(),
        )
        .order_by(OrganizationInvitation.expires_at)
    )
    return list(result.scalars().all())


async def revoke_invitation(
    organization_id: uuid.UUID,
    code: uuid.UUID,
    session: AsyncSession,
    lifecycle: Optional[OrganizationLifecycleDispatcher] = None,
) -> bool:
    """Delete an invitation. False when it is missing, expired, or belongs elsewhere."""
    result = await session.execute(
        select(OrganizationInvitation).where(OrganizationInvitation.code == code)
    )
    invitation = result.scalar_one_or_none()
    if invitation is None or invitation.organization_id != organization_id:
        return False
    if is_expired(invitation):
        await _purge(invitation, session)
        return False

    lifecycle = lifecycle or NULL_LIFECYCLE
    # Built from the invitation's snapshot; the organization may be gone
    context = OrganizationLifecycleContext(
        event=OrganizationLifecycleEvent.INVITATION_REVOKED,
        organization_id=invitation.organization_id,
        slug=invitation.organization_slug,
        display_name=invitation.organization_name,
        invitation_code=code,
        role_ids=invitation.parsed_role_ids,
    )
    await lifecycle.ensure_allowed(context)

    await session.delete(invitation)
    await session.flush()

    log.info("invitation.revoked", code=str(code), org_id=str(organization_id))
    await lifecycle.notify(context)
    return True


async def accept_invitation(
    code: uuid.UUID,
    user: User,
    session: AsyncSession,
    lifecycle: Optional[OrganizationLifecycleDispatcher] = None,
) -> Optional[InvitationAcceptanceResult]:
    """Turn an invitation into a membership, merging roles into an existing one.

    Returns None when the invitation (or its organization) no longer exists.
    The invitation is deleted on every successful path.

    Raises:
        InvitationEmailMismatchError: ``user`` is not the invited address.
        LifecycleHookRejectedError: a listener vetoed the acceptance.
    """
    lifecycle = lifecycle or NULL_LIFECYCLE
    invitation = await find_invitation(code, session)
    if invitation is None:
        return None

    if (user.email or "").strip().lower() != invitation.email.lower():
        raise InvitationEmailMismatchError()

    org = await get_organization(invitation.organization_id, session)
    if org is None:
        await session.delete(invitation)
        await session.flush()
        return None

    was_existing_user = ensure_utc(user.created_at) <= ensure_utc(invitation.created_at)
    role_ids = invitation.parsed_role_ids
    context = lifecycle_context(
        OrganizationLifecycleEvent.INVITATION_ACCEPTED,
        org,
        user_id=user.id,
        actor_user_id=user.id,
        invitation_code=code,
        role_ids=role_ids,
    )
    await lifecycle.ensure_allowed(context)

    membership = await get_membership(org.id, user.id, session)
    if membership is None:
        await add_member(
            MembershipCreateRequest(
                organization_id=org.id,
                user_id=user.id,
                tenant_id=org.tenant_id,
                is_primary=False,
                role_ids=role_ids,
            ),
            session,
            lifecycle,
        )
    else:
        merged = list(dict.fromkeys([*membership.role_ids, *role_ids]))
        if merged:
            await update_membership(
                MembershipUpdateRequest(
                    organization_id=org.id,
                    user_id=user.id,
                    role_ids=merged,
                ),
                session,
                lifecycle,
            )

    await session.delete(invitation)
    await session.flush()

    log.info(
        "invitation.accepted",
        code=str(code),
        org_id=str(org.id),
        user_id=str(user.id),
        was_existing_member=membership is not None,
    )
    await lifecycle.notify(context)
    return InvitationAcceptanceResult(
        organization_id=org.id,
        organization_slug=org.slug,
        organization_name=org.display_name,
        role_ids=role_ids,
        was_existing_member=membership is not None,
        was_existing_user=was_existing_user,
    )
