"""
Token claims for organization-scoped authorization.

``create_claims`` is pure: given the resolved permissions and the ambient
organization it renders the claim list. The classes below are the hooks an
outer token issuer calls; they read the ambient context and ask the resolver.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import NamedTuple, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from orgauthz.core.context import OrganizationContext, OrganizationContextAccessor
from orgauthz.core.errors import ValidationError
from orgauthz.services.memberships import get_memberships_for_user
from orgauthz.services.permissions import OrganizationPermissionResolver
from orgauthz.services.roles import dedupe_permission_names

log = structlog.get_logger()

PERMISSIONS_CLAIM = "permissions"
ORGANIZATION_ID_CLAIM = "org_id"
ORGANIZATION_SLUG_CLAIM = "org_slug"
ORGANIZATION_NAME_CLAIM = "org_name"
ORGANIZATION_MEMBERSHIPS_CLAIM = "org_memberships"


class Claim(NamedTuple):
    type: str
    value: str


def create_claims(
    permissions: Iterable[Optional[str]], context: Optional[OrganizationContext]
) -> list[Claim]:
    claims = []

    names = dedupe_permission_names(permissions)
    if names:
        claims.append(Claim(PERMISSIONS_CLAIM, " ".join(names)))

    if context is not None and context.has_organization:
        if context.organization_id is not None:
            claims.append(Claim(ORGANIZATION_ID_CLAIM, str(context.organization_id)))
        if context.slug and context.slug.strip():
            claims.append(Claim(ORGANIZATION_SLUG_CLAIM, context.slug))
        if context.display_name and context.display_name.strip():
            claims.append(Claim(ORGANIZATION_NAME_CLAIM, context.display_name))

    return claims


def _claim_values(claims: Iterable[Claim], claim_type: str) -> list[str]:
    return [claim.value for claim in claims if claim.type == claim_type and claim.value]


def claimed_permissions(claims: Iterable[Claim]) -> list[str]:
    return [name for value in _claim_values(claims, PERMISSIONS_CLAIM) for name in value.split()]


def claimed_organization_id(claims: Iterable[Claim]) -> Optional[uuid.UUID]:
    for value in _claim_values(claims, ORGANIZATION_ID_CLAIM):
        try:
            return uuid.UUID(value)
        except ValueError:
            continue
    return None


# ---------------------------------------------------------------------------
# Membership claim
# ---------------------------------------------------------------------------

async def create_membership_claims(user_id: uuid.UUID, session: AsyncSession) -> list[Claim]:
    """One ``org_memberships`` claim listing every organization the user belongs to."""
    memberships = await get_memberships_for_user(user_id, None, session)
    if not memberships:
        return []
    return [
        Claim(
            ORGANIZATION_MEMBERSHIPS_CLAIM,
            " ".join(str(m.organization_id) for m in memberships),
        )
    ]


def parse_membership_claim(claims: Iterable[Claim]) -> list[uuid.UUID]:
    """Organization ids from ``org_memberships`` claims; malformed entries are skipped."""
    organization_ids = []
    for value in _claim_values(claims, ORGANIZATION_MEMBERSHIPS_CLAIM):
        for token in value.split():
            try:
                organization_ids.append(uuid.UUID(token))
            except ValueError:
                log.debug("claims.membership.malformed", value=token)
    return list(dict.fromkeys(organization_ids))


def has_membership_claim(claims: Iterable[Claim], organization_id: uuid.UUID) -> bool:
    return organization_id in parse_membership_claim(claims)


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------

class OrganizationAdditionalPermissionSource:
    """Extra permissions the ambient organization grants the user."""

    def __init__(
        self,
        accessor: OrganizationContextAccessor,
        resolver: OrganizationPermissionResolver,
    ):
        self._accessor = accessor
        self._resolver = resolver

    async def get_additional_permissions(self, user_id: Optional[uuid.UUID]) -> list[str]:
        if user_id is None:
            return []
        context = self._accessor.current
        if context is None or context.organization_id is None:
            return []
        return await self._resolver.get_organization_permissions(context.organization_id, user_id)


class OrganizationClaimsContributor:
    """Claims added to a token issued while an organization scope is active."""

    def __init__(
        self,
        accessor: OrganizationContextAccessor,
        resolver: OrganizationPermissionResolver,
    ):
        self._accessor = accessor
        self._resolver = resolver

    async def get_claims(self, user_id: uuid.UUID) -> list[Claim]:
        context = self._accessor.current
        permissions = await self._resolver.get_permissions(context.organization_id, user_id)
        return create_claims(permissions, context)


async def has_organization_permission(
    claims: Iterable[Claim],
    user_id: Optional[uuid.UUID],
    organization_id: Optional[uuid.UUID],
    permission: str,
    resolver: OrganizationPermissionResolver,
) -> bool:
    """Check a permission, trusting the token first and the store second.

    ``organization_id`` defaults to the token's ``org_id`` claim.
    """
    if not permission or not permission.strip():
        raise ValidationError("Permission is required")
    wanted = permission.strip().lower()

    claims = list(claims)
    if any(name.lower() == wanted for name in claimed_permissions(claims)):
        return True

    organization_id = organization_id or claimed_organization_id(claims)
    if organization_id is None or user_id is None:
        return False

    permissions = await resolver.get_permissions(organization_id, user_id)
    return any(name.lower() == wanted for name in permissions)
