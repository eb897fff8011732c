"""
Organization directory: CRUD, validation and tenant-scoped uniqueness.
"""

from __future__ import annotations

import json
import re
import uuid
from typing import Optional

import structlog
from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgauthz.core.config import Settings, get_settings
from orgauthz.core.errors import ConflictError, NotFoundError, ValidationError, flush_or_conflict
from orgauthz.models.base import utcnow
from orgauthz.models.organization import Organization
from orgauthz.ports import OrganizationLifecycleEvent
from orgauthz.services.lifecycle import NULL_LIFECYCLE, OrganizationLifecycleDispatcher, lifecycle_context
from orgauthz.services.paging import (
    LIKE_ESCAPE,
    build_ordering,
    create_search_pattern,
    normalize_paging,
    parse_sorts,
)

from orgauthz_shared.schemas.organizations import (
    SLUG_PATTERN,
    OrganizationCreateRequest,
    OrganizationListRequest,
    OrganizationListResult,
    OrganizationStatus,
    OrganizationSummary,
    OrganizationUpdateRequest,
)

log = structlog.get_logger()

_SLUG_RE = re.compile(SLUG_PATTERN)


# ---------------------------------------------------------------------------
# Normalization & validation
# ---------------------------------------------------------------------------

def normalize_slug(slug: Optional[str], settings: Settings) -> str:
    if not slug or not slug.strip():
        raise ValidationError("Organization slug is required")

    slug = slug.strip().lower()
    if len(slug) > settings.slug_max_length:
        raise ValidationError(
            f"Organization slug cannot exceed {settings.slug_max_length} characters"
        )
    if not _SLUG_RE.match(slug):
        raise ValidationError(
            "Organization slug may only contain lowercase letters, numbers, hyphens, "
            "underscores, and periods, and must start with a letter or number"
        )
    return slug


def normalize_display_name(display_name: Optional[str], settings: Settings) -> str:
    if not display_name or not display_name.strip():
        raise ValidationError("Organization display name is required")

    display_name = display_name.strip()
    if len(display_name) > settings.display_name_max_length:
        raise ValidationError(
            f"Organization display name cannot exceed {settings.display_name_max_length} characters"
        )
    return display_name


def validate_metadata(metadata: Optional[dict[str, str]], settings: Settings) -> dict[str, str]:
    metadata = dict(metadata or {})

    for key, value in metadata.items():
        if len(key) > settings.metadata_max_key_length:
            raise ValidationError(
                f"Metadata key '{key}' exceeds the maximum length of "
                f"{settings.metadata_max_key_length} characters"
            )
        if value and len(value) > settings.metadata_max_value_length:
            raise ValidationError(
                f"Metadata value for key '{key}' exceeds the maximum length of "
                f"{settings.metadata_max_value_length} characters"
            )

    payload = json.dumps(metadata, separators=(",", ":"), ensure_ascii=False)
    if len(payload.encode("utf-8")) > settings.metadata_max_bytes:
        raise ValidationError(
            f"Metadata payload exceeds the maximum size of {settings.metadata_max_bytes} bytes"
        )
    return metadata


def _in_tenant(stmt, tenant_id: Optional[uuid.UUID]):
    """Restrict to one tenant; no tenant means the global (tenant-less) scope."""
    if tenant_id is not None:
        return stmt.where(Organization.tenant_id == tenant_id)
    return stmt.where(Organization.tenant_id.is_(None))


async def _ensure_unique(
    session: AsyncSession,
    tenant_id: Optional[uuid.UUID],
    *,
    slug: Optional[str] = None,
    display_name: Optional[str] = None,
    excluding_id: Optional[uuid.UUID] = None,
) -> None:
    stmt = _in_tenant(select(Organization.id), tenant_id)
    if slug is not None:
        stmt = stmt.where(Organization.slug == slug)
    if display_name is not None:
        stmt = stmt.where(Organization.display_name == display_name)
    if excluding_id is not None:
        stmt = stmt.where(Organization.id != excluding_id)

    result = await session.execute(stmt.limit(1))
    if result.scalar_one_or_none() is None:
        return

    if slug is not None:
        raise ConflictError(f"An organization with slug '{slug}' already exists for the specified tenant")
    raise ConflictError(
        f"An organization with display name '{display_name}' already exists for the specified tenant"
    )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def create_organization(
    req: OrganizationCreateRequest,
    session: AsyncSession,
    settings: Optional[Settings] = None,
    lifecycle: Optional[OrganizationLifecycleDispatcher] = None,
) -> Organization:
    """Validate and persist a new Active organization."""
    settings = settings or get_settings()

    slug = normalize_slug(req.slug, settings)
    display_name = normalize_display_name(req.display_name, settings)
    metadata = validate_metadata(req.metadata, settings)

    await _ensure_unique(session, req.tenant_id, slug=slug)
    await _ensure_unique(session, req.tenant_id, display_name=display_name)

    org = Organization(
        tenant_id=req.tenant_id,
        slug=slug,
        display_name=display_name,
        status=OrganizationStatus.ACTIVE.value,
        metadata_=metadata,
    )
    session.add(org)
    await flush_or_conflict(session, "Organization slug or display name already taken")

    log.info("organization.created", org_id=str(org.id), slug=slug, tenant_id=str(req.tenant_id))
    await (lifecycle or NULL_LIFECYCLE).notify(
        lifecycle_context(OrganizationLifecycleEvent.ORGANIZATION_CREATED, org)
    )
    return org


async def get_organization(
    org_id: Optional[uuid.UUID], session: AsyncSession
) -> Optional[Organization]:
    if org_id is None:
        return None
    result = await session.execute(select(Organization).where(Organization.id == org_id))
    return result.scalar_one_or_none()


async def get_organization_by_slug(
    tenant_id: Optional[uuid.UUID], slug: Optional[str], session: AsyncSession
) -> Optional[Organization]:
    if not slug or not slug.strip():
        return None
    stmt = _in_tenant(select(Organization), tenant_id).where(
        Organization.slug == slug.strip().lower()
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_organizations(
    tenant_id: Optional[uuid.UUID], session: AsyncSession
) -> list[Organization]:
    result = await session.execute(
        _in_tenant(select(Organization), tenant_id).order_by(Organization.display_name)
    )
    return list(result.scalars().all())


def to_summary(org: Organization) -> OrganizationSummary:
    return OrganizationSummary(
        id=org.id,
        tenant_id=org.tenant_id,
        slug=org.slug,
        display_name=org.display_name,
        status=org.status,
        metadata=org.metadata_ or {},
        created_at=org.created_at,
        updated_at=org.updated_at,
        archived_at=org.archived_at,
    )


async def list_organizations_paged(
    req: OrganizationListRequest,
    session: AsyncSession,
    settings: Optional[Settings] = None,
) -> OrganizationListResult:
    """Page through a tenant's organizations.

    Search matches display name or slug literally and case-insensitively.
    Sortable fields are ``display_name``, ``slug``, ``created_at`` and
    ``status``; the default is by display name. Pages past the end are empty.
    """
    settings = settings or get_settings()
    page, page_size = normalize_paging(req.page, req.page_size, settings)

    stmt = _in_tenant(select(Organization), req.tenant_id)
    if req.status is not None:
        stmt = stmt.where(Organization.status == req.status.value)
    if req.search and req.search.strip():
        pattern = create_search_pattern(req.search)
        stmt = stmt.where(
            or_(
                Organization.display_name.ilike(pattern, escape=LIKE_ESCAPE),
                Organization.slug.ilike(pattern, escape=LIKE_ESCAPE),
            )
        )

    count_result = await session.execute(select(func.count()).select_from(stmt.subquery()))
    total_count = count_result.scalar_one()
    if total_count == 0:
        return OrganizationListResult.empty(page, page_size)

    order = build_ordering(
        parse_sorts(req.sort),
        {
            "displayname": Organization.display_name,
            "slug": Organization.slug,
            "createdat": Organization.created_at,
            "status": Organization.status,
        },
        default=[Organization.display_name],
        tiebreak=[Organization.id],
    )
    result = await session.execute(
        stmt.order_by(*order).offset((page - 1) * page_size).limit(page_size)
    )
    organizations = [to_summary(org) for org in result.scalars().all()]
    return OrganizationListResult(
        page=page, page_size=page_size, total_count=total_count, organizations=organizations
    )


async def require_organization(org_id: uuid.UUID, session: AsyncSession) -> Organization:
    org = await get_organization(org_id, session)
    if org is None:
        raise NotFoundError(f"Organization {org_id} was not found")
    return org


async def update_organization(
    org_id: uuid.UUID,
    req: OrganizationUpdateRequest,
    session: AsyncSession,
    settings: Optional[Settings] = None,
    lifecycle: Optional[OrganizationLifecycleDispatcher] = None,
) -> Organization:
    """Apply a partial patch; nothing is written when no field actually changes."""
    settings = settings or get_settings()
    org = await require_organization(org_id, session)
    previous_status = org.status
    changed = False

    if req.display_name is not None:
        display_name = normalize_display_name(req.display_name, settings)
        if display_name != org.display_name:
            await _ensure_unique(
                session, org.tenant_id, display_name=display_name, excluding_id=org.id
            )
            org.display_name = display_name
            changed = True

    if req.metadata is not None:
        metadata = validate_metadata(req.metadata, settings)
        if metadata != (org.metadata_ or {}):
            org.metadata_ = metadata
            changed = True

    if req.status is not None and req.status.value != org.status:
        org.status = req.status.value
        org.archived_at = utcnow() if req.status == OrganizationStatus.ARCHIVED else None
        changed = True

    if not changed:
        return org

    org.updated_at = utcnow()
    session.add(org)
    await flush_or_conflict(session, "Organization display name already taken")

    log.info("organization.updated", org_id=str(org.id), slug=org.slug)

    lifecycle = lifecycle or NULL_LIFECYCLE
    await lifecycle.notify(lifecycle_context(OrganizationLifecycleEvent.ORGANIZATION_UPDATED, org))
    archived = OrganizationStatus.ARCHIVED.value
    if org.status != previous_status and org.status == archived:
        await lifecycle.notify(lifecycle_context(OrganizationLifecycleEvent.ORGANIZATION_ARCHIVED, org))
    elif org.status != previous_status and previous_status == archived:
        await lifecycle.notify(lifecycle_context(OrganizationLifecycleEvent.ORGANIZATION_RESTORED, org))
    return org


async def archive_organization(
    org_id: uuid.UUID,
    session: AsyncSession,
    lifecycle: Optional[OrganizationLifecycleDispatcher] = None,
) -> None:
    """Archive an organization. Archiving twice is a no-op."""
    org = await require_organization(org_id, session)
    if org.status == OrganizationStatus.ARCHIVED.value:
        return

    now = utcnow()
    org.status = OrganizationStatus.ARCHIVED.value
    org.archived_at = now
    org.updated_at = now
    session.add(org)
    await session.flush()

    log.info("organization.archived", org_id=str(org.id), slug=org.slug)
    await (lifecycle or NULL_LIFECYCLE).notify(
        lifecycle_context(OrganizationLifecycleEvent.ORGANIZATION_ARCHIVED, org)
    )
