"""Membership schemas: add/update requests, member listing, a user's organizations."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from orgauthz_shared.schemas.organizations import OrganizationStatus


class MemberSort(str, Enum):
    CREATED_AT_DESC = "created_at_desc"
    CREATED_AT_ASC = "created_at_asc"


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class MembershipCreateRequest(BaseModel):
    organization_id: uuid.UUID
    user_id: uuid.UUID
    tenant_id: Optional[uuid.UUID] = None
    is_primary: bool = False
    role_ids: list[uuid.UUID] = Field(default_factory=list)


class MembershipUpdateRequest(BaseModel):
    """None means "leave unchanged"; an empty role list removes every role."""

    organization_id: uuid.UUID
    user_id: uuid.UUID
    is_primary: Optional[bool] = None
    role_ids: Optional[list[uuid.UUID]] = None


class MemberListRequest(BaseModel):
    organization_id: uuid.UUID
    page: int = 1
    page_size: int = 0  # < 1 selects the configured default
    search: Optional[str] = None
    role_id: Optional[uuid.UUID] = None
    is_primary: Optional[bool] = None
    sort: MemberSort = MemberSort.CREATED_AT_DESC


class UserOrganizationListRequest(BaseModel):
    user_id: uuid.UUID
    tenant_id: Optional[uuid.UUID] = None
    page: int = 1
    page_size: int = 0
    search: Optional[str] = None
    include_archived: bool = False
    sort: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class MembershipResponse(BaseModel):
    organization_id: uuid.UUID
    user_id: uuid.UUID
    tenant_id: Optional[uuid.UUID] = None
    is_primary: bool
    role_ids: list[uuid.UUID] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None


class MemberListItem(MembershipResponse):
    email: Optional[str] = None
    display_name: Optional[str] = None


class MemberListResult(BaseModel):
    page: int
    page_size: int
    total_count: int
    members: list[MemberListItem] = Field(default_factory=list)

    @classmethod
    def empty(cls, page: int, page_size: int) -> MemberListResult:
        return cls(page=page, page_size=page_size, total_count=0)


class UserOrganizationMembership(BaseModel):
    """One of a user's memberships, flattened with its organization."""

    organization_id: uuid.UUID
    tenant_id: Optional[uuid.UUID] = None
    slug: str
    display_name: str
    status: OrganizationStatus
    is_primary: bool
    role_ids: list[uuid.UUID] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None


class UserOrganizationListResult(BaseModel):
    page: int
    page_size: int
    total_count: int
    items: list[UserOrganizationMembership] = Field(default_factory=list)

    @classmethod
    def empty(cls, page: int, page_size: int) -> UserOrganizationListResult:
        return cls(page=page, page_size=page_size, total_count=0)
