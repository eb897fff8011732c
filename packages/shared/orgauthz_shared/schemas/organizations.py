"""
Organization schemas shared between the engine and its bindings.

Covers: organization create/update/list requests, lifecycle states, responses.
Length limits are configuration-driven and enforced by the directory service.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class OrganizationStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


# Lowercase token: starts with a letter or digit, then letters, digits, "-", "_" or "."
SLUG_PATTERN = r"^[a-z0-9][a-z0-9\-_.]*$"


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class OrganizationCreateRequest(BaseModel):
    slug: str = Field(..., description="URL-safe identifier, unique within the tenant")
    display_name: str = Field(..., description="Human readable name, unique within the tenant")
    tenant_id: Optional[uuid.UUID] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class OrganizationUpdateRequest(BaseModel):
    """Partial patch; omitted fields are left untouched."""

    display_name: Optional[str] = None
    metadata: Optional[dict[str, str]] = None
    status: Optional[OrganizationStatus] = None



class OrganizationListRequest(BaseModel):
    tenant_id: Optional[uuid.UUID] = None
    page: int = 1
    page_size: int = 0  # < 1 selects the configured default
    search: Optional[str] = None
    status: Optional[OrganizationStatus] = None
    sort: list[str] = Field(
        default_factory=list,
        description='Sort expressions such as "slug", "created_at:desc" or "-display_name"',
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class OrganizationSummary(BaseModel):
    id: uuid.UUID
    tenant_id: Optional[uuid.UUID] = None
    slug: str
    display_name: str
    status: OrganizationStatus
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    updated_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None


class OrganizationListResult(BaseModel):
    page: int
    page_size: int
    total_count: int
    organizations: list[OrganizationSummary] = Field(default_factory=list)

    @classmethod
    def empty(cls, page: int, page_size: int) -> OrganizationListResult:
        return cls(page=page, page_size=page_size, total_count=0)
