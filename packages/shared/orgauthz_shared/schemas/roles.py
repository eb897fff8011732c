"""Organization role schemas."""

from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, Field


class RoleCreateRequest(BaseModel):
    name: str
    description: Optional[str] = None
    is_system_role: bool = False
    organization_id: Optional[uuid.UUID] = None  # None creates a reusable template role
    tenant_id: Optional[uuid.UUID] = None


class RolePermissionSet(BaseModel):
    """Permission names granted by a role at one organization.

    ``explicit`` holds what is assigned at that organization's scope;
    ``effective`` adds the baseline inherited from the role's own scope.
    Both are de-duplicated case-insensitively and sorted.
    """

    effective: list[str] = Field(default_factory=list)
    explicit: list[str] = Field(default_factory=list)
