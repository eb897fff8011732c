"""Invitation schemas."""

from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, Field


class InvitationCreateRequest(BaseModel):
    organization_id: uuid.UUID
    email: str
    role_ids: list[uuid.UUID] = Field(default_factory=list)
    created_by: Optional[uuid.UUID] = None
    expires_in_hours: Optional[int] = Field(
        default=None,
        description="Clamped into the configured bounds; None selects the default lifetime",
    )


class InvitationAcceptanceResult(BaseModel):
    organization_id: uuid.UUID
    organization_slug: str
    organization_name: str
    role_ids: list[uuid.UUID] = Field(default_factory=list)
    was_existing_member: bool
    was_existing_user: bool
