"""Organization invitation model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin


class OrganizationInvitation(CreatedAtMixin, SQLModel, table=True):
    """Single-use invitation; the code is both the key and the bearer token."""

    __tablename__ = "organization_invitations"
    __table_args__ = (
        sa.UniqueConstraint("organization_id", "email", name="uq_organization_invitations_email"),
    )

    code: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    organization_id: uuid.UUID = Field(nullable=False, index=True)
    organization_slug: str = Field(nullable=False)
    organization_name: str = Field(nullable=False)
    email: str = Field(nullable=False, index=True)
    role_ids: list = Field(default_factory=list, sa_column=sa.Column(sa.JSON, nullable=False))
    created_by: Optional[uuid.UUID] = None
    expires_at: datetime = Field(nullable=False, sa_type=sa.DateTime(timezone=True))

    @property
    def parsed_role_ids(self) -> list[uuid.UUID]:
        """Role ids as UUIDs, in the order they were granted."""
        return [uuid.UUID(str(role_id)) for role_id in self.role_ids or []]
