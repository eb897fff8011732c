"""Organization model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from orgauthz_shared.schemas.organizations import OrganizationStatus

from .base import TimestampMixin, UUIDMixin


class Organization(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "organizations"
    __table_args__ = (
        sa.UniqueConstraint("tenant_id", "slug", name="uq_organizations_tenant_slug"),
        sa.UniqueConstraint("tenant_id", "display_name", name="uq_organizations_tenant_display_name"),
    )

    tenant_id: Optional[uuid.UUID] = Field(default=None, index=True)
    slug: str = Field(nullable=False, index=True)
    display_name: str = Field(nullable=False)
    status: str = Field(default=OrganizationStatus.ACTIVE.value, nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_: dict = Field(
        default_factory=dict,
        sa_column=sa.Column("metadata", sa.JSON, nullable=False),
    )
    archived_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
