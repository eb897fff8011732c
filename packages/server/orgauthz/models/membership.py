"""Organization membership and role assignment (join tables)."""

from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, TimestampMixin


class OrganizationMembership(TimestampMixin, SQLModel, table=True):
    __tablename__ = "organization_memberships"
    __table_args__ = (
        # At most one primary membership per (user, tenant)
        sa.Index(
            "ix_organization_memberships_primary",
            "user_id",
            "tenant_id",
            unique=True,
            postgresql_where=sa.text("is_primary"),
            sqlite_where=sa.text("is_primary = 1"),
        ),
    )

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", primary_key=True)
    user_id: uuid.UUID = Field(primary_key=True, index=True)
    tenant_id: Optional[uuid.UUID] = Field(default=None, index=True)
    is_primary: bool = Field(default=False, nullable=False)


class OrganizationRoleAssignment(CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "organization_role_assignments"

    organization_id: uuid.UUID = Field(primary_key=True)
    user_id: uuid.UUID = Field(primary_key=True)
    # No FK: deleting a role leaves assignments dangling
    role_id: uuid.UUID = Field(primary_key=True, index=True)
    tenant_id: Optional[uuid.UUID] = Field(default=None)
