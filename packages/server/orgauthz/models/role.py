"""Organization roles and their scoped permission grants."""

from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, TimestampMixin, UUIDMixin


class OrganizationRole(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """A role scoped to one organization, or a template when organization_id is null."""

    __tablename__ = "organization_roles"
    # NULL scopes never collide here; create_role checks those itself
    __table_args__ = (
        sa.UniqueConstraint("tenant_id", "organization_id", "name", name="uq_organization_roles_scope_name"),
    )

    organization_id: Optional[uuid.UUID] = Field(default=None, index=True)
    tenant_id: Optional[uuid.UUID] = Field(default=None, index=True)
    name: str = Field(nullable=False, index=True)
    description: Optional[str] = None
    is_system_role: bool = Field(default=False, nullable=False)

    @property
    def is_template(self) -> bool:
        return self.organization_id is None


class OrganizationRolePermission(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    """Grant of a catalog permission to a role at a (tenant, organization) scope.

    The same (role, permission) pair may appear at several scopes: rows at the
    role's own scope form the baseline, rows at another organization's scope
    are that organization's overrides.
    """

    __tablename__ = "organization_role_permissions"
    __table_args__ = (
        sa.UniqueConstraint(
            "role_id",
            "permission_id",
            "organization_id",
            "tenant_id",
            name="uq_organization_role_permissions_scope",
        ),
    )

    role_id: uuid.UUID = Field(nullable=False, index=True)
    permission_id: uuid.UUID = Field(nullable=False)
    organization_id: Optional[uuid.UUID] = Field(default=None, index=True)
    tenant_id: Optional[uuid.UUID] = Field(default=None)
