"""Global permission catalog model (owned by the RBAC store; read-only here)."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import UUIDMixin


class Permission(UUIDMixin, SQLModel, table=True):
    __tablename__ = "permissions"

    name: str = Field(unique=True, nullable=False, index=True)
    description: Optional[str] = None
