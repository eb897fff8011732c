"""User directory model (owned by the identity store; read-only here)."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import CreatedAtMixin, UUIDMixin


class User(UUIDMixin, CreatedAtMixin, SQLModel, table=True):
    __tablename__ = "users"

    email: Optional[str] = Field(default=None, unique=True, index=True)
    username: Optional[str] = Field(default=None, index=True)
    display_name: Optional[str] = None
