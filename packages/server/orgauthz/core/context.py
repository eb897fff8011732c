"""
Ambient organization context.

The "current organization" travels with the logical call flow through a
``ContextVar``: awaits inside one task see the same scope, child tasks start
from a copy of the parent's scope, and concurrently running requests never see
each other's scope. Scopes nest with strict push/pop discipline.

Usage::

    with accessor.begin_scope(OrganizationContext.from_organization(org)):
        claims = create_claims(permissions, accessor.current)
    # the previous scope is restored, including when the block raises
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from orgauthz.core.config import Settings, get_settings

if TYPE_CHECKING:
    from orgauthz.models.organization import Organization


class OrganizationContext(BaseModel):
    """Immutable snapshot of the organization in scope for a request."""

    model_config = ConfigDict(frozen=True)

    organization_id: Optional[uuid.UUID] = None
    tenant_id: Optional[uuid.UUID] = None
    slug: Optional[str] = None
    display_name: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def has_organization(self) -> bool:
        return self.organization_id is not None or bool(self.slug and self.slug.strip())

    def get(self, key: str) -> Optional[str]:
        """Look up a metadata value; blank or unknown keys yield None."""
        if not key or not key.strip():
            return None
        return self.metadata.get(key)

    @classmethod
    def from_organization(cls, org: Organization) -> OrganizationContext:
        return cls(
            organization_id=org.id,
            tenant_id=org.tenant_id,
            slug=org.slug,
            display_name=org.display_name,
            metadata=dict(org.metadata_ or {}),
        )


EMPTY_CONTEXT = OrganizationContext()


class OrganizationContextAccessor(Protocol):
    """What consumers depend on to read or establish the ambient organization."""

    @property
    def current(self) -> OrganizationContext: ...

    def begin_scope(self, context: Optional[OrganizationContext]) -> OrganizationScope: ...


class _Frame:
    __slots__ = ("context",)

    def __init__(self, context: OrganizationContext):
        self.context = context


class OrganizationScope:
    """Guard returned by ``begin_scope``; closing it restores the prior frame.

    Scopes must be closed innermost first; closing out of order raises
    ``RuntimeError`` and leaves the current frame untouched.
    """

    def __init__(
        self,
        var: Optional[ContextVar[Optional[_Frame]]] = None,
        frame: Optional[_Frame] = None,
        token: Optional[Token] = None,
    ):
        self._var = var
        self._frame = frame
        self._token = token
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        if self._var is not None:
            if self._var.get() is not self._frame:
                raise RuntimeError("Organization scopes must be closed innermost first")
            self._var.reset(self._token)
        self._closed = True

    def __enter__(self) -> OrganizationScope:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ContextVarOrganizationContextAccessor:
    """Flow-local accessor backed by a per-instance ``ContextVar``."""

    def __init__(self, name: str = "orgauthz_organization_context"):
        self._current: ContextVar[Optional[_Frame]] = ContextVar(name, default=None)

    @property
    def current(self) -> OrganizationContext:
        frame = self._current.get()
        return frame.context if frame is not None else EMPTY_CONTEXT

    def begin_scope(self, context: Optional[OrganizationContext]) -> OrganizationScope:
        frame = _Frame(context or EMPTY_CONTEXT)
        token = self._current.set(frame)
        return OrganizationScope(self._current, frame, token)


class NullOrganizationContextAccessor:
    """Accessor for deployments without multi-organization support."""

    @property
    def current(self) -> OrganizationContext:
        return EMPTY_CONTEXT

    def begin_scope(self, context: Optional[OrganizationContext]) -> OrganizationScope:
        return OrganizationScope()


def create_context_accessor(settings: Optional[Settings] = None) -> OrganizationContextAccessor:
    settings = settings or get_settings()
    if settings.multi_organization_enabled:
        return ContextVarOrganizationContextAccessor()
    return NullOrganizationContextAccessor()
