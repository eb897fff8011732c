"""
Ports onto collaborators this engine consumes but does not own.

- PermissionCatalog: the global permission catalog (name <-> id resolution)
- UserDirectory: user lookup for member search and list enrichment
- RoleAssignmentService: the user's global (non-organization) permission set
- OrganizationLifecycleListener: observer (and veto point) for lifecycle events

SQL-backed defaults live in ``orgauthz.services.catalog``.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Collection
from enum import Enum
from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserSummary(NamedTuple):
    id: uuid.UUID
    email: Optional[str]
    display_name: Optional[str]


class PermissionCatalog(ABC):
    """Port: global permission catalog."""

    @abstractmethod
    async def get_names(self, permission_ids: Collection[uuid.UUID]) -> dict[uuid.UUID, str]:
        """Map known permission ids to names. Unknown ids are absent from the result."""

    @abstractmethod
    async def get_ids(self, names: Collection[str]) -> dict[str, uuid.UUID]:
        """Map permission names to ids, matching case-insensitively.

        Returns:
            Keys are the lowercased names that were found.
        """


class UserDirectory(ABC):
    """Port: user directory."""

    @abstractmethod
    async def search_user_ids(self, pattern: str) -> list[uuid.UUID]:
        """Ids of users whose email, display name or username matches ``pattern``.

        Args:
            pattern: Case-insensitive LIKE pattern; backslash escapes ``%`` and ``_``.
        """

    @abstractmethod
    async def get_users(self, user_ids: Collection[uuid.UUID]) -> dict[uuid.UUID, UserSummary]:
        """Look up users by id. Unknown ids are absent from the result."""


class RoleAssignmentService(ABC):
    """Port: global RBAC role assignments."""

    @abstractmethod
    async def get_effective_permissions(self, user_id: uuid.UUID) -> list[str]:
        """Permission names the user holds outside any organization."""


class NullRoleAssignmentService(RoleAssignmentService):
    """Grants nothing globally; organization permissions are the only source."""

    async def get_effective_permissions(self, user_id: uuid.UUID) -> list[str]:
        return []


class OrganizationLifecycleEvent(str, Enum):
    ORGANIZATION_CREATED = "organization_created"
    ORGANIZATION_UPDATED = "organization_updated"
    ORGANIZATION_ARCHIVED = "organization_archived"
    ORGANIZATION_RESTORED = "organization_restored"
    MEMBER_ADDED = "member_added"
    MEMBERSHIP_UPDATED = "membership_updated"
    MEMBERSHIP_REVOKED = "membership_revoked"
    INVITATION_CREATED = "invitation_created"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_REVOKED = "invitation_revoked"


class OrganizationLifecycleContext(BaseModel):
    """What a listener is told about one lifecycle event."""

    model_config = ConfigDict(frozen=True)

    event: OrganizationLifecycleEvent
    organization_id: uuid.UUID
    tenant_id: Optional[uuid.UUID] = None
    slug: Optional[str] = None
    display_name: Optional[str] = None
    user_id: Optional[uuid.UUID] = None
    actor_user_id: Optional[uuid.UUID] = None
    invitation_code: Optional[uuid.UUID] = None
    role_ids: list[uuid.UUID] = Field(default_factory=list)


class OrganizationLifecycleListener(ABC):
    """Port: lifecycle observer.

    ``before`` runs ahead of member additions, membership updates and
    invitation create/accept/revoke, and may veto them by raising
    :class:`orgauthz.core.errors.LifecycleHookRejectedError`. ``after`` runs
    once the change is flushed, for every event.
    """

    @abstractmethod
    async def before(self, context: OrganizationLifecycleContext) -> None: ...

    @abstractmethod
    async def after(self, context: OrganizationLifecycleContext) -> None: ...


class NullOrganizationLifecycleListener(OrganizationLifecycleListener):
    async def before(self, context: OrganizationLifecycleContext) -> None:
        return None

    async def after(self, context: OrganizationLifecycleContext) -> None:
        return None
