# SQLModel definitions: imported here to ensure metadata is populated for create_all.
from .base import CreatedAtMixin, TimestampMixin, UUIDMixin  # noqa: F401
from .organization import Organization, OrganizationStatus  # noqa: F401
from .membership import OrganizationMembership, OrganizationRoleAssignment  # noqa: F401
from .role import OrganizationRole, OrganizationRolePermission  # noqa: F401
from .invitation import OrganizationInvitation  # noqa: F401
from .user import User  # noqa: F401
from .permission import Permission  # noqa: F401
