"""
Error types raised by the organization services.

Each error carries an HTTP-style ``status_code`` so an outer binding can map it
to a response without this package depending on a web framework.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession


class OrgAuthzError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(OrgAuthzError):
    """Malformed input; rejected before any write."""

    status_code = 422


class NotFoundError(OrgAuthzError):
    status_code = 404


class ConflictError(OrgAuthzError):
    """The request conflicts with current state. Never retried."""

    status_code = 409


class InvitationAlreadyExistsError(ConflictError):
    def __init__(self, email: str):
        super().__init__(f"An active invitation already exists for '{email}'")
        self.email = email


class InvitationEmailMismatchError(ConflictError):
    def __init__(self):
        super().__init__("Invitation email does not match the signed-in user")


async def flush_or_conflict(session: AsyncSession, detail: str) -> None:
    """Flush pending writes, mapping unique-constraint violations to a conflict."""
    try:
        await session.flush()
    except IntegrityError as exc:
        raise ConflictError(detail) from exc



class LifecycleHookRejectedError(OrgAuthzError):
    """A lifecycle listener vetoed the operation; nothing was written."""

    status_code = 403

    def __init__(self, event: str, reason: Optional[str] = None):
        if reason and reason.strip():
            detail = f"Lifecycle hook rejected '{event}': {reason}"
        else:
            detail = f"Lifecycle hook rejected '{event}'"
        super().__init__(detail)
        self.event = event
        self.reason = reason


class LifecycleHookExecutionError(OrgAuthzError):
    status_code = 500

    def __init__(self, event: str):
        super().__init__(f"Lifecycle hook failed during '{event}'")
        self.event = event
