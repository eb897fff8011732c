"""
Lifecycle hook dispatch.

Services build an :class:`OrganizationLifecycleContext` for each change and
hand it to the dispatcher: ``ensure_allowed`` before writing (listeners may
veto), ``notify`` after the flush.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

import structlog

from orgauthz.core.config import Settings, get_settings
from orgauthz.core.errors import LifecycleHookExecutionError, LifecycleHookRejectedError
from orgauthz.models.organization import Organization
from orgauthz.ports import (
    NullOrganizationLifecycleListener,
    OrganizationLifecycleContext,
    OrganizationLifecycleEvent,
    OrganizationLifecycleListener,
)

log = structlog.get_logger()


def lifecycle_context(
    event: OrganizationLifecycleEvent, org: Organization, **fields
) -> OrganizationLifecycleContext:
    return OrganizationLifecycleContext(
        event=event,
        organization_id=org.id,
        tenant_id=org.tenant_id,
        slug=org.slug,
        display_name=org.display_name,
        **fields,
    )


class OrganizationLifecycleDispatcher:
    """Runs every registered listener in registration order."""

    def __init__(
        self,
        listeners: Optional[Iterable[OrganizationLifecycleListener]] = None,
        settings: Optional[Settings] = None,
    ):
        self._listeners = list(listeners or [NullOrganizationLifecycleListener()])
        self._settings = settings

    async def ensure_allowed(self, context: OrganizationLifecycleContext) -> None:
        """Ask each listener's ``before`` hook. The first rejection stops the operation.

        Raises:
            LifecycleHookRejectedError: a listener vetoed the operation.
            LifecycleHookExecutionError: a listener failed with any other error.
        """
        for listener in self._listeners:
            try:
                await listener.before(context)
            except LifecycleHookRejectedError:
                log.info(
                    "lifecycle.rejected",
                    lifecycle_event=context.event.value,
                    org_id=str(context.organization_id),
                    listener=type(listener).__name__,
                )
                raise
            except Exception as exc:
                raise LifecycleHookExecutionError(context.event.value) from exc

    async def notify(self, context: OrganizationLifecycleContext) -> None:
        """Run each listener's ``after`` hook.

        A failing listener is logged and the rest still run, unless
        ``lifecycle_after_hook_failure`` is ``"raise"``.
        """
        for listener in self._listeners:
            try:
                await listener.after(context)
            except Exception as exc:
                settings = self._settings or get_settings()
                if settings.lifecycle_after_hook_failure == "raise":
                    raise LifecycleHookExecutionError(context.event.value) from exc
                log.exception(
                    "lifecycle.after_hook_failed",
                    lifecycle_event=context.event.value,
                    org_id=str(context.organization_id),
                    listener=type(listener).__name__,
                )


NULL_LIFECYCLE = OrganizationLifecycleDispatcher()
