"""BaseService — foundation for all crmflow services.

Every service receives a :class:`Workspace` at construction time and owns
its transaction boundaries via ``self._workspace.transaction()``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from crmflow.infrastructure.workspace import Workspace

logger = logging.getLogger(__name__)


class BaseService:
    """Base for service-layer classes.

    Usage::

        class ContactService(BaseService):
            def create_contact(self, name: str, ...) -> ServiceResult:
                with self._workspace.transaction() as txn:
                    ...
    """

    def __init__(self, workspace: Workspace) -> None:
        self._workspace = workspace

    @property
    def _org(self) -> str:
        return self._workspace.organization_id

    def _dispatch_event(
        self,
        hook_name: str,
        payload: dict[str, Any],
        warnings: list[str],
        *,
        execution_id: str | None = None,
    ) -> None:
        """Dispatch a lifecycle event. No-op if event bus not initialized.

        INVARIANT: Plugin failures are warnings, never errors.
        """
        bus = self._workspace.event_bus
        if bus is None:
            return
        try:
            bus.dispatch(hook_name, payload, execution_id=execution_id)
        except Exception:
            logger.debug("Event dispatch failed for %s", hook_name, exc_info=True)
            warnings.append(f"Event dispatch failed for {hook_name}")
