"""TriggerService — start workflows in response to CRM changes."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from crmflow.domain.events import TriggerEvent
from crmflow.domain.types import TRIGGER_TYPES, NodeType
from crmflow.infrastructure.database.schema import nodes, workflows
from crmflow.services.base import BaseService
from crmflow.services.result import ErrorCode, ServiceResult
from crmflow.services.telemetry import traced

if TYPE_CHECKING:
    from crmflow.infrastructure.workspace import Workspace

logger = logging.getLogger(__name__)


class TriggerService(BaseService):
    """Matches CRM events against trigger nodes and runs the workflows."""

    def __init__(self, workspace: Workspace, *, sleeper: Callable[[float], None] | None = None) -> None:
        super().__init__(workspace)
        self._sleeper = sleeper or time.sleep

    @traced
    def fire(self, trigger_type: str, payload: dict[str, Any], *, depth: int = 0) -> ServiceResult:
        """Run every active workflow in the tenant listening for *trigger_type*.

        Archived, template and bundle workflows never fire. Nested firing
        (a triggered run changing CRM data) stops at ``max_trigger_depth``.
        """
        op = "fire_trigger"
        try:
            kind = NodeType(trigger_type)
        except ValueError:
            kind = None
        if kind is None or kind not in TRIGGER_TYPES:
            return ServiceResult.failure(
                op, ErrorCode.VALIDATION_ERROR, f"Not a trigger type: {trigger_type}"
            )

        limit = self._workspace.settings.execution.max_trigger_depth
        if depth >= limit:
            logger.warning("Trigger %s skipped at depth %d (limit %d)", kind, depth, limit)
            return ServiceResult(
                ok=True,
                op=op,
                data={"trigger_type": str(kind), "executions": [], "skipped": True},
                warnings=[f"Trigger depth limit {limit} reached; {kind} not fired"],
            )

        from crmflow.services.execution import ExecutionService

        runner = ExecutionService(self._workspace, sleeper=self._sleeper)
        runs: list[dict[str, Any]] = []
        warnings: list[str] = []
        for workflow_id in self._listening_workflows(kind, payload):
            result = runner.execute(
                workflow_id, trigger_data=payload, source=str(kind), trigger_depth=depth
            )
            warnings.extend(result.warnings)
            if result.data.get("id"):
                runs.append(
                    {
                        "id": result.data["id"],
                        "workflow_id": workflow_id,
                        "status": result.data["status"],
                    }
                )
            elif result.error is not None:
                warnings.append(f"{workflow_id}: {result.error.message}")

        return ServiceResult(
            ok=True,
            op=op,
            data={"trigger_type": str(kind), "executions": runs},
            warnings=warnings,
        )

    def fire_events(self, events: list[TriggerEvent], *, depth: int = 0) -> list[str]:
        """Fire each event in turn; returns warnings collected along the way."""
        warnings: list[str] = []
        for kind, payload in events:
            warnings.extend(self.fire(kind, payload, depth=depth).warnings)
        return warnings

    def _listening_workflows(self, kind: NodeType, payload: dict[str, Any]) -> list[str]:
        stmt = (
            select(workflows.c.id, nodes.c.data)
            .join(nodes, nodes.c.workflow_id == workflows.c.id)
            .where(
                nodes.c.type == str(kind),
                workflows.c.organization_id == self._org,
                workflows.c.archived == 0,
                workflows.c.is_template == 0,
                workflows.c.is_bundle == 0,
            )
            .order_by(workflows.c.created, workflows.c.id)
        )
        if self._workspace.subaccount_id is not None:
            stmt = stmt.where(workflows.c.subaccount_id == self._workspace.subaccount_id)

        with self._workspace.engine.connect() as conn:
            rows = conn.execute(stmt).all()

        matched: list[str] = []
        for row in rows:
            data = json.loads(row.data or "{}")
            if kind == NodeType.CONTACT_FIELD_CHANGED_TRIGGER:
                wanted = data.get("field")
                if wanted and wanted != payload.get("field"):
                    continue
            if row.id not in matched:
                matched.append(row.id)
        return matched
