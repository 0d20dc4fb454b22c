"""Command group: execution history."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from crmflow.commands._base import CrmGroup
from crmflow.domain.types import ExecutionStatus
from crmflow.services.execution import ExecutionService

if TYPE_CHECKING:
    from crmflow.commands._context import AppContext

_EXECUTION_EXAMPLES = """\
  crmflow execution list
  crmflow execution list --workflow wf_0123456789ab --status FAILED
  crmflow execution show RUN-0001"""


@click.group(cls=CrmGroup, examples=_EXECUTION_EXAMPLES)
@click.pass_obj
def execution(app: AppContext) -> None:
    """Inspect workflow executions."""


@execution.command(
    name="list",
    examples="""\
  crmflow execution list
  crmflow execution list --status FAILED --limit 5""",
)
@click.option("--workflow", "workflow_id", default=None, help="Filter by workflow id.")
@click.option(
    "--status",
    type=click.Choice([s.value for s in ExecutionStatus], case_sensitive=False),
    default=None,
    help="Filter by status.",
)
@click.option("--limit", default=20, type=int, help="Max results.")
@click.pass_obj
def list_cmd(app: AppContext, workflow_id: str | None, status: str | None, limit: int) -> None:
    """List recent executions, newest first."""
    svc = ExecutionService(app.workspace)
    app.emit(
        svc.list_executions(
            workflow_id=workflow_id, status=status.upper() if status else None, limit=limit
        )
    )


@execution.command(examples="  crmflow execution show RUN-0001")
@click.argument("execution_id")
@click.pass_obj
def show(app: AppContext, execution_id: str) -> None:
    """Show an execution with its per-node step log."""
    app.emit(ExecutionService(app.workspace).get_execution(execution_id))
