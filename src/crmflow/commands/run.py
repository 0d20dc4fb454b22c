"""Command: run a workflow manually."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from crmflow.commands._base import CrmCommand
from crmflow.commands._context import parse_json_arg

if TYPE_CHECKING:
    from crmflow.commands._context import AppContext

_RUN_EXAMPLES = """\
  crmflow run wf_0123456789ab
  crmflow run wf_0123456789ab --data '{"email": "ada@example.com"}'
  crmflow --json run wf_0123456789ab"""


@click.command("run", cls=CrmCommand, examples=_RUN_EXAMPLES)
@click.argument("workflow_id")
@click.option("--data", default=None, help="JSON object merged into the trigger payload.")
@click.pass_obj
def run(app: AppContext, workflow_id: str, data: str | None) -> None:
    """Execute a workflow from its manual trigger."""
    from crmflow.services.execution import ExecutionService

    payload = parse_json_arg(app, "execute_workflow", data)
    if payload is not None and not isinstance(payload, dict):
        app.fail("execute_workflow", "--data must be a JSON object")
    app.emit(ExecutionService(app.workspace).execute(workflow_id, trigger_data=payload))
