"""Command: workspace initialization (named init_cmd to avoid shadowing builtins)."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import click

from crmflow.commands._base import CrmCommand

if TYPE_CHECKING:
    from crmflow.commands._context import AppContext

_INIT_EXAMPLES = """\
  crmflow init
  crmflow init /path/to/workspace --name acme
  crmflow init . --name acme --org acme-corp --subaccount emea
  crmflow init /tmp/ws --no-sample-pipeline"""


@click.command("init", cls=CrmCommand, examples=_INIT_EXAMPLES)
@click.argument("path", required=False, default=".")
@click.option("--name", default=None, help="Workspace name (defaults to the directory name).")
@click.option("--org", "organization_id", default="default", help="Organization id.")
@click.option("--subaccount", "subaccount_id", default=None, help="Sub-account id.")
@click.option("--no-sample-pipeline", is_flag=True, help="Skip creating the Sales pipeline.")
@click.pass_obj
def init_cmd(
    app: AppContext,
    path: str,
    name: str | None,
    organization_id: str,
    subaccount_id: str | None,
    no_sample_pipeline: bool,
) -> None:
    """Initialize a new crmflow workspace."""
    from crmflow.services.init import InitService

    workspace_path = Path(path).resolve()
    app.emit(
        InitService.init_workspace(
            workspace_path,
            name=name or workspace_path.name,
            organization_id=organization_id,
            subaccount_id=subaccount_id,
            sample_pipeline=not no_sample_pipeline,
        )
    )
