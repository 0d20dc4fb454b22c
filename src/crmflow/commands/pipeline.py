"""Command group: sales pipelines."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from crmflow.commands._base import CrmGroup
from crmflow.services.crm import PipelineService

if TYPE_CHECKING:
    from crmflow.commands._context import AppContext

_PIPELINE_EXAMPLES = """\
  crmflow pipeline create Partners --stage Intro --stage Pilot --stage Signed
  crmflow pipeline list
  crmflow pipeline show pl_0123456789ab"""


@click.group(cls=CrmGroup, examples=_PIPELINE_EXAMPLES)
@click.pass_obj
def pipeline(app: AppContext) -> None:
    """Manage sales pipelines and their stages."""


@pipeline.command(
    examples="""\
  crmflow pipeline create Partners --stage Intro --stage Pilot --stage Signed
  crmflow pipeline create Enterprise --stages "Lead,Demo,Won,Lost" --default"""
)
@click.argument("name")
@click.option("--stage", "stage_list", multiple=True, help="Stage name, in order (repeatable).")
@click.option("--stages", default=None, help="Comma-separated stage names.")
@click.option("--description", default=None, help="Free-text description.")
@click.option("--default", "is_default", is_flag=True, help="Make this the default pipeline.")
@click.pass_obj
def create(
    app: AppContext,
    name: str,
    stage_list: tuple[str, ...],
    stages: str | None,
    description: str | None,
    is_default: bool,
) -> None:
    """Create a pipeline with ordered stages."""
    names = list(stage_list)
    if stages:
        names.extend(s.strip() for s in stages.split(","))
    app.emit(
        PipelineService(app.workspace).create_pipeline(
            name, names, description=description, is_default=is_default
        )
    )


@pipeline.command(name="list", examples="  crmflow pipeline list")
@click.pass_obj
def list_cmd(app: AppContext) -> None:
    """List pipelines."""
    app.emit(PipelineService(app.workspace).list_pipelines())


@pipeline.command(examples="  crmflow pipeline show pl_0123456789ab")
@click.argument("pipeline_id")
@click.pass_obj
def show(app: AppContext, pipeline_id: str) -> None:
    """Show a pipeline and its stages."""
    app.emit(PipelineService(app.workspace).get_pipeline(pipeline_id))


@pipeline.command(
    examples="""\
  crmflow pipeline update pl_0123456789ab --name "Sales (EMEA)"
  crmflow pipeline update pl_0123456789ab --default"""
)
@click.argument("pipeline_id")
@click.option("--name", default=None, help="New name.")
@click.option("--description", default=None, help="New description.")
@click.option("--default", "is_default", is_flag=True, default=None, help="Make default.")
@click.option("--active/--inactive", "is_active", default=None, help="Activate or deactivate.")
@click.pass_obj
def update(
    app: AppContext,
    pipeline_id: str,
    name: str | None,
    description: str | None,
    is_default: bool | None,
    is_active: bool | None,
) -> None:
    """Update a pipeline."""
    app.emit(
        PipelineService(app.workspace).update_pipeline(
            pipeline_id,
            name=name,
            description=description,
            is_default=is_default or None,
            is_active=is_active,
        )
    )
