"""Command group: workflow definitions, graphs, bundles and templates."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from crmflow.commands._base import CrmGroup
from crmflow.commands._context import parse_json_arg, read_json_file
from crmflow.services.context import ContextService
from crmflow.services.workflow import WorkflowService

if TYPE_CHECKING:
    from crmflow.commands._context import AppContext

_WORKFLOW_EXAMPLES = """\
  crmflow workflow create "Welcome new leads"
  crmflow workflow list --search welcome
  crmflow workflow show wf_0123456789ab
  crmflow workflow save wf_0123456789ab graph.json
  crmflow workflow rename-var wf_0123456789ab nd_0123456789ab lead
  crmflow workflow export wf_0123456789ab > welcome.yaml"""


@click.group(cls=CrmGroup, examples=_WORKFLOW_EXAMPLES)
@click.pass_obj
def workflow(app: AppContext) -> None:
    """Create, edit and inspect workflows."""


@workflow.command(
    examples="""\
  crmflow workflow create
  crmflow workflow create "Lead nurture" --description "Drip for new leads"
  crmflow workflow create "Enrich contact" --bundle"""
)
@click.argument("name", required=False)
@click.option("--description", default=None, help="Free-text description.")
@click.option("--bundle", is_flag=True, help="Create as a reusable bundle.")
@click.pass_obj
def create(app: AppContext, name: str | None, description: str | None, bundle: bool) -> None:
    """Create a workflow seeded with a start node (random name if omitted)."""
    svc = WorkflowService(app.workspace)
    app.emit(svc.create_workflow(name, description=description, bundle=bundle))


@workflow.command(
    name="list",
    examples="""\
  crmflow workflow list
  crmflow workflow list --archived
  crmflow workflow list --bundles
  crmflow --json workflow list --search lead""",
)
@click.option("--search", default=None, help="Case-insensitive name filter.")
@click.option("--archived", is_flag=True, help="List archived workflows instead.")
@click.option("--bundles", "bundles", flag_value=True, default=None, help="Only bundles.")
@click.option("--templates", is_flag=True, help="List templates instead.")
@click.option("--limit", default=50, type=int, help="Max results.")
@click.pass_obj
def list_cmd(
    app: AppContext,
    search: str | None,
    archived: bool,
    bundles: bool | None,
    templates: bool,
    limit: int,
) -> None:
    """List workflows in the current organization."""
    svc = WorkflowService(app.workspace)
    app.emit(
        svc.list_workflows(
            search=search, archived=archived, bundles=bundles, templates=templates, limit=limit
        )
    )


@workflow.command(examples="  crmflow workflow show wf_0123456789ab")
@click.argument("workflow_id")
@click.pass_obj
def show(app: AppContext, workflow_id: str) -> None:
    """Show a workflow with its nodes and connections."""
    app.emit(WorkflowService(app.workspace).get_workflow(workflow_id))


@workflow.command(
    examples="""\
  crmflow workflow save wf_0123456789ab graph.json
  cat graph.json | crmflow workflow save wf_0123456789ab -"""
)
@click.argument("workflow_id")
@click.argument("graph_file", default="-")
@click.pass_obj
def save(app: AppContext, workflow_id: str, graph_file: str) -> None:
    """Replace a workflow's graph from a JSON document.

    The document holds ``nodes`` and ``connections`` as produced by
    ``crmflow --json workflow show``.
    """
    graph = read_json_file(app, "save_graph", graph_file)
    if isinstance(graph, dict) and "data" in graph and "nodes" not in graph:
        graph = graph["data"]
    app.emit(WorkflowService(app.workspace).save_graph(workflow_id, graph))


@workflow.command(examples='  crmflow workflow rename wf_0123456789ab "Lead nurture v2"')
@click.argument("workflow_id")
@click.argument("name")
@click.option("--description", default=None, help="Replace the description too.")
@click.pass_obj
def rename(app: AppContext, workflow_id: str, name: str, description: str | None) -> None:
    """Rename a workflow."""
    svc = WorkflowService(app.workspace)
    app.emit(svc.rename_workflow(workflow_id, name, description=description))


@workflow.command(examples="  crmflow workflow archive wf_0123456789ab")
@click.argument("workflow_id")
@click.pass_obj
def archive(app: AppContext, workflow_id: str) -> None:
    """Archive a workflow (it stops running and listening for triggers)."""
    app.emit(WorkflowService(app.workspace).set_archived(workflow_id, True))


@workflow.command(examples="  crmflow workflow unarchive wf_0123456789ab")
@click.argument("workflow_id")
@click.pass_obj
def unarchive(app: AppContext, workflow_id: str) -> None:
    """Restore an archived workflow."""
    app.emit(WorkflowService(app.workspace).set_archived(workflow_id, False))


@workflow.command(
    examples="""\
  crmflow workflow delete wf_0123456789ab
  crmflow workflow delete wf_0123456789ab --force"""
)
@click.argument("workflow_id")
@click.option("--force", is_flag=True, help="Delete a bundle even if other workflows use it.")
@click.pass_obj
def delete(app: AppContext, workflow_id: str, force: bool) -> None:
    """Delete a workflow with its graph and execution history."""
    app.emit(WorkflowService(app.workspace).delete_workflow(workflow_id, force=force))


@workflow.command(
    name="rename-var",
    examples="  crmflow workflow rename-var wf_0123456789ab nd_0123456789ab lead",
)
@click.argument("workflow_id")
@click.argument("node_id")
@click.argument("new_name")
@click.pass_obj
def rename_var(app: AppContext, workflow_id: str, node_id: str, new_name: str) -> None:
    """Rename a node's variable and update references downstream."""
    svc = WorkflowService(app.workspace)
    app.emit(svc.rename_variable(workflow_id, node_id, new_name))


@workflow.command(examples="  crmflow workflow variables wf_0123456789ab nd_0123456789ab")
@click.argument("workflow_id")
@click.argument("node_id")
@click.pass_obj
def variables(app: AppContext, workflow_id: str, node_id: str) -> None:
    """Show the variables a node can reference."""
    app.emit(ContextService(app.workspace).available_variables(workflow_id, node_id))


@workflow.command(
    examples="""\
  crmflow workflow export wf_0123456789ab
  crmflow -q workflow export wf_0123456789ab > nurture.yaml"""
)
@click.argument("workflow_id")
@click.pass_obj
def export(app: AppContext, workflow_id: str) -> None:
    """Export a workflow and its graph as YAML."""
    app.emit(WorkflowService(app.workspace).export_workflow(workflow_id))


@workflow.command(
    name="import",
    examples="""\
  crmflow workflow import nurture.yaml
  crmflow workflow import nurture.yaml --name "Nurture (copy)\"""",
)
@click.argument("source", type=click.File("r", encoding="utf-8"))
@click.option("--name", default=None, help="Override the imported workflow's name.")
@click.pass_obj
def import_cmd(app: AppContext, source: click.utils.LazyFile, name: str | None) -> None:
    """Create a workflow from an exported YAML document."""
    app.emit(WorkflowService(app.workspace).import_workflow(source.read(), name=name))


@workflow.command(examples='  crmflow workflow template wf_0123456789ab --name "Onboarding"')
@click.argument("workflow_id")
@click.option("--name", default=None, help="Template name.")
@click.pass_obj
def template(app: AppContext, workflow_id: str, name: str | None) -> None:
    """Save a workflow as a reusable template."""
    svc = WorkflowService(app.workspace)
    app.emit(svc.create_template_from_workflow(workflow_id, name=name))


@workflow.command(
    name="from-template",
    examples='  crmflow workflow from-template wf_0123456789ab --name "Onboarding ACME"',
)
@click.argument("template_id")
@click.option("--name", default=None, help="Name of the new workflow.")
@click.pass_obj
def from_template(app: AppContext, template_id: str, name: str | None) -> None:
    """Create a workflow from a template."""
    svc = WorkflowService(app.workspace)
    app.emit(svc.create_workflow_from_template(template_id, name=name))


@workflow.command(
    name="bundle-config",
    examples="""\
  crmflow workflow bundle-config wf_0123456789ab \\
      --inputs '[{"name": "email", "type": "string"}]' \\
      --outputs '[{"name": "contact", "variablePath": "found.0"}]'""",
)
@click.argument("workflow_id")
@click.option("--inputs", default=None, help="JSON array of input definitions.")
@click.option("--outputs", default=None, help="JSON array of output definitions.")
@click.pass_obj
def bundle_config(
    app: AppContext, workflow_id: str, inputs: str | None, outputs: str | None
) -> None:
    """Declare the inputs and outputs of a bundle."""
    parsed_inputs = parse_json_arg(app, "update_bundle_config", inputs)
    parsed_outputs = parse_json_arg(app, "update_bundle_config", outputs)
    svc = WorkflowService(app.workspace)
    app.emit(svc.update_bundle_config(workflow_id, inputs=parsed_inputs, outputs=parsed_outputs))


@workflow.command(
    examples="""\
  crmflow workflow bundle wf_0123456789ab --on
  crmflow workflow bundle wf_0123456789ab --off
  crmflow workflow bundle wf_0123456789ab --parents"""
)
@click.argument("workflow_id")
@click.option("--on/--off", "enabled", default=None, help="Turn bundle mode on or off.")
@click.option("--parents", is_flag=True, help="List workflows that call this bundle.")
@click.pass_obj
def bundle(app: AppContext, workflow_id: str, enabled: bool | None, parents: bool) -> None:
    """Toggle bundle mode or list a bundle's callers."""
    svc = WorkflowService(app.workspace)
    if parents or enabled is None:
        app.emit(svc.parent_workflows(workflow_id))
    else:
        app.emit(svc.toggle_bundle(workflow_id, enabled))
