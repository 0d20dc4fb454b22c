"""BUNDLE_WORKFLOW executor: run a reusable bundle workflow as one node.

The bundle runs against an isolated context holding only its inputs
(at the root and under ``variables``) and ``parentContext``, a view of
the calling workflow as ``{workflow name: {node name: output}}``. Its
declared outputs are copied back into the caller under
``variables[variableName]``.
"""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy import select

from crmflow.domain.variables import lookup_variable, resolve_value
from crmflow.domain.workflow import BundleInput, BundleOutput, BundleWorkflowConfig
from crmflow.executors.base import (
    Context,
    ExecutionRequest,
    fail,
    node_status,
    parse_config,
    with_variable,
)
from crmflow.infrastructure.database.schema import workflows


def _load_bundle(request: ExecutionRequest, bundle_id: str) -> Any:
    workspace = request.runtime.workspace
    if workspace is None:
        raise fail(request, "This workflow must be in an organization context.")
    with workspace.engine.connect() as conn:
        row = conn.execute(
            select(workflows).where(
                workflows.c.id == bundle_id,
                workflows.c.organization_id == workspace.organization_id,
            )
        ).first()
    if row is None:
        raise fail(request, f"Bundle workflow {bundle_id} not found")
    if not row.is_bundle:
        raise fail(request, f"Workflow {bundle_id} is not a bundle workflow")
    return row


def build_bundle_inputs(
    config: BundleWorkflowConfig,
    definitions: list[BundleInput],
    context: Context,
) -> dict[str, Any]:
    """Resolve input mappings against the caller, then fill declared defaults."""
    inputs: dict[str, Any] = {}
    for mapping in config.input_mappings:
        inputs[mapping.bundle_input_name] = resolve_value(mapping.value, context)
    for definition in definitions:
        if inputs.get(definition.name) is None and definition.default_value is not None:
            inputs[definition.name] = definition.default_value
    return inputs


def extract_bundle_outputs(outputs: list[BundleOutput], bundle_context: Context) -> dict[str, Any]:
    """Pick declared outputs out of a finished bundle context.

    Without declared outputs the whole bundle context is returned as ``result``.
    """
    if not outputs:
        return {"result": bundle_context}
    return {out.name: lookup_variable(bundle_context, out.variable_path) for out in outputs}


def bundle_workflow_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(BundleWorkflowConfig, request)
        runtime = request.runtime
        if runtime.run_graph is None or runtime.workspace is None:
            raise fail(request, "Bundles cannot run outside a workflow execution.")
        limit = runtime.config.max_bundle_depth
        if runtime.bundle_depth >= limit:
            raise fail(request, f"Bundle nesting exceeds the limit of {limit}.")

        row = _load_bundle(request, config.bundle_workflow_id)
        definitions = [BundleInput.model_validate(d) for d in json.loads(row.bundle_inputs or "[]")]
        outputs = [BundleOutput.model_validate(d) for d in json.loads(row.bundle_outputs or "[]")]

        inputs = build_bundle_inputs(config, definitions, request.context)
        parent_context = {runtime.workflow_name: dict(runtime.node_outputs)}
        bundle_context: Context = {
            **inputs,
            "parentContext": parent_context,
            "variables": {**inputs, "parentContext": parent_context},
        }

        graph = runtime.workspace.graph.get(row.id)
        child = runtime.for_bundle(row.id, row.name)
        finished = runtime.run_graph(graph, bundle_context, child)
        return with_variable(
            request.context,
            config.variable_name,
            extract_bundle_outputs(outputs, finished),
        )
