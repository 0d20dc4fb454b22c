"""ContextService — which variables a node can reference.

The builder's variable picker shows, for a given node, an example of
every value published upstream of it. Inside a bundle it also shows the
bundle's declared inputs and the calling workflows, keyed by workflow
name then node name (the shape ``parentContext`` has at run time).
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from crmflow.domain.examples import build_variable_tree, example_context, example_value_for_type
from crmflow.domain.types import TRIGGER_TYPES, NodeType
from crmflow.domain.workflow import BundleInput, NodeSpec
from crmflow.executors.triggers import trigger_variable
from crmflow.infrastructure.database.schema import workflows
from crmflow.infrastructure.graph.engine import FlowGraph
from crmflow.services._helpers import loads
from crmflow.services.base import BaseService
from crmflow.services.result import ErrorCode, ServiceResult
from crmflow.services.telemetry import traced
from crmflow.services.workflow import WorkflowService

_PARENT_PLACEHOLDER = {
    "nodeName1": {"field1": "example value", "field2": 123},
    "nodeName2": {"result": "example result"},
}


def _published_name(node: NodeSpec) -> str | None:
    if node.type in TRIGGER_TYPES:
        return trigger_variable(node.type, node.variable_name)
    return node.variable_name


def upstream_context(graph: FlowGraph, node_id: str) -> dict[str, Any]:
    """Example context assembled from every node upstream of *node_id*."""
    context: dict[str, Any] = {}
    upstream = graph.upstream(node_id)
    for candidate in graph.execution_order():
        if candidate not in upstream:
            continue
        node = graph.node(candidate)
        name = _published_name(node)
        if name:
            context[name] = example_context(node.type, node.data)
        if node.type == NodeType.LOOP and node_id in graph.loop_body(candidate):
            item_name = node.data.get("itemVariableName") or "item"
            context[item_name] = example_value_for_type("object")
            index_name = node.data.get("indexVariableName")
            if index_name:
                context[index_name] = 0
    return context


class ContextService(BaseService):
    """Variable trees for the builder."""

    @traced
    def available_variables(self, workflow_id: str, node_id: str) -> ServiceResult:
        op = "available_variables"
        with self._workspace.engine.connect() as conn:
            row = conn.execute(
                select(workflows).where(
                    workflows.c.id == workflow_id,
                    workflows.c.organization_id == self._org,
                )
            ).first()
        if row is None:
            return ServiceResult.failure(
                op, ErrorCode.NOT_FOUND, f"Workflow not found: {workflow_id}"
            )
        graph = self._workspace.graph.get(workflow_id)
        if node_id not in graph:
            return ServiceResult.failure(op, ErrorCode.NOT_FOUND, f"Node not found: {node_id}")

        context = upstream_context(graph, node_id)
        if row.is_bundle:
            for item in loads(row.bundle_inputs, []):
                spec = BundleInput.model_validate(item)
                if spec.default_value is not None:
                    context[spec.name] = spec.default_value
                else:
                    context[spec.name] = example_value_for_type(spec.type)
            parents = self._parent_contexts(workflow_id)
            if parents:
                context.update(parents)
            else:
                context[row.name] = _PARENT_PLACEHOLDER

        tree = build_variable_tree(context)
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "workflow_id": workflow_id,
                "node_id": node_id,
                "context": context,
                "variables": [item.model_dump(exclude_none=True) for item in tree],
            },
        )

    def _parent_contexts(self, bundle_id: str) -> dict[str, dict[str, Any]]:
        parents = WorkflowService(self._workspace).parent_workflows(bundle_id).data["items"]
        contexts: dict[str, dict[str, Any]] = {}
        for parent in parents:
            graph = self._workspace.graph.get(parent["id"])
            outputs: dict[str, Any] = {}
            for node in graph.nodes:
                if _published_name(node):
                    outputs[node.display_name] = example_context(node.type, node.data)
            contexts[parent["name"]] = outputs
        return contexts
