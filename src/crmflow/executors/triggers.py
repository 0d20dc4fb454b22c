"""Trigger and INITIAL executors.

A trigger node starts the run: it publishes the payload the run was
started with under its ``variableName`` at the context root.
"""

from __future__ import annotations

from crmflow.domain.types import NodeType
from crmflow.domain.workflow import TriggerConfig
from crmflow.executors.base import Context, ExecutionRequest, node_status, parse_config, with_output

DEFAULT_TRIGGER_VARIABLES: dict[NodeType, str] = {
    NodeType.INITIAL: "trigger",
    NodeType.MANUAL_TRIGGER: "trigger",
    NodeType.CONTACT_CREATED_TRIGGER: "contactEvent",
    NodeType.CONTACT_UPDATED_TRIGGER: "contactEvent",
    NodeType.CONTACT_DELETED_TRIGGER: "contactEvent",
    NodeType.CONTACT_FIELD_CHANGED_TRIGGER: "contactEvent",
    NodeType.CONTACT_TYPE_CHANGED_TRIGGER: "contactEvent",
    NodeType.CONTACT_LIFECYCLE_STAGE_CHANGED_TRIGGER: "contactEvent",
    NodeType.DEAL_CREATED_TRIGGER: "dealEvent",
    NodeType.DEAL_UPDATED_TRIGGER: "dealEvent",
    NodeType.DEAL_DELETED_TRIGGER: "dealEvent",
}


def trigger_variable(node_type: NodeType, configured: str | None) -> str:
    return configured or DEFAULT_TRIGGER_VARIABLES.get(node_type, "trigger")


def trigger_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(TriggerConfig, request)
        name = trigger_variable(request.node_type, config.variable_name)
        return with_output(request.context, name, dict(request.runtime.trigger_data))
