"""Node type -> executor lookup."""

from __future__ import annotations

from crmflow.domain.types import TRIGGER_TYPES, NodeType
from crmflow.executors.base import NodeExecutionError, NodeExecutor
from crmflow.executors.bundle import bundle_workflow_executor
from crmflow.executors.control import (
    if_else_executor,
    loop_executor,
    set_variable_executor,
    stop_workflow_executor,
    switch_executor,
    wait_executor,
)
from crmflow.executors.crm import (
    add_deal_note_executor,
    create_contact_executor,
    create_deal_executor,
    delete_contact_executor,
    delete_deal_executor,
    find_contacts_executor,
    move_deal_stage_executor,
    update_contact_executor,
    update_deal_executor,
    update_pipeline_executor,
)
from crmflow.executors.triggers import trigger_executor

EXECUTOR_REGISTRY: dict[NodeType, NodeExecutor] = {
    **{trigger: trigger_executor for trigger in TRIGGER_TYPES},
    NodeType.IF_ELSE: if_else_executor,
    NodeType.SWITCH: switch_executor,
    NodeType.LOOP: loop_executor,
    NodeType.SET_VARIABLE: set_variable_executor,
    NodeType.WAIT: wait_executor,
    NodeType.STOP_WORKFLOW: stop_workflow_executor,
    NodeType.BUNDLE_WORKFLOW: bundle_workflow_executor,
    NodeType.CREATE_CONTACT: create_contact_executor,
    NodeType.UPDATE_CONTACT: update_contact_executor,
    NodeType.DELETE_CONTACT: delete_contact_executor,
    NodeType.FIND_CONTACTS: find_contacts_executor,
    NodeType.CREATE_DEAL: create_deal_executor,
    NodeType.UPDATE_DEAL: update_deal_executor,
    NodeType.DELETE_DEAL: delete_deal_executor,
    NodeType.MOVE_DEAL_STAGE: move_deal_stage_executor,
    NodeType.ADD_DEAL_NOTE: add_deal_note_executor,
    NodeType.UPDATE_PIPELINE: update_pipeline_executor,
}


def get_executor(node_type: NodeType | str) -> NodeExecutor:
    """Return the executor for *node_type*.

    Raises:
        NodeExecutionError: If no executor is registered for the type.
    """
    try:
        return EXECUTOR_REGISTRY[NodeType(node_type)]
    except (KeyError, ValueError) as exc:
        msg = f"No executor found for node type: {node_type}"
        raise NodeExecutionError(msg, node_type=str(node_type)) from exc
