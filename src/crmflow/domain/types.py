"""Node types, connection handles, and status enums.

Node types mirror the node palette of the visual builder: one entry
node, CRM triggers, control-flow nodes, and CRM actions.
"""

from __future__ import annotations

from enum import StrEnum


class NodeType(StrEnum):
    """Every node type the interpreter knows how to execute."""

    INITIAL = "INITIAL"
    MANUAL_TRIGGER = "MANUAL_TRIGGER"

    # CRM triggers
    CONTACT_CREATED_TRIGGER = "CONTACT_CREATED_TRIGGER"
    CONTACT_UPDATED_TRIGGER = "CONTACT_UPDATED_TRIGGER"
    CONTACT_DELETED_TRIGGER = "CONTACT_DELETED_TRIGGER"
    CONTACT_FIELD_CHANGED_TRIGGER = "CONTACT_FIELD_CHANGED_TRIGGER"
    CONTACT_TYPE_CHANGED_TRIGGER = "CONTACT_TYPE_CHANGED_TRIGGER"
    CONTACT_LIFECYCLE_STAGE_CHANGED_TRIGGER = "CONTACT_LIFECYCLE_STAGE_CHANGED_TRIGGER"
    DEAL_CREATED_TRIGGER = "DEAL_CREATED_TRIGGER"
    DEAL_UPDATED_TRIGGER = "DEAL_UPDATED_TRIGGER"
    DEAL_DELETED_TRIGGER = "DEAL_DELETED_TRIGGER"

    # Control flow
    IF_ELSE = "IF_ELSE"
    SWITCH = "SWITCH"
    LOOP = "LOOP"
    SET_VARIABLE = "SET_VARIABLE"
    WAIT = "WAIT"
    STOP_WORKFLOW = "STOP_WORKFLOW"
    BUNDLE_WORKFLOW = "BUNDLE_WORKFLOW"

    # CRM actions
    CREATE_CONTACT = "CREATE_CONTACT"
    UPDATE_CONTACT = "UPDATE_CONTACT"
    DELETE_CONTACT = "DELETE_CONTACT"
    FIND_CONTACTS = "FIND_CONTACTS"
    CREATE_DEAL = "CREATE_DEAL"
    UPDATE_DEAL = "UPDATE_DEAL"
    DELETE_DEAL = "DELETE_DEAL"
    MOVE_DEAL_STAGE = "MOVE_DEAL_STAGE"
    ADD_DEAL_NOTE = "ADD_DEAL_NOTE"
    UPDATE_PIPELINE = "UPDATE_PIPELINE"


TRIGGER_TYPES: frozenset[NodeType] = frozenset(
    {
        NodeType.INITIAL,
        NodeType.MANUAL_TRIGGER,
        NodeType.CONTACT_CREATED_TRIGGER,
        NodeType.CONTACT_UPDATED_TRIGGER,
        NodeType.CONTACT_DELETED_TRIGGER,
        NodeType.CONTACT_FIELD_CHANGED_TRIGGER,
        NodeType.CONTACT_TYPE_CHANGED_TRIGGER,
        NodeType.CONTACT_LIFECYCLE_STAGE_CHANGED_TRIGGER,
        NodeType.DEAL_CREATED_TRIGGER,
        NodeType.DEAL_UPDATED_TRIGGER,
        NodeType.DEAL_DELETED_TRIGGER,
    }
)

# Nodes whose outgoing connections are filtered by ``branchToFollow``.
BRANCHING_TYPES: frozenset[NodeType] = frozenset(
    {NodeType.IF_ELSE, NodeType.SWITCH, NodeType.LOOP}
)


class Handle(StrEnum):
    """Named connection handles on node ports."""

    MAIN = "main"
    TRUE = "true"
    FALSE = "false"
    DEFAULT = "default"
    LOOP_BODY = "loop-body"
    AFTER_LOOP = "after-loop"
    LOOP_BACK = "loop-back"


def case_handle(index: int) -> str:
    """Source handle id for the *index*-th SWITCH case."""
    return f"case-{index}"


class ExecutionStatus(StrEnum):
    """Lifecycle of a workflow execution record."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    STOPPED = "STOPPED"


class NodeStatus(StrEnum):
    """Realtime status published for each node during a run."""

    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class ContactType(StrEnum):
    LEAD = "LEAD"
    PROSPECT = "PROSPECT"
    CUSTOMER = "CUSTOMER"
    CHURN = "CHURN"
    CLOSED = "CLOSED"


class LifecycleStage(StrEnum):
    SUBSCRIBER = "SUBSCRIBER"
    LEAD = "LEAD"
    MQL = "MQL"
    SQL = "SQL"
    OPPORTUNITY = "OPPORTUNITY"
    CUSTOMER = "CUSTOMER"
    EVANGELIST = "EVANGELIST"
