"""Example output shapes used to offer variables in the builder.

Before a workflow has ever run, the builder still needs to know which
``{{ paths }}`` each upstream node will publish. These example contexts
stand in for real outputs, and :func:`build_variable_tree` turns them
into a browsable tree.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel

from crmflow.domain.types import NodeType

MAX_ARRAY_ITEMS = 5

EXAMPLE_CONTACT: dict[str, Any] = {
    "id": "contact-id",
    "name": "Jane Smith",
    "email": "jane@example.com",
    "phone": "9876543210",
    "companyName": "Example Corp",
    "position": "Manager",
    "type": "LEAD",
    "lifecycleStage": "LEAD",
    "source": "Web Form",
    "country": "United States",
    "city": "New York",
    "createdAt": "2025-01-01T00:00:00.000Z",
    "updatedAt": "2025-01-01T00:00:00.000Z",
}

EXAMPLE_DEAL: dict[str, Any] = {
    "id": "deal-id",
    "name": "Deal Name",
    "value": 10000.0,
    "currency": "USD",
    "deadline": "2025-01-31T00:00:00.000Z",
    "source": "Inbound Lead",
    "pipelineId": "pipeline-id",
    "pipelineStageId": "stage-id",
    "contactIds": ["contact-id"],
    "createdAt": "2025-01-01T00:00:00.000Z",
    "updatedAt": "2025-01-01T00:00:00.000Z",
}

_CONTACT_CHANGE: dict[str, Any] = {
    "contact": EXAMPLE_CONTACT,
    "field": "lifecycleStage",
    "oldValue": "LEAD",
    "newValue": "MQL",
    "changedAt": "2025-01-01T00:00:00.000Z",
}

_EXAMPLES: dict[NodeType, Any] = {
    NodeType.MANUAL_TRIGGER: {"triggeredAt": "2025-01-01T00:00:00.000Z", "userId": "user-id"},
    NodeType.INITIAL: {"triggeredAt": "2025-01-01T00:00:00.000Z", "userId": "user-id"},
    NodeType.CONTACT_CREATED_TRIGGER: {"contact": EXAMPLE_CONTACT},
    NodeType.CONTACT_UPDATED_TRIGGER: {"contact": EXAMPLE_CONTACT, "changes": ["email"]},
    NodeType.CONTACT_DELETED_TRIGGER: {"contact": EXAMPLE_CONTACT},
    NodeType.CONTACT_FIELD_CHANGED_TRIGGER: _CONTACT_CHANGE,
    NodeType.CONTACT_TYPE_CHANGED_TRIGGER: {**_CONTACT_CHANGE, "field": "type"},
    NodeType.CONTACT_LIFECYCLE_STAGE_CHANGED_TRIGGER: _CONTACT_CHANGE,
    NodeType.DEAL_CREATED_TRIGGER: {"deal": EXAMPLE_DEAL},
    NodeType.DEAL_UPDATED_TRIGGER: {"deal": EXAMPLE_DEAL, "changes": ["value"]},
    NodeType.DEAL_DELETED_TRIGGER: {"deal": EXAMPLE_DEAL},
    NodeType.IF_ELSE: {
        "result": True,
        "leftValue": "example",
        "rightValue": "example",
        "operator": "equals",
        "branchToFollow": "true",
    },
    NodeType.SWITCH: {"value": "example", "matchedCase": 0, "label": "Case 1", "branchToFollow": "case-0"},
    NodeType.LOOP: {"completed": True, "totalIterations": 2, "items": ["item1", "item2"]},
    NodeType.SET_VARIABLE: "example value",
    NodeType.WAIT: {"duration": 5, "unit": "minutes", "seconds": 300, "waited": 300},
    NodeType.STOP_WORKFLOW: {"stopped": True, "reason": "Condition not met"},
    NodeType.BUNDLE_WORKFLOW: {"result": "example result"},
    NodeType.CREATE_CONTACT: EXAMPLE_CONTACT,
    NodeType.UPDATE_CONTACT: EXAMPLE_CONTACT,
    NodeType.DELETE_CONTACT: {"id": "contact-id", "deleted": True},
    NodeType.FIND_CONTACTS: [EXAMPLE_CONTACT],
    NodeType.CREATE_DEAL: EXAMPLE_DEAL,
    NodeType.UPDATE_DEAL: EXAMPLE_DEAL,
    NodeType.DELETE_DEAL: {"id": "deal-id", "deleted": True},
    NodeType.MOVE_DEAL_STAGE: {**EXAMPLE_DEAL, "previousStageId": "stage-id"},
    NodeType.ADD_DEAL_NOTE: {"id": "note-id", "dealId": "deal-id", "note": "Note text"},
    NodeType.UPDATE_PIPELINE: {
        "id": "deal-id",
        "name": "Deal Name",
        "pipelineId": "pipeline-id",
        "pipelineStageId": "stage-id",
        "pipelineName": "Sales",
        "pipelineStageName": "Qualified",
        "updatedAt": "2025-01-01T00:00:00.000Z",
    },
}

_GENERIC_EXAMPLE: dict[str, Any] = {"id": "result-id", "success": True}

_TYPE_EXAMPLES: dict[str, Any] = {
    "string": "example text",
    "number": 42,
    "boolean": True,
    "array": ["item1", "item2"],
    "object": {"key": "value"},
    "date": "2025-01-01T00:00:00.000Z",
}


def example_context(node_type: NodeType | str, data: Mapping[str, Any] | None = None) -> Any:
    """Return the example output a node of *node_type* publishes."""
    try:
        kind = NodeType(node_type)
    except ValueError:
        return dict(_GENERIC_EXAMPLE)
    if kind is NodeType.SET_VARIABLE and data and data.get("value"):
        # Show the literal value when it has no template expressions.
        value = data["value"]
        if isinstance(value, str) and "{{" not in value:
            return value
    if kind is NodeType.BUNDLE_WORKFLOW and data and data.get("outputs"):
        return {name: "example value" for name in data["outputs"]}
    return _EXAMPLES.get(kind, dict(_GENERIC_EXAMPLE))


def example_value_for_type(type_name: str) -> Any:
    """Placeholder value for a bundle input declared with *type_name*."""
    return _TYPE_EXAMPLES.get(type_name.lower(), "example value")


class VariableItem(BaseModel):
    """One entry in the variable picker tree."""

    model_config = {"frozen": True}

    path: str
    label: str
    type: Literal["object", "array", "primitive"]
    children: list[VariableItem] | None = None


def build_variable_tree(obj: Mapping[str, Any], parent_path: str = "") -> list[VariableItem]:
    """Flatten a context mapping into a nested list of :class:`VariableItem`.

    Arrays expose at most ``MAX_ARRAY_ITEMS`` indices as children.
    """
    items: list[VariableItem] = []
    for key, value in obj.items():
        path = f"{parent_path}.{key}" if parent_path else str(key)
        if isinstance(value, list):
            children = [_array_child(path, i, item) for i, item in enumerate(value[:MAX_ARRAY_ITEMS])]
            items.append(VariableItem(path=path, label=key, type="array", children=children or None))
        elif isinstance(value, Mapping):
            children = build_variable_tree(value, path)
            items.append(VariableItem(path=path, label=key, type="object", children=children or None))
        else:
            items.append(VariableItem(path=path, label=key, type="primitive"))
    return items


def _array_child(path: str, index: int, item: Any) -> VariableItem:
    child_path = f"{path}.{index}"
    label = f"[{index}]"
    if isinstance(item, Mapping):
        return VariableItem(
            path=child_path,
            label=label,
            type="object",
            children=build_variable_tree(item, child_path),
        )
    return VariableItem(path=child_path, label=label, type="primitive")
