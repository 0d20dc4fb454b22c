"""Translate CRM record changes into trigger events.

Each function returns the ``(trigger type, payload)`` pairs a change
fires. The payload is what the trigger node later publishes under its
``variableName``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from crmflow.domain.types import NodeType

type TriggerEvent = tuple[NodeType, dict[str, Any]]

_IGNORED_FIELDS = frozenset({"id", "createdAt", "updatedAt"})


def changed_fields(before: dict[str, Any], after: dict[str, Any]) -> list[str]:
    """Keys whose values differ between two record snapshots, in *after* order."""
    return [
        key
        for key in after
        if key not in _IGNORED_FIELDS and before.get(key) != after.get(key)
    ]


def contact_events(
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
) -> list[TriggerEvent]:
    """Trigger events for a contact ``created``/``updated``/``deleted``."""
    if action == "created" and after is not None:
        return [(NodeType.CONTACT_CREATED_TRIGGER, {"contact": after})]
    if action == "deleted" and before is not None:
        return [(NodeType.CONTACT_DELETED_TRIGGER, {"contact": before})]
    if action != "updated" or before is None or after is None:
        return []

    changes = changed_fields(before, after)
    if not changes:
        return []
    now = datetime.now(UTC).isoformat()
    events: list[TriggerEvent] = [
        (NodeType.CONTACT_UPDATED_TRIGGER, {"contact": after, "changes": changes})
    ]
    for field in changes:
        payload = {
            "contact": after,
            "field": field,
            "oldValue": before.get(field),
            "newValue": after.get(field),
            "changedAt": now,
        }
        events.append((NodeType.CONTACT_FIELD_CHANGED_TRIGGER, payload))
        if field == "type":
            events.append((NodeType.CONTACT_TYPE_CHANGED_TRIGGER, payload))
        elif field == "lifecycleStage":
            events.append((NodeType.CONTACT_LIFECYCLE_STAGE_CHANGED_TRIGGER, payload))
    return events


def deal_events(
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
) -> list[TriggerEvent]:
    """Trigger events for a deal ``created``/``updated``/``deleted``."""
    if action == "created" and after is not None:
        return [(NodeType.DEAL_CREATED_TRIGGER, {"deal": after})]
    if action == "deleted" and before is not None:
        return [(NodeType.DEAL_DELETED_TRIGGER, {"deal": before})]
    if action == "updated" and before is not None and after is not None:
        changes = changed_fields(before, after)
        if changes:
            return [(NodeType.DEAL_UPDATED_TRIGGER, {"deal": after, "changes": changes})]
    return []
