"""Contact, deal and pipeline services.

Pipeline per write: VALIDATE → PERSIST → EVENT → TRIGGERS

Every change is dispatched to plugins (``post_contact_change`` /
``post_deal_change``) and then fired as CRM triggers, so workflows
listening for e.g. ``CONTACT_CREATED_TRIGGER`` run right after the write.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from crmflow.domain.events import TriggerEvent, changed_fields, contact_events, deal_events
from crmflow.domain.types import ContactType, LifecycleStage
from crmflow.infrastructure.repositories.crm import CrmRepository, RecordNotFoundError
from crmflow.services.base import BaseService
from crmflow.services.result import ErrorCode, ServiceResult
from crmflow.services.telemetry import trace_span, traced
from crmflow.services.trigger import TriggerService

if TYPE_CHECKING:
    from crmflow.infrastructure.workspace import Workspace

logger = logging.getLogger(__name__)


def _normalize_choice(value: str | None, allowed: type[Any], label: str) -> str | None:
    if value is None:
        return None
    normalized = value.strip().upper()
    if normalized not in allowed.__members__:
        options = ", ".join(allowed.__members__)
        msg = f"Invalid {label} {value!r}; expected one of {options}"
        raise ValueError(msg)
    return normalized


class _CrmService(BaseService):
    """Shared plumbing: scoped repository, error mapping, events."""

    def __init__(
        self,
        workspace: Workspace,
        *,
        fire_triggers: bool = True,
        sleeper: Callable[[float], None] | None = None,
    ) -> None:
        super().__init__(workspace)
        self._fire_triggers = fire_triggers
        self._sleeper = sleeper

    @contextmanager
    def _repository(self) -> Iterator[CrmRepository]:
        with self._workspace.transaction() as txn:
            yield CrmRepository(txn.conn, self._org, self._workspace.subaccount_id)

    def _read(self) -> Any:
        return self._workspace.engine.connect()

    def _error(self, op: str, exc: Exception) -> ServiceResult:
        if isinstance(exc, RecordNotFoundError):
            return ServiceResult.failure(op, ErrorCode.NOT_FOUND, str(exc))
        return ServiceResult.failure(op, ErrorCode.VALIDATION_ERROR, str(exc))

    def _after_write(
        self,
        hook_name: str,
        payload: dict[str, Any],
        events: list[TriggerEvent],
        warnings: list[str],
    ) -> None:
        self._dispatch_event(hook_name, payload, warnings)
        if self._fire_triggers and events:
            with trace_span("triggers"):
                triggers = TriggerService(self._workspace, sleeper=self._sleeper)
                warnings.extend(triggers.fire_events(events))


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


class ContactService(_CrmService):
    """Contacts of the workspace tenant."""

    def _fields(self, fields: dict[str, Any]) -> dict[str, Any]:
        out = {k: (v.strip() if isinstance(v, str) else v) for k, v in fields.items()}
        if "type" in out:
            out["type"] = _normalize_choice(out["type"], ContactType, "contact type")
        if "lifecycle_stage" in out:
            out["lifecycle_stage"] = _normalize_choice(
                out["lifecycle_stage"], LifecycleStage, "lifecycle stage"
            )
        return out

    @traced
    def create_contact(self, name: str, **fields: Any) -> ServiceResult:
        """Create a contact. Extra keyword fields use snake_case column names."""
        op = "create_contact"
        warnings: list[str] = []
        if not name or not name.strip():
            return ServiceResult.failure(op, ErrorCode.VALIDATION_ERROR, "Name is required")
        try:
            values = self._fields({**fields, "name": name})
            with self._repository() as repo:
                contact = repo.create_contact(values)
        except ValueError as exc:
            return self._error(op, exc)

        logger.info("Created contact %s", contact["id"])
        self._after_write(
            "post_contact_change",
            {
                "action": "created",
                "contact_id": contact["id"],
                "fields_changed": [],
                "contact": contact,
            },
            contact_events("created", None, contact),
            warnings,
        )
        return ServiceResult(ok=True, op=op, data=contact, warnings=warnings)

    @traced
    def get_contact(self, contact_id: str) -> ServiceResult:
        op = "get_contact"
        with self._read() as conn:
            contact = CrmRepository(conn, self._org, self._workspace.subaccount_id).get_contact(
                contact_id
            )
        if contact is None:
            return ServiceResult.failure(op, ErrorCode.NOT_FOUND, f"Contact not found: {contact_id}")
        return ServiceResult(ok=True, op=op, data=contact)

    @traced
    def list_contacts(
        self,
        *,
        search: str | None = None,
        email: str | None = None,
        contact_type: str | None = None,
        lifecycle_stage: str | None = None,
        limit: int = 50,
    ) -> ServiceResult:
        op = "list_contacts"
        try:
            contact_type = _normalize_choice(contact_type, ContactType, "contact type")
            lifecycle_stage = _normalize_choice(lifecycle_stage, LifecycleStage, "lifecycle stage")
        except ValueError as exc:
            return self._error(op, exc)
        with self._read() as conn:
            items = CrmRepository(conn, self._org, self._workspace.subaccount_id).find_contacts(
                email=email,
                search=search,
                contact_type=contact_type,
                lifecycle_stage=lifecycle_stage,
                limit=limit,
            )
        return ServiceResult(ok=True, op=op, data={"count": len(items), "items": items})

    @traced
    def update_contact(self, contact_id: str, **changes: Any) -> ServiceResult:
        """Update the given fields; ``None`` values are left unchanged."""
        op = "update_contact"
        warnings: list[str] = []
        try:
            values = self._fields({k: v for k, v in changes.items() if v is not None})
            with self._repository() as repo:
                before, after = repo.update_contact(contact_id, values)
        except (RecordNotFoundError, ValueError) as exc:
            return self._error(op, exc)

        changed = changed_fields(before, after)
        if changed:
            self._after_write(
                "post_contact_change",
                {
                    "action": "updated",
                    "contact_id": contact_id,
                    "fields_changed": changed,
                    "contact": after,
                },
                contact_events("updated", before, after),
                warnings,
            )
        return ServiceResult(
            ok=True, op=op, data={**after, "fieldsChanged": changed}, warnings=warnings
        )

    @traced
    def delete_contact(self, contact_id: str) -> ServiceResult:
        op = "delete_contact"
        warnings: list[str] = []
        try:
            with self._repository() as repo:
                before = repo.delete_contact(contact_id)
        except RecordNotFoundError as exc:
            return self._error(op, exc)

        self._after_write(
            "post_contact_change",
            {
                "action": "deleted",
                "contact_id": contact_id,
                "fields_changed": [],
                "contact": before,
            },
            contact_events("deleted", before, None),
            warnings,
        )
        return ServiceResult(
            ok=True,
            op=op,
            data={"id": contact_id, "deleted": True, "name": before["name"]},
            warnings=warnings,
        )


# ---------------------------------------------------------------------------
# Deals
# ---------------------------------------------------------------------------


class DealService(_CrmService):
    """Deals and their notes."""

    def _dispatch_deal(
        self,
        action: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        warnings: list[str],
    ) -> None:
        deal = after or before or {}
        changed = changed_fields(before, after) if before and after else []
        self._after_write(
            "post_deal_change",
            {"action": action, "deal_id": deal["id"], "fields_changed": changed, "deal": deal},
            deal_events(action, before, after),
            warnings,
        )

    @traced
    def create_deal(
        self,
        name: str,
        *,
        contact_ids: list[str] | None = None,
        **fields: Any,
    ) -> ServiceResult:
        """Create a deal; currency defaults to USD, stage to the pipeline's first."""
        op = "create_deal"
        warnings: list[str] = []
        if not name or not name.strip():
            return ServiceResult.failure(op, ErrorCode.VALIDATION_ERROR, "Name is required")
        values = {**fields, "name": name.strip()}
        values["currency"] = values.get("currency") or "USD"
        try:
            with self._repository() as repo:
                deal = repo.create_deal(values, contact_ids)
        except (RecordNotFoundError, ValueError) as exc:
            return self._error(op, exc)

        logger.info("Created deal %s", deal["id"])
        self._dispatch_deal("created", None, deal, warnings)
        return ServiceResult(ok=True, op=op, data=deal, warnings=warnings)

    @traced
    def get_deal(self, deal_id: str) -> ServiceResult:
        op = "get_deal"
        with self._read() as conn:
            repo = CrmRepository(conn, self._org, self._workspace.subaccount_id)
            deal = repo.get_deal(deal_id)
            notes = repo.deal_notes(deal_id) if deal is not None else []
        if deal is None:
            return ServiceResult.failure(op, ErrorCode.NOT_FOUND, f"Deal not found: {deal_id}")
        return ServiceResult(ok=True, op=op, data={**deal, "notes": notes})

    @traced
    def list_deals(
        self,
        *,
        pipeline_id: str | None = None,
        stage_id: str | None = None,
        contact_id: str | None = None,
        limit: int = 50,
    ) -> ServiceResult:
        with self._read() as conn:
            items = CrmRepository(conn, self._org, self._workspace.subaccount_id).list_deals(
                pipeline_id=pipeline_id, stage_id=stage_id, contact_id=contact_id, limit=limit
            )
        return ServiceResult(ok=True, op="list_deals", data={"count": len(items), "items": items})

    @traced
    def update_deal(self, deal_id: str, **changes: Any) -> ServiceResult:
        op = "update_deal"
        warnings: list[str] = []
        values = {k: v for k, v in changes.items() if v is not None}
        try:
            with self._repository() as repo:
                before, after = repo.update_deal(deal_id, values)
        except (RecordNotFoundError, ValueError) as exc:
            return self._error(op, exc)
        if changed_fields(before, after):
            self._dispatch_deal("updated", before, after, warnings)
        return ServiceResult(ok=True, op=op, data=after, warnings=warnings)

    @traced
    def move_deal(
        self, deal_id: str, stage: str, *, pipeline_id: str | None = None
    ) -> ServiceResult:
        """Move a deal to *stage* (stage id, or stage name within the pipeline)."""
        op = "move_deal"
        warnings: list[str] = []
        try:
            with self._repository() as repo:
                before, after = repo.move_deal(deal_id, stage, pipeline_id=pipeline_id)
        except RecordNotFoundError as exc:
            return self._error(op, exc)
        if changed_fields(before, after):
            self._dispatch_deal("updated", before, after, warnings)
        return ServiceResult(
            ok=True,
            op=op,
            data={**after, "previousStageId": before["pipelineStageId"]},
            warnings=warnings,
        )

    @traced
    def add_note(self, deal_id: str, note: str) -> ServiceResult:
        op = "add_deal_note"
        if not note.strip():
            return ServiceResult.failure(op, ErrorCode.VALIDATION_ERROR, "Note is required")
        try:
            with self._repository() as repo:
                created = repo.add_deal_note(deal_id, note.strip())
        except RecordNotFoundError as exc:
            return self._error(op, exc)
        return ServiceResult(ok=True, op=op, data=created)

    @traced
    def delete_deal(self, deal_id: str) -> ServiceResult:
        op = "delete_deal"
        warnings: list[str] = []
        try:
            with self._repository() as repo:
                before = repo.delete_deal(deal_id)
        except RecordNotFoundError as exc:
            return self._error(op, exc)
        self._dispatch_deal("deleted", before, None, warnings)
        return ServiceResult(
            ok=True,
            op=op,
            data={"id": deal_id, "deleted": True, "name": before["name"]},
            warnings=warnings,
        )


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


class PipelineService(_CrmService):
    """Sales pipelines and their ordered stages."""

    @traced
    def create_pipeline(
        self,
        name: str,
        stages: list[str],
        *,
        description: str | None = None,
        is_default: bool = False,
    ) -> ServiceResult:
        op = "create_pipeline"
        if not name or not name.strip():
            return ServiceResult.failure(op, ErrorCode.VALIDATION_ERROR, "Name is required")
        cleaned = [s.strip() for s in stages if s and s.strip()]
        if not cleaned:
            return ServiceResult.failure(
                op, ErrorCode.VALIDATION_ERROR, "A pipeline needs at least one stage"
            )
        if len(set(cleaned)) != len(cleaned):
            return ServiceResult.failure(op, ErrorCode.VALIDATION_ERROR, "Stage names must be unique")
        with self._repository() as repo:
            pipeline = repo.create_pipeline(
                name.strip(), cleaned, description=description, is_default=is_default
            )
        return ServiceResult(ok=True, op=op, data=pipeline)

    @traced
    def get_pipeline(self, pipeline_id: str) -> ServiceResult:
        op = "get_pipeline"
        with self._read() as conn:
            pipeline = CrmRepository(
                conn, self._org, self._workspace.subaccount_id
            ).get_pipeline(pipeline_id)
        if pipeline is None:
            return ServiceResult.failure(
                op, ErrorCode.NOT_FOUND, f"Pipeline not found: {pipeline_id}"
            )
        return ServiceResult(ok=True, op=op, data=pipeline)

    @traced
    def list_pipelines(self) -> ServiceResult:
        with self._read() as conn:
            items = CrmRepository(conn, self._org, self._workspace.subaccount_id).list_pipelines()
        return ServiceResult(
            ok=True, op="list_pipelines", data={"count": len(items), "items": items}
        )

    @traced
    def update_pipeline(self, pipeline_id: str, **changes: Any) -> ServiceResult:
        op = "update_pipeline"
        try:
            with self._repository() as repo:
                pipeline = repo.update_pipeline(pipeline_id, changes)
        except RecordNotFoundError as exc:
            return self._error(op, exc)
        return ServiceResult(ok=True, op=op, data=pipeline)
