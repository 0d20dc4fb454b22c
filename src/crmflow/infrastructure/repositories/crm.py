"""Tenant-scoped SQL for contacts, deals, and pipelines.

Both the CRM services and the CRM action executors go through this
repository, so a contact created from the CLI and one created by a
workflow node are identical. The caller owns the transaction: pass a
``Connection`` from ``workspace.transaction()``.

Records are returned as camelCase dicts, the shape workflow templates
address (``{{ contact.companyName }}``).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, insert, select, update

from crmflow.domain.ids import generate_id
from crmflow.infrastructure.database.schema import (
    contacts,
    deal_contacts,
    deal_notes,
    deals,
    pipeline_stages,
    pipelines,
)

if TYPE_CHECKING:
    from sqlalchemy import Connection, Table


class RecordNotFoundError(LookupError):
    """A referenced CRM record does not exist in this organization."""


CONTACT_FIELDS = (
    "name",
    "email",
    "phone",
    "company_name",
    "position",
    "type",
    "lifecycle_stage",
    "source",
    "website",
    "linkedin",
    "country",
    "city",
    "notes",
)

DEAL_FIELDS = (
    "name",
    "value",
    "currency",
    "deadline",
    "source",
    "description",
    "pipeline_id",
    "pipeline_stage_id",
)

PIPELINE_FIELDS = ("name", "description", "is_default", "is_active")


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def contact_output(row: Any) -> dict[str, Any]:
    out: dict[str, Any] = {"id": row.id}
    for field in CONTACT_FIELDS:
        out[_camel(field)] = getattr(row, field)
    out["createdAt"] = row.created
    out["updatedAt"] = row.modified
    return out


class CrmRepository:
    """CRUD for CRM records, filtered to one organization (and subaccount)."""

    def __init__(self, conn: Connection, organization_id: str, subaccount_id: str | None = None):
        self._conn = conn
        self._org = organization_id
        self._sub = subaccount_id

    def _scope(self, table: Table) -> list[Any]:
        clauses = [table.c.organization_id == self._org]
        if self._sub is not None:
            clauses.append(table.c.subaccount_id == self._sub)
        return clauses

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def create_contact(self, fields: dict[str, Any]) -> dict[str, Any]:
        now = _now()
        values = {k: fields.get(k) or None for k in CONTACT_FIELDS}
        values["type"] = values["type"] or "LEAD"
        contact_id = generate_id("contact")
        self._conn.execute(
            insert(contacts).values(
                id=contact_id,
                organization_id=self._org,
                subaccount_id=self._sub,
                created=now,
                modified=now,
                **values,
            )
        )
        return self._require_contact(contact_id)

    def get_contact(self, contact_id: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            select(contacts).where(contacts.c.id == contact_id, *self._scope(contacts))
        ).first()
        return contact_output(row) if row is not None else None

    def _require_contact(self, contact_id: str) -> dict[str, Any]:
        contact = self.get_contact(contact_id)
        if contact is None:
            msg = f"Contact not found: {contact_id}"
            raise RecordNotFoundError(msg)
        return contact

    def update_contact(
        self, contact_id: str, changes: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Apply *changes*; returns ``(before, after)``.

        Raises:
            RecordNotFoundError: If the contact does not exist.
        """
        before = self._require_contact(contact_id)
        values = {k: v for k, v in changes.items() if k in CONTACT_FIELDS}
        if values:
            self._conn.execute(
                update(contacts)
                .where(contacts.c.id == contact_id)
                .values(modified=_now(), **values)
            )
        return before, self._require_contact(contact_id)

    def delete_contact(self, contact_id: str) -> dict[str, Any]:
        before = self._require_contact(contact_id)
        self._conn.execute(delete(contacts).where(contacts.c.id == contact_id))
        return before

    def find_contacts(
        self,
        *,
        email: str | None = None,
        name: str | None = None,
        company_name: str | None = None,
        search: str | None = None,
        contact_type: str | None = None,
        lifecycle_stage: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Case-insensitive contains-match on text fields, newest first."""
        stmt = select(contacts).where(*self._scope(contacts))
        for column, needle in (
            (contacts.c.email, email),
            (contacts.c.name, name),
            (contacts.c.company_name, company_name),
        ):
            if needle:
                stmt = stmt.where(func.lower(column).contains(needle.lower(), autoescape=True))
        if search:
            needle = search.lower()
            stmt = stmt.where(
                func.lower(contacts.c.name).contains(needle, autoescape=True)
                | func.lower(contacts.c.email).contains(needle, autoescape=True)
                | func.lower(contacts.c.company_name).contains(needle, autoescape=True)
            )
        if contact_type:
            stmt = stmt.where(contacts.c.type == contact_type)
        if lifecycle_stage:
            stmt = stmt.where(contacts.c.lifecycle_stage == lifecycle_stage)
        stmt = stmt.order_by(contacts.c.created.desc(), contacts.c.id.desc()).limit(limit)
        return [contact_output(row) for row in self._conn.execute(stmt)]

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def create_pipeline(
        self,
        name: str,
        stages: list[str],
        *,
        description: str | None = None,
        is_default: bool = False,
    ) -> dict[str, Any]:
        now = _now()
        pipeline_id = generate_id("pipeline")
        if is_default:
            self._clear_default_pipeline()
        self._conn.execute(
            insert(pipelines).values(
                id=pipeline_id,
                organization_id=self._org,
                subaccount_id=self._sub,
                name=name,
                description=description,
                is_default=int(is_default),
                created=now,
                modified=now,
            )
        )
        for position, stage_name in enumerate(stages):
            self._conn.execute(
                insert(pipeline_stages).values(
                    id=generate_id("stage"),
                    pipeline_id=pipeline_id,
                    name=stage_name,
                    position=position,
                    probability=0,
                )
            )
        return self._require_pipeline(pipeline_id)

    def _clear_default_pipeline(self) -> None:
        self._conn.execute(
            update(pipelines).where(*self._scope(pipelines)).values(is_default=0)
        )

    def get_pipeline(self, pipeline_id: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            select(pipelines).where(pipelines.c.id == pipeline_id, *self._scope(pipelines))
        ).first()
        if row is None:
            return None
        stage_rows = self._conn.execute(
            select(pipeline_stages)
            .where(pipeline_stages.c.pipeline_id == pipeline_id)
            .order_by(pipeline_stages.c.position)
        ).all()
        return {
            "id": row.id,
            "name": row.name,
            "description": row.description,
            "isDefault": bool(row.is_default),
            "isActive": bool(row.is_active),
            "stages": [
                {
                    "id": s.id,
                    "name": s.name,
                    "position": s.position,
                    "probability": s.probability,
                    "color": s.color,
                }
                for s in stage_rows
            ],
            "createdAt": row.created,
            "updatedAt": row.modified,
        }

    def _require_pipeline(self, pipeline_id: str) -> dict[str, Any]:
        pipeline = self.get_pipeline(pipeline_id)
        if pipeline is None:
            msg = f"Pipeline not found: {pipeline_id}"
            raise RecordNotFoundError(msg)
        return pipeline

    def list_pipelines(self) -> list[dict[str, Any]]:
        ids = self._conn.execute(
            select(pipelines.c.id).where(*self._scope(pipelines)).order_by(pipelines.c.created)
        ).scalars()
        return [self._require_pipeline(pid) for pid in list(ids)]

    def update_pipeline(self, pipeline_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        self._require_pipeline(pipeline_id)
        values = {k: v for k, v in changes.items() if k in PIPELINE_FIELDS and v is not None}
        if values.get("is_default"):
            self._clear_default_pipeline()
        for flag in ("is_default", "is_active"):
            if flag in values:
                values[flag] = int(bool(values[flag]))
        if values:
            self._conn.execute(
                update(pipelines)
                .where(pipelines.c.id == pipeline_id)
                .values(modified=_now(), **values)
            )
        return self._require_pipeline(pipeline_id)

    def resolve_stage(self, pipeline_id: str | None, stage_id: str) -> tuple[str, str]:
        """Return ``(pipeline_id, stage_id)`` after checking the stage belongs to the tenant.

        *stage_id* may also be a stage name when *pipeline_id* is given.
        """
        stmt = (
            select(pipeline_stages.c.id, pipeline_stages.c.pipeline_id)
            .join(pipelines, pipelines.c.id == pipeline_stages.c.pipeline_id)
            .where(*self._scope(pipelines))
        )
        if pipeline_id:
            stmt = stmt.where(
                pipeline_stages.c.pipeline_id == pipeline_id,
                (pipeline_stages.c.id == stage_id) | (pipeline_stages.c.name == stage_id),
            )
        else:
            stmt = stmt.where(pipeline_stages.c.id == stage_id)
        row = self._conn.execute(stmt).first()
        if row is None:
            msg = f"Pipeline stage not found: {stage_id}"
            raise RecordNotFoundError(msg)
        return row.pipeline_id, row.id

    def first_stage(self, pipeline_id: str) -> str | None:
        pipeline = self._require_pipeline(pipeline_id)
        return pipeline["stages"][0]["id"] if pipeline["stages"] else None

    # ------------------------------------------------------------------
    # Deals
    # ------------------------------------------------------------------

    def _deal_output(self, row: Any) -> dict[str, Any]:
        contact_ids = self._conn.execute(
            select(deal_contacts.c.contact_id)
            .where(deal_contacts.c.deal_id == row.id)
            .order_by(deal_contacts.c.contact_id)
        ).scalars()
        return {
            "id": row.id,
            "name": row.name,
            "value": row.value,
            "currency": row.currency,
            "deadline": row.deadline,
            "source": row.source,
            "description": row.description,
            "pipelineId": row.pipeline_id,
            "pipelineStageId": row.pipeline_stage_id,
            "contactIds": list(contact_ids),
            "createdAt": row.created,
            "updatedAt": row.modified,
        }

    def get_deal(self, deal_id: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            select(deals).where(deals.c.id == deal_id, *self._scope(deals))
        ).first()
        return self._deal_output(row) if row is not None else None

    def _require_deal(self, deal_id: str) -> dict[str, Any]:
        deal = self.get_deal(deal_id)
        if deal is None:
            msg = f"Deal not found: {deal_id}"
            raise RecordNotFoundError(msg)
        return deal

    def _normalize_deal(self, values: dict[str, Any]) -> dict[str, Any]:
        stage_id = values.get("pipeline_stage_id")
        pipeline_id = values.get("pipeline_id")
        if stage_id:
            values["pipeline_id"], values["pipeline_stage_id"] = self.resolve_stage(
                pipeline_id, stage_id
            )
        elif pipeline_id:
            values["pipeline_stage_id"] = self.first_stage(pipeline_id)
        if values.get("value") not in (None, ""):
            try:
                values["value"] = float(values["value"])
            except (TypeError, ValueError) as exc:
                msg = f"Deal value must be a number, got {values['value']!r}"
                raise ValueError(msg) from exc
        return values

    def create_deal(self, fields: dict[str, Any], contact_ids: list[str] | None = None) -> dict[str, Any]:
        now = _now()
        values = self._normalize_deal({k: fields.get(k) or None for k in DEAL_FIELDS})
        deal_id = generate_id("deal")
        self._conn.execute(
            insert(deals).values(
                id=deal_id,
                organization_id=self._org,
                subaccount_id=self._sub,
                created=now,
                modified=now,
                **values,
            )
        )
        for contact_id in dict.fromkeys(contact_ids or []):
            self._require_contact(contact_id)
            self._conn.execute(insert(deal_contacts).values(deal_id=deal_id, contact_id=contact_id))
        return self._require_deal(deal_id)

    def list_deals(
        self,
        *,
        pipeline_id: str | None = None,
        stage_id: str | None = None,
        contact_id: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        stmt = select(deals).where(*self._scope(deals))
        if pipeline_id:
            stmt = stmt.where(deals.c.pipeline_id == pipeline_id)
        if stage_id:
            stmt = stmt.where(deals.c.pipeline_stage_id == stage_id)
        if contact_id:
            stmt = stmt.where(
                deals.c.id.in_(
                    select(deal_contacts.c.deal_id).where(deal_contacts.c.contact_id == contact_id)
                )
            )
        stmt = stmt.order_by(deals.c.created.desc(), deals.c.id.desc()).limit(limit)
        return [self._deal_output(row) for row in self._conn.execute(stmt).all()]

    def update_deal(
        self, deal_id: str, changes: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Apply *changes*; returns ``(before, after)``."""
        before = self._require_deal(deal_id)
        values = {k: v for k, v in changes.items() if k in DEAL_FIELDS}
        if "pipeline_stage_id" in values and "pipeline_id" not in values:
            values["pipeline_id"] = before["pipelineId"]
        values = self._normalize_deal(values)
        if values:
            self._conn.execute(
                update(deals).where(deals.c.id == deal_id).values(modified=_now(), **values)
            )
        return before, self._require_deal(deal_id)

    def move_deal(
        self, deal_id: str, stage_id: str, *, pipeline_id: str | None = None
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        before = self._require_deal(deal_id)
        target_pipeline, target_stage = self.resolve_stage(
            pipeline_id or before["pipelineId"], stage_id
        )
        self._conn.execute(
            update(deals)
            .where(deals.c.id == deal_id)
            .values(pipeline_id=target_pipeline, pipeline_stage_id=target_stage, modified=_now())
        )
        return before, self._require_deal(deal_id)

    def delete_deal(self, deal_id: str) -> dict[str, Any]:
        before = self._require_deal(deal_id)
        self._conn.execute(delete(deals).where(deals.c.id == deal_id))
        return before

    def add_deal_note(self, deal_id: str, note: str) -> dict[str, Any]:
        self._require_deal(deal_id)
        note_id = generate_id("note")
        now = _now()
        self._conn.execute(insert(deal_notes).values(id=note_id, deal_id=deal_id, note=note, created=now))
        return {"id": note_id, "dealId": deal_id, "note": note, "createdAt": now}

    def deal_notes(self, deal_id: str) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            select(deal_notes).where(deal_notes.c.deal_id == deal_id).order_by(deal_notes.c.created)
        ).all()
        return [{"id": r.id, "dealId": r.deal_id, "note": r.note, "createdAt": r.created} for r in rows]
