"""CRM action executors.

Every field is a template rendered against the context before use.
Required fields are checked after rendering, so ``{{ lead.name }}``
resolving to nothing fails the node. Writes are scoped to the
workspace's organization and happen in one transaction per node; the
record is published at the context root under ``variableName``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from crmflow.domain.events import TriggerEvent, contact_events, deal_events
from crmflow.domain.types import ContactType, LifecycleStage
from crmflow.domain.variables import render_template, resolve_value
from crmflow.domain.workflow import (
    AddDealNoteConfig,
    ContactFields,
    CreateContactConfig,
    CreateDealConfig,
    DealFields,
    DeleteContactConfig,
    DeleteDealConfig,
    FindContactsConfig,
    MoveDealStageConfig,
    UpdateContactConfig,
    UpdateDealConfig,
    UpdatePipelineConfig,
)
from crmflow.executors.base import (
    Context,
    ExecutionRequest,
    fail,
    node_status,
    parse_config,
    with_output,
)
from crmflow.infrastructure.repositories.crm import CrmRepository, RecordNotFoundError

_CONTACT_TEXT_FIELDS = (
    "name",
    "email",
    "company_name",
    "phone",
    "position",
    "source",
    "website",
    "linkedin",
    "country",
    "city",
    "notes",
)
_DEAL_TEXT_FIELDS = (
    "name",
    "value",
    "currency",
    "deadline",
    "source",
    "description",
    "pipeline_id",
    "pipeline_stage_id",
)


@contextmanager
def _repository(request: ExecutionRequest) -> Iterator[CrmRepository]:
    workspace = request.runtime.workspace
    if workspace is None:
        raise fail(request, "This workflow must be in an organization context.")
    with workspace.transaction() as txn:
        try:
            yield CrmRepository(txn.conn, workspace.organization_id, workspace.subaccount_id)
        except RecordNotFoundError as exc:
            raise fail(request, f"{exc}.") from exc
        except ValueError as exc:
            raise fail(request, str(exc)) from exc


def _render(value: str | None, context: Context) -> str | None:
    if value is None:
        return None
    rendered = render_template(value, context).strip()
    return rendered or None


def _record(request: ExecutionRequest, events: list[TriggerEvent]) -> None:
    request.runtime.crm_changes.extend((str(kind), payload) for kind, payload in events)


def _require(request: ExecutionRequest, value: str | None, label: str) -> str:
    if not value:
        raise fail(request, f"{label} is required.")
    return value


def _require_variable(request: ExecutionRequest, name: str | None) -> str:
    if not name:
        raise fail(request, "No variable name has been set.")
    return name


def _choice(request: ExecutionRequest, value: str | None, allowed: type[Any], label: str) -> str | None:
    if value is None:
        return None
    normalized = value.upper()
    if normalized not in allowed.__members__:
        options = ", ".join(allowed.__members__)
        raise fail(request, f"Invalid {label} {value!r}; expected one of {options}.")
    return normalized


def _contact_fields(request: ExecutionRequest, config: ContactFields) -> dict[str, Any]:
    ctx = request.context
    fields = {name: _render(getattr(config, name), ctx) for name in _CONTACT_TEXT_FIELDS}
    fields["type"] = _choice(request, _render(config.type, ctx), ContactType, "contact type")
    fields["lifecycle_stage"] = _choice(
        request, _render(config.lifecycle_stage, ctx), LifecycleStage, "lifecycle stage"
    )
    return fields


def _deal_fields(request: ExecutionRequest, config: DealFields) -> dict[str, Any]:
    return {name: _render(getattr(config, name), request.context) for name in _DEAL_TEXT_FIELDS}


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


def create_contact_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(CreateContactConfig, request)
        fields = _contact_fields(request, config)
        _require(request, fields["name"], "Name")
        with _repository(request) as repo:
            contact = repo.create_contact(fields)
        _record(request, contact_events("created", None, contact))
        return with_output(request.context, config.variable_name, contact)


def update_contact_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(UpdateContactConfig, request)
        variable = _require_variable(request, config.variable_name)
        contact_id = _require(request, _render(config.contact_id, request.context), "Contact ID")
        changes = {k: v for k, v in _contact_fields(request, config).items() if v is not None}
        with _repository(request) as repo:
            before, after = repo.update_contact(contact_id, changes)
        _record(request, contact_events("updated", before, after))
        return with_output(request.context, variable, after)


def delete_contact_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(DeleteContactConfig, request)
        contact_id = _require(request, _render(config.contact_id, request.context), "Contact ID")
        with _repository(request) as repo:
            before = repo.delete_contact(contact_id)
        _record(request, contact_events("deleted", before, None))
        return with_output(
            request.context,
            config.variable_name,
            {"id": contact_id, "deleted": True, "name": before["name"]},
        )


def find_contacts_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(FindContactsConfig, request)
        ctx = request.context
        with _repository(request) as repo:
            found = repo.find_contacts(
                email=_render(config.email, ctx),
                name=_render(config.name, ctx),
                company_name=_render(config.company_name, ctx),
                contact_type=_choice(request, _render(config.type, ctx), ContactType, "contact type"),
                lifecycle_stage=_choice(
                    request, _render(config.lifecycle_stage, ctx), LifecycleStage, "lifecycle stage"
                ),
                limit=config.limit,
            )
        return with_output(ctx, config.variable_name, found)


# ---------------------------------------------------------------------------
# Deals
# ---------------------------------------------------------------------------


def _contact_ids(raw: str | None, context: Context) -> list[str]:
    if not raw:
        return []
    value = resolve_value(raw, context)
    if isinstance(value, list):
        return [str(item) for item in value if item]
    return [part.strip() for part in str(value).split(",") if part.strip()]


def create_deal_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(CreateDealConfig, request)
        variable = _require_variable(request, config.variable_name)
        fields = _deal_fields(request, config)
        _require(request, fields["name"], "Name")
        fields["currency"] = fields["currency"] or "USD"
        contact_ids = _contact_ids(config.contact_ids, request.context)
        with _repository(request) as repo:
            deal = repo.create_deal(fields, contact_ids)
        _record(request, deal_events("created", None, deal))
        return with_output(request.context, variable, deal)


def update_deal_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(UpdateDealConfig, request)
        deal_id = _require(request, _render(config.deal_id, request.context), "Deal ID")
        changes = {k: v for k, v in _deal_fields(request, config).items() if v is not None}
        with _repository(request) as repo:
            before, after = repo.update_deal(deal_id, changes)
        _record(request, deal_events("updated", before, after))
        return with_output(request.context, config.variable_name, after)


def delete_deal_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(DeleteDealConfig, request)
        deal_id = _require(request, _render(config.deal_id, request.context), "Deal ID")
        with _repository(request) as repo:
            before = repo.delete_deal(deal_id)
        _record(request, deal_events("deleted", before, None))
        return with_output(
            request.context,
            config.variable_name,
            {"id": deal_id, "deleted": True, "name": before["name"]},
        )


def move_deal_stage_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(MoveDealStageConfig, request)
        ctx = request.context
        deal_id = _require(request, _render(config.deal_id, ctx), "Deal ID")
        stage_id = _require(request, _render(config.pipeline_stage_id, ctx), "Pipeline Stage ID")
        with _repository(request) as repo:
            before, after = repo.move_deal(
                deal_id, stage_id, pipeline_id=_render(config.pipeline_id, ctx)
            )
        _record(request, deal_events("updated", before, after))
        return with_output(
            ctx, config.variable_name, {**after, "previousStageId": before["pipelineStageId"]}
        )


def update_pipeline_executor(request: ExecutionRequest) -> Context:
    """Move a deal onto a pipeline stage, reporting pipeline and stage names."""
    with node_status(request):
        config = parse_config(UpdatePipelineConfig, request)
        ctx = request.context
        variable = _require_variable(request, config.variable_name)
        deal_id = _require(request, _render(config.deal_id, ctx), "Deal ID")
        stage_id = _require(request, _render(config.pipeline_stage_id, ctx), "Pipeline Stage ID")
        with _repository(request) as repo:
            before, after = repo.move_deal(deal_id, stage_id)
            pipeline = repo.get_pipeline(after["pipelineId"]) or {"stages": []}
        stage_name = next(
            (s["name"] for s in pipeline["stages"] if s["id"] == after["pipelineStageId"]), None
        )
        _record(request, deal_events("updated", before, after))
        return with_output(
            ctx,
            variable,
            {
                "id": after["id"],
                "name": after["name"],
                "pipelineId": after["pipelineId"],
                "pipelineStageId": after["pipelineStageId"],
                "pipelineName": pipeline.get("name"),
                "pipelineStageName": stage_name,
                "updatedAt": after["updatedAt"],
            },
        )


def add_deal_note_executor(request: ExecutionRequest) -> Context:
    with node_status(request):
        config = parse_config(AddDealNoteConfig, request)
        ctx = request.context
        deal_id = _require(request, _render(config.deal_id, ctx), "Deal ID")
        note = _require(request, _render(config.note, ctx), "Note")
        with _repository(request) as repo:
            created = repo.add_deal_note(deal_id, note)
        return with_output(ctx, config.variable_name, created)
