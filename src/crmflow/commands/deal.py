"""Command group: deals and deal notes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from crmflow.commands._base import CrmGroup
from crmflow.services.crm import DealService

if TYPE_CHECKING:
    from crmflow.commands._context import AppContext

_DEAL_EXAMPLES = """\
  crmflow deal create "ACME renewal" --value 12000 --contact ct_0123456789ab
  crmflow deal list --pipeline pl_0123456789ab
  crmflow deal move dl_0123456789ab Won --pipeline pl_0123456789ab
  crmflow deal note dl_0123456789ab "Sent the proposal\""""


@click.group(cls=CrmGroup, examples=_DEAL_EXAMPLES)
@click.pass_obj
def deal(app: AppContext) -> None:
    """Manage deals. Stage moves fire deal triggers."""


@deal.command(
    examples="""\
  crmflow deal create "ACME renewal"
  crmflow deal create "ACME renewal" --value 12000 --currency EUR \\
      --pipeline pl_0123456789ab --stage Qualified --contact ct_0123456789ab"""
)
@click.argument("name")
@click.option("--value", type=float, default=None, help="Deal value.")
@click.option("--currency", default=None, help="ISO currency code (default USD).")
@click.option("--deadline", default=None, help="Expected close date.")
@click.option("--source", default=None, help="Where the deal came from.")
@click.option("--description", default=None, help="Free-text description.")
@click.option("--pipeline", "pipeline_id", default=None, help="Pipeline id.")
@click.option("--stage", "stage_id", default=None, help="Stage id, or name within --pipeline.")
@click.option("--contact", "contact_ids", multiple=True, help="Linked contact id (repeatable).")
@click.pass_obj
def create(
    app: AppContext,
    name: str,
    value: float | None,
    currency: str | None,
    deadline: str | None,
    source: str | None,
    description: str | None,
    pipeline_id: str | None,
    stage_id: str | None,
    contact_ids: tuple[str, ...],
) -> None:
    """Create a deal."""
    app.emit(
        DealService(app.workspace).create_deal(
            name,
            contact_ids=list(contact_ids),
            value=value,
            currency=currency,
            deadline=deadline,
            source=source,
            description=description,
            pipeline_id=pipeline_id,
            pipeline_stage_id=stage_id,
        )
    )


@deal.command(
    name="list",
    examples="""\
  crmflow deal list
  crmflow deal list --contact ct_0123456789ab""",
)
@click.option("--pipeline", "pipeline_id", default=None, help="Filter by pipeline.")
@click.option("--stage", "stage_id", default=None, help="Filter by stage id.")
@click.option("--contact", "contact_id", default=None, help="Filter by linked contact.")
@click.option("--limit", default=50, type=int, help="Max results.")
@click.pass_obj
def list_cmd(
    app: AppContext,
    pipeline_id: str | None,
    stage_id: str | None,
    contact_id: str | None,
    limit: int,
) -> None:
    """List deals, newest first."""
    app.emit(
        DealService(app.workspace).list_deals(
            pipeline_id=pipeline_id, stage_id=stage_id, contact_id=contact_id, limit=limit
        )
    )


@deal.command(examples="  crmflow deal show dl_0123456789ab")
@click.argument("deal_id")
@click.pass_obj
def show(app: AppContext, deal_id: str) -> None:
    """Show a deal with its notes."""
    app.emit(DealService(app.workspace).get_deal(deal_id))


@deal.command(examples="  crmflow deal update dl_0123456789ab --value 15000")
@click.argument("deal_id")
@click.option("--name", default=None, help="New name.")
@click.option("--value", type=float, default=None, help="Deal value.")
@click.option("--currency", default=None, help="ISO currency code.")
@click.option("--deadline", default=None, help="Expected close date.")
@click.option("--source", default=None, help="Where the deal came from.")
@click.option("--description", default=None, help="Free-text description.")
@click.pass_obj
def update(
    app: AppContext,
    deal_id: str,
    name: str | None,
    value: float | None,
    currency: str | None,
    deadline: str | None,
    source: str | None,
    description: str | None,
) -> None:
    """Update deal fields; use ``deal move`` to change the stage."""
    app.emit(
        DealService(app.workspace).update_deal(
            deal_id,
            name=name,
            value=value,
            currency=currency,
            deadline=deadline,
            source=source,
            description=description,
        )
    )


@deal.command(
    examples="""\
  crmflow deal move dl_0123456789ab st_0123456789ab
  crmflow deal move dl_0123456789ab Won --pipeline pl_0123456789ab"""
)
@click.argument("deal_id")
@click.argument("stage")
@click.option("--pipeline", "pipeline_id", default=None, help="Pipeline to resolve stage names in.")
@click.pass_obj
def move(app: AppContext, deal_id: str, stage: str, pipeline_id: str | None) -> None:
    """Move a deal to another pipeline stage."""
    app.emit(DealService(app.workspace).move_deal(deal_id, stage, pipeline_id=pipeline_id))


@deal.command(examples='  crmflow deal note dl_0123456789ab "Called, waiting on legal"')
@click.argument("deal_id")
@click.argument("text")
@click.pass_obj
def note(app: AppContext, deal_id: str, text: str) -> None:
    """Attach a note to a deal."""
    app.emit(DealService(app.workspace).add_note(deal_id, text))


@deal.command(examples="  crmflow deal delete dl_0123456789ab")
@click.argument("deal_id")
@click.pass_obj
def delete(app: AppContext, deal_id: str) -> None:
    """Delete a deal."""
    app.emit(DealService(app.workspace).delete_deal(deal_id))
