"""Command group: contacts."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import click

from crmflow.commands._base import CrmGroup
from crmflow.domain.types import ContactType, LifecycleStage
from crmflow.services.crm import ContactService

if TYPE_CHECKING:
    from crmflow.commands._context import AppContext

_CONTACT_EXAMPLES = """\
  crmflow contact create "Ada Lovelace" --email ada@example.com
  crmflow contact list --type CUSTOMER
  crmflow contact update ct_0123456789ab --lifecycle-stage MQL
  crmflow contact delete ct_0123456789ab"""

_TEXT_FIELDS = (
    ("--email", "Email address."),
    ("--phone", "Phone number."),
    ("--company-name", "Company name."),
    ("--position", "Job title."),
    ("--source", "Where the contact came from."),
    ("--website", "Website URL."),
    ("--linkedin", "LinkedIn profile URL."),
    ("--country", "Country."),
    ("--city", "City."),
    ("--notes", "Free-text notes."),
)


def _field_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the editable contact field options to a command."""
    func = click.option(
        "--lifecycle-stage",
        type=click.Choice([s.value for s in LifecycleStage], case_sensitive=False),
        default=None,
        help="Lifecycle stage.",
    )(func)
    func = click.option(
        "--type",
        "contact_type",
        type=click.Choice([t.value for t in ContactType], case_sensitive=False),
        default=None,
        help="Contact type.",
    )(func)
    for flag, help_text in reversed(_TEXT_FIELDS):
        func = click.option(flag, default=None, help=help_text)(func)
    return func


def _fields(contact_type: str | None, options: dict[str, Any]) -> dict[str, Any]:
    fields = {k: v for k, v in options.items() if v is not None}
    if contact_type is not None:
        fields["type"] = contact_type
    return fields


@click.group(cls=CrmGroup, examples=_CONTACT_EXAMPLES)
@click.pass_obj
def contact(app: AppContext) -> None:
    """Manage contacts. Changes fire contact triggers."""


@contact.command(
    examples="""\
  crmflow contact create "Ada Lovelace"
  crmflow contact create "Grace Hopper" --email grace@example.com --type CUSTOMER"""
)
@click.argument("name")
@_field_options
@click.pass_obj
def create(app: AppContext, name: str, contact_type: str | None, **options: Any) -> None:
    """Create a contact."""
    svc = ContactService(app.workspace)
    app.emit(svc.create_contact(name, **_fields(contact_type, options)))


@contact.command(
    name="list",
    examples="""\
  crmflow contact list
  crmflow contact list --search ada --limit 10
  crmflow contact list --email ada@example.com""",
)
@click.option("--search", default=None, help="Match name, email or company.")
@click.option("--email", default=None, help="Exact email match.")
@click.option(
    "--type",
    "contact_type",
    type=click.Choice([t.value for t in ContactType], case_sensitive=False),
    default=None,
    help="Filter by contact type.",
)
@click.option(
    "--lifecycle-stage",
    type=click.Choice([s.value for s in LifecycleStage], case_sensitive=False),
    default=None,
    help="Filter by lifecycle stage.",
)
@click.option("--limit", default=50, type=int, help="Max results.")
@click.pass_obj
def list_cmd(
    app: AppContext,
    search: str | None,
    email: str | None,
    contact_type: str | None,
    lifecycle_stage: str | None,
    limit: int,
) -> None:
    """List contacts."""
    app.emit(
        ContactService(app.workspace).list_contacts(
            search=search,
            email=email,
            contact_type=contact_type,
            lifecycle_stage=lifecycle_stage,
            limit=limit,
        )
    )


@contact.command(examples="  crmflow contact show ct_0123456789ab")
@click.argument("contact_id")
@click.pass_obj
def show(app: AppContext, contact_id: str) -> None:
    """Show a contact."""
    app.emit(ContactService(app.workspace).get_contact(contact_id))


@contact.command(
    examples="""\
  crmflow contact update ct_0123456789ab --name "Ada King"
  crmflow contact update ct_0123456789ab --type CUSTOMER --lifecycle-stage CUSTOMER"""
)
@click.argument("contact_id")
@click.option("--name", default=None, help="New name.")
@_field_options
@click.pass_obj
def update(
    app: AppContext, contact_id: str, name: str | None, contact_type: str | None, **options: Any
) -> None:
    """Update contact fields; omitted options are left unchanged."""
    fields = _fields(contact_type, options)
    if name is not None:
        fields["name"] = name
    if not fields:
        app.fail("update_contact", "Nothing to update")
    app.emit(ContactService(app.workspace).update_contact(contact_id, **fields))


@contact.command(examples="  crmflow contact delete ct_0123456789ab")
@click.argument("contact_id")
@click.pass_obj
def delete(app: AppContext, contact_id: str) -> None:
    """Delete a contact."""
    app.emit(ContactService(app.workspace).delete_contact(contact_id))
