"""Subcommand modules for crmflow.

Provides register_commands() which uses deferred imports to keep
``crmflow --help`` fast as the codebase grows.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all command groups and standalone commands on the root CLI group."""
    # --- Groups ---
    from crmflow.commands.contact import contact
    from crmflow.commands.deal import deal
    from crmflow.commands.execution import execution
    from crmflow.commands.pipeline import pipeline
    from crmflow.commands.workflow import workflow

    cli.add_command(workflow)
    cli.add_command(execution)
    cli.add_command(contact)
    cli.add_command(deal)
    cli.add_command(pipeline)

    # --- Standalone commands ---
    from crmflow.commands.init_cmd import init_cmd
    from crmflow.commands.run import run

    cli.add_command(init_cmd)
    cli.add_command(run)
