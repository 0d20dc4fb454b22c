"""AppContext — shared Click context for all commands.

Created once by the root CLI group and flows to all subcommands via
``@click.pass_obj``.  Provides lazy Workspace initialization and
centralized result emission (stdout/stderr routing + exit codes).
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import click

from crmflow.output.formatters import OutputSettings, format_result

if TYPE_CHECKING:
    from crmflow.config.settings import CrmflowSettings
    from crmflow.infrastructure.workspace import Workspace
    from crmflow.services.result import ServiceResult


class AppContext:
    """Shared context flowing through Click's command hierarchy.

    Subcommands access it via ``@click.pass_obj``.  The workspace is
    lazily initialized on first use so ``--help`` and ``--version`` never
    trigger database access.
    """

    def __init__(self, settings: CrmflowSettings) -> None:
        self.settings = settings
        self._workspace: Workspace | None = None

        from crmflow.config.logging import configure_logging

        configure_logging(verbose=settings.verbose, log_json=settings.log_json)

        if settings.verbose:
            from crmflow.services.telemetry import enable_telemetry

            enable_telemetry()

    @property
    def workspace(self) -> Workspace:
        """The workspace instance (created lazily on first access)."""
        if self._workspace is None:
            from crmflow.infrastructure.workspace import Workspace

            self._workspace = Workspace(self.settings)
            self._workspace.init_event_bus(sync=self.settings.sync)
        return self._workspace

    def close(self) -> None:
        """Drain the event bus and release the database, if opened."""
        if self._workspace is not None:
            self._workspace.close()
            self._workspace = None

    def emit(self, result: ServiceResult) -> None:
        """Format and output a ServiceResult with correct exit semantics.

        * Success (``result.ok``): writes to stdout, returns normally.
          Warnings are emitted to stderr so they don't pollute piped output.
        * Failure: writes to stderr, exits with code 1.
        """
        settings = OutputSettings(
            json_output=self.settings.json_output,
            quiet=self.settings.quiet,
            verbose=self.settings.verbose,
        )
        output = format_result(result, settings=settings)
        if result.ok:
            click.echo(output)
            if not settings.json_output:
                for warning in result.warnings:
                    click.echo(f"WARNING: {warning}", err=True)
        else:
            click.echo(output, err=True)
            self.close()
            raise SystemExit(1)

    def fail(self, op: str, message: str) -> None:
        """Emit a VALIDATION_ERROR for bad command-line input."""
        from crmflow.services.result import ErrorCode, ServiceResult

        self.emit(ServiceResult.failure(op, ErrorCode.VALIDATION_ERROR, message))


def parse_json_arg(app: AppContext, op: str, raw: str | None) -> Any:
    """Parse a ``--data``-style JSON option, failing the command on bad input."""
    from crmflow.services._helpers import parse_json_option

    try:
        return parse_json_option(raw)
    except ValueError as exc:
        app.fail(op, str(exc))
    return None


def read_json_file(app: AppContext, op: str, path: str) -> Any:
    """Load a JSON document from *path* (``-`` for stdin)."""
    try:
        stream = click.open_file(path, "r", encoding="utf-8")
        with stream:
            return json.load(stream)
    except (OSError, ValueError) as exc:
        app.fail(op, f"Cannot read {path}: {exc}")
    return None
