"""Rich Console factory and theme for crmflow output.

Creates Console instances that render to a StringIO buffer, preserving
the ``format_result() -> str`` contract.  In non-TTY environments
(tests, pipes) Rich automatically disables color codes.
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

CRM_THEME = Theme(
    {
        "crm.ok": "bold green",
        "crm.error": "bold red",
        "crm.warning": "bold yellow",
        "crm.op": "bold cyan",
        "crm.key": "dim",
        "crm.id": "bold blue",
        "crm.name": "bold",
        "crm.status.success": "green",
        "crm.status.failed": "red",
        "crm.status.stopped": "yellow",
        "crm.status.running": "cyan",
        "crm.node": "magenta",
    }
)

_STATUS_STYLES: dict[str, str] = {
    "SUCCESS": "crm.status.success",
    "success": "crm.status.success",
    "FAILED": "crm.status.failed",
    "error": "crm.status.failed",
    "STOPPED": "crm.status.stopped",
    "RUNNING": "crm.status.running",
    "loading": "crm.status.running",
}


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    """Create a Console that renders to a StringIO buffer.

    Args:
        no_color: Disable ANSI escape codes (used in tests).
        width: Override terminal width (useful for consistent test output).
    """
    return Console(
        file=StringIO(),
        theme=CRM_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 120,
    )


def get_output(console: Console) -> str:
    """Extract rendered text from a StringIO-backed Console."""
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()


def style_for_status(status: str) -> str:
    """Return the Rich style name for an execution or node status."""
    return _STATUS_STYLES.get(status, "")
