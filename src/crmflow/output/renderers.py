"""Operation-specific Rich renderers for ServiceResult.

Each renderer writes to a Rich Console (backed by StringIO).  The caller
extracts the rendered text via ``get_output(console)``.

Renderers are dispatched by ``result.op`` in :func:`render_result`.
Unknown ops fall through to a generic key-value renderer.
"""

from __future__ import annotations

import json as _json
from typing import TYPE_CHECKING, Any

from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from crmflow.output.console import create_console, get_output, style_for_status

if TYPE_CHECKING:
    from rich.console import Console

    from crmflow.services.result import ServiceResult


# ── Public API ────────────────────────────────────────────────────────


def render_result(result: ServiceResult, *, verbose: bool = False) -> str:
    """Render a ServiceResult to a styled string via Rich.

    Returns plain text (no ANSI) when Rich detects no terminal,
    which is the case inside Click's CliRunner and piped output.
    """
    console = create_console()

    if result.ok:
        renderer = _OP_RENDERERS.get(result.op, _render_generic)
        renderer(result, console, verbose=verbose)
    else:
        _render_error(result, console, verbose=verbose)

    return get_output(console).rstrip("\n")


def render_quiet(result: ServiceResult) -> str:
    """Render minimal output for ``--quiet`` mode."""
    if not result.ok:
        msg = result.error.message if result.error else "Unknown error"
        return f"ERROR: {result.op} — {msg}"

    items = result.data.get("items")
    if items and isinstance(items, list):
        return "\n".join(str(item["id"]) for item in items if isinstance(item, dict) and "id" in item)
    if result.op == "export_workflow":
        return str(result.data.get("yaml", ""))
    if "id" in result.data:
        return str(result.data["id"])
    return f"OK: {result.op}"


# ── Helpers ───────────────────────────────────────────────────────────


def _status_line(console: Console, result: ServiceResult) -> None:
    """Print the OK status line."""
    label = Text("OK", style="crm.ok")
    op = Text(f"  {result.op}", style="crm.op")
    console.print(label, op, end="")
    console.print()


def _field(console: Console, key: str, value: Any) -> None:
    """Print a single indented key-value field."""
    k = Text(f"  {key}: ", style="crm.key")
    if key == "id" or key.endswith("_id") or key.endswith("Id"):
        v = Text(str(value), style="crm.id")
    elif key == "name":
        v = Text(str(value), style="crm.name")
    elif key == "status":
        v = Text(str(value), style=style_for_status(str(value)))
    elif isinstance(value, (dict, list)):
        v = Text(_json.dumps(value, separators=(",", ":"), default=str))
    else:
        v = Text(str(value))
    console.print(k, v, end="")
    console.print()


def _render_meta(console: Console, result: ServiceResult) -> None:
    """Print meta block including telemetry span tree (verbose only)."""
    if not result.meta:
        return

    console.print()
    console.print(Text("  meta:", style="dim"))

    for k, v in result.meta.items():
        if k == "telemetry":
            _render_telemetry_tree(console, v, indent=4)
        else:
            console.print(f"    {k}: {v}")


def _render_telemetry_tree(
    console: Console,
    span_data: dict[str, Any],
    indent: int = 4,
) -> None:
    """Render a hierarchical span tree with color-coded timing."""
    prefix = " " * indent
    name = span_data.get("name", "?")
    duration = span_data.get("duration_ms", 0.0)

    if duration > 1000:
        style = "bold red"
    elif duration > 100:
        style = "yellow"
    else:
        style = "dim"

    line = f"{prefix}[{style}]{duration:>8.2f}ms[/{style}]  {name}"
    annotations = span_data.get("annotations") or {}
    if annotations:
        line += "  (" + ", ".join(f"{ak}={av}" for ak, av in annotations.items()) + ")"
    console.print(line)

    for child in span_data.get("children", []):
        _render_telemetry_tree(console, child, indent=indent + 4)


def _table(*columns: str) -> Table:
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    for column in columns:
        style = "crm.id" if column == "ID" else ""
        table.add_column(column, style=style, no_wrap=column == "ID")
    return table


def _yes(flag: Any) -> str:
    return "yes" if flag else ""


# ── Error renderer ────────────────────────────────────────────────────


def _render_error(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    label = Text("ERROR", style="crm.error")
    op = Text(f"  {result.op}", style="crm.op")
    console.print(label, op, Text(" — "), msg)
    if err and err.code:
        console.print(Text(f"  code: {err.code}", style="dim"))
    if verbose and err and err.detail:
        console.print(Text("  detail:", style="dim"))
        for k, v in err.detail.items():
            console.print(f"    {k}: {v}")
    if result.op == "execute_workflow" and result.data.get("id"):
        _field(console, "execution", result.data["id"])
        _field(console, "steps", result.data.get("steps", 0))


# ── Mutation renderer ─────────────────────────────────────────────────


def _render_mutation(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render create/update/delete results as a short field list."""
    _status_line(console, result)
    keys = (
        "id",
        "name",
        "email",
        "type",
        "lifecycleStage",
        "value",
        "currency",
        "pipelineId",
        "pipelineStageId",
        "previousStageId",
        "deleted",
        "archived",
        "is_bundle",
        "node_count",
        "connection_count",
        "old_name",
        "updated",
        "fieldsChanged",
    )
    for key in keys:
        if key in result.data and result.data[key] is not None:
            _field(console, key, result.data[key])
    for warning in result.warnings if verbose else []:
        console.print(Text(f"  warning: {warning}", style="crm.warning"))
    if verbose:
        _render_meta(console, result)


# ── Workflows ─────────────────────────────────────────────────────────


def _render_workflow_list(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    items = result.data.get("items", [])
    table = _table("ID", "Name", "Nodes", "Bundle", "Archived")
    if verbose:
        table.add_column("Modified", style="dim")
    for item in items:
        row = [
            str(item.get("id", "")),
            str(item.get("name", "")),
            str(item.get("node_count", "")),
            _yes(item.get("is_bundle")),
            _yes(item.get("archived")),
        ]
        if verbose:
            row.append(str(item.get("modified", "")))
        table.add_row(*row)
    console.print(table)
    console.print(f"\n{result.data.get('count', len(items))} workflows")


def _render_workflow(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    lines = [f"id: {d.get('id')}"]
    if d.get("description"):
        lines.append(f"description: {d['description']}")
    flags = [name for name in ("is_bundle", "is_template", "archived") if d.get(name)]
    if flags:
        lines.append(f"flags: {', '.join(flags)}")
    if d.get("is_bundle"):
        inputs = [i.get("name") for i in d.get("bundle_inputs") or []]
        outputs = [o.get("name") for o in d.get("bundle_outputs") or []]
        lines.append(f"inputs: {', '.join(inputs) or '-'}")
        lines.append(f"outputs: {', '.join(outputs) or '-'}")
    console.print(Panel("\n".join(lines), title=str(d.get("name", "?")), expand=False))

    nodes = d.get("nodes", [])
    table = _table("ID", "Type", "Name", "Variable")
    for node in nodes:
        table.add_row(
            str(node.get("id", "")),
            Text(str(node.get("type", "")), style="crm.node"),
            str(node.get("name") or ""),
            str((node.get("data") or {}).get("variableName") or ""),
        )
    console.print(table)

    for conn in d.get("connections", []):
        handle = conn.get("sourceHandle", "main")
        label = "" if handle == "main" else f" [{handle}]"
        target_handle = conn.get("targetHandle", "main")
        suffix = "" if target_handle == "main" else f" ({target_handle})"
        console.print(
            f"  {conn.get('source')}{label} → {conn.get('target')}{suffix}", markup=False
        )


def _render_export(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    console.print(result.data.get("yaml", ""), markup=False, end="")


def _render_variables(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    root = Tree(f"[crm.node]{result.data.get('node_id')}[/crm.node] can reference:")

    def add(branch: Tree, items: list[dict[str, Any]]) -> None:
        for item in items:
            label = f"{item['label']}  [dim]{{{{{item['path']}}}}}[/dim]"
            child = branch.add(label)
            add(child, item.get("children") or [])

    add(root, result.data.get("variables", []))
    console.print(root)


# ── Executions ────────────────────────────────────────────────────────


def _render_execution(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    status = str(d.get("status", ""))
    console.print(
        Text("OK", style="crm.ok"),
        Text(f"  {result.op}", style="crm.op"),
        Text(f"  {d.get('id')}", style="crm.id"),
        Text(f"  {status}", style=style_for_status(status)),
    )
    _field(console, "workflow_id", d.get("workflow_id"))
    _field(console, "steps", d.get("steps", 0))
    if d.get("triggered"):
        _field(console, "triggered", ", ".join(d["triggered"]))
    if verbose and d.get("output") is not None:
        console.print(Text("  output:", style="crm.key"))
        console.print(_json.dumps(d["output"], indent=2, default=str), markup=False)

    steps = d.get("step_log")
    if steps:
        table = _table("#", "Node", "Type", "Status", "Error")
        for step in steps:
            step_status = str(step.get("status", ""))
            table.add_row(
                str(step.get("seq", "")),
                str(step.get("node_name") or step.get("node_id", "")),
                Text(str(step.get("node_type", "")), style="crm.node"),
                Text(step_status, style=style_for_status(step_status)),
                str(step.get("error") or ""),
            )
        console.print(table)
    if verbose:
        _render_meta(console, result)


def _render_execution_list(
    result: ServiceResult, console: Console, *, verbose: bool = False
) -> None:
    items = result.data.get("items", [])
    table = _table("ID", "Workflow", "Status", "Source", "Steps", "Started")
    for item in items:
        status = str(item.get("status", ""))
        table.add_row(
            str(item.get("id", "")),
            str(item.get("workflow_id", "")),
            Text(status, style=style_for_status(status)),
            str(item.get("source", "")),
            str(item.get("steps", "")),
            str(item.get("started", "")),
        )
    console.print(table)
    console.print(f"\n{result.data.get('count', len(items))} executions")


# ── CRM ───────────────────────────────────────────────────────────────


def _render_contact_list(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    items = result.data.get("items", [])
    table = _table("ID", "Name", "Email", "Company", "Type", "Stage")
    for item in items:
        table.add_row(
            str(item.get("id", "")),
            str(item.get("name", "")),
            str(item.get("email") or ""),
            str(item.get("companyName") or ""),
            str(item.get("type") or ""),
            str(item.get("lifecycleStage") or ""),
        )
    console.print(table)
    console.print(f"\n{result.data.get('count', len(items))} contacts")


def _render_deal_list(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    items = result.data.get("items", [])
    table = _table("ID", "Name", "Value", "Stage", "Contacts")
    for item in items:
        value = item.get("value")
        amount = f"{value:,.2f} {item.get('currency') or ''}".strip() if value is not None else ""
        table.add_row(
            str(item.get("id", "")),
            str(item.get("name", "")),
            amount,
            str(item.get("pipelineStageId") or ""),
            str(len(item.get("contactIds") or [])),
        )
    console.print(table)
    console.print(f"\n{result.data.get('count', len(items))} deals")


def _render_record(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    lines = [
        f"{key}: {value}"
        for key, value in d.items()
        if key not in ("id", "name", "notes", "stages") and value not in (None, "", [])
    ]
    console.print(Panel("\n".join(lines), title=f"{d.get('id')} — {d.get('name')}", expand=False))
    for note in d.get("notes") or []:
        console.print(f"  [dim]{note.get('createdAt')}[/dim]  {note.get('note')}")
    stages = d.get("stages")
    if stages:
        table = _table("#", "ID", "Stage")
        for stage in stages:
            table.add_row(str(stage.get("position")), str(stage.get("id")), str(stage.get("name")))
        console.print(table)


def _render_pipeline_list(
    result: ServiceResult, console: Console, *, verbose: bool = False
) -> None:
    items = result.data.get("items", [])
    table = _table("ID", "Name", "Stages", "Default")
    for item in items:
        table.add_row(
            str(item.get("id", "")),
            str(item.get("name", "")),
            " → ".join(s["name"] for s in item.get("stages", [])),
            _yes(item.get("isDefault")),
        )
    console.print(table)


# ── Init ──────────────────────────────────────────────────────────────


def _render_init(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    console.print(f"[crm.ok]Initialized[/crm.ok] workspace [crm.name]{d.get('name')}[/crm.name]")
    _field(console, "path", d.get("path"))
    _field(console, "organization_id", d.get("organization_id"))
    for created in d.get("files_created", []):
        console.print(f"  [dim]+ {created}[/dim]")


# ── Generic fallback ──────────────────────────────────────────────────


def _render_generic(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Fallback renderer: status line + all data as key-value pairs."""
    _status_line(console, result)
    for key, value in result.data.items():
        _field(console, key, value)
    if verbose:
        _render_meta(console, result)


# ── Dispatch table ────────────────────────────────────────────────────

_OP_RENDERERS: dict[str, Any] = {
    # Workflows
    "create_workflow": _render_workflow,
    "get_workflow": _render_workflow,
    "list_workflows": _render_workflow_list,
    "list_bundles": _render_workflow_list,
    "parent_workflows": _render_workflow_list,
    "save_graph": _render_mutation,
    "rename_workflow": _render_mutation,
    "archive_workflow": _render_mutation,
    "unarchive_workflow": _render_mutation,
    "delete_workflow": _render_mutation,
    "toggle_bundle": _render_mutation,
    "update_bundle_config": _render_mutation,
    "rename_variable": _render_mutation,
    "create_template": _render_workflow,
    "create_from_template": _render_workflow,
    "import_workflow": _render_workflow,
    "export_workflow": _render_export,
    "available_variables": _render_variables,
    # Executions
    "execute_workflow": _render_execution,
    "get_execution": _render_execution,
    "list_executions": _render_execution_list,
    # CRM
    "create_contact": _render_mutation,
    "update_contact": _render_mutation,
    "delete_contact": _render_mutation,
    "get_contact": _render_record,
    "list_contacts": _render_contact_list,
    "create_deal": _render_mutation,
    "update_deal": _render_mutation,
    "move_deal": _render_mutation,
    "delete_deal": _render_mutation,
    "add_deal_note": _render_mutation,
    "get_deal": _render_record,
    "list_deals": _render_deal_list,
    "create_pipeline": _render_record,
    "get_pipeline": _render_record,
    "update_pipeline": _render_record,
    "list_pipelines": _render_pipeline_list,
    # Init
    "init_workspace": _render_init,
}
