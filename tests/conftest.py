"""Shared pytest fixtures and test helpers for crmflow tests."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner
from sqlalchemy.engine import Engine

from crmflow.config.settings import CrmflowSettings
from crmflow.domain.types import NodeType
from crmflow.infrastructure.database.engine import init_database
from crmflow.infrastructure.workspace import Workspace


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def db_engine(tmp_path: Path) -> Iterator[Engine]:
    """Initialized SQLite engine with all tables created."""
    engine = init_database(tmp_path)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    """Temporary workspace directory.

    Single source of truth for the workspace location; every workspace
    fixture (workspace, bus_workspace, _isolated_workspace) builds on it.
    """
    return tmp_path


@pytest.fixture
def workspace(workspace_root: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Workspace]:
    """Fully initialized workspace without an event bus."""
    monkeypatch.delenv("CRMFLOW_CONFIG", raising=False)
    settings = CrmflowSettings.from_cli(workspace_root=workspace_root)
    ws = Workspace(settings)
    try:
        yield ws
    finally:
        ws.close()


@pytest.fixture
def bus_workspace(workspace_root: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Workspace]:
    """Workspace with a synchronous plugin event bus."""
    monkeypatch.delenv("CRMFLOW_CONFIG", raising=False)
    settings = CrmflowSettings.from_cli(workspace_root=workspace_root, sync=True)
    ws = Workspace(settings)
    ws.init_event_bus(sync=True)
    try:
        yield ws
    finally:
        ws.close()


@pytest.fixture
def _isolated_workspace(workspace_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Change CWD to a temp workspace root so the CLI creates an isolated workspace.

    Use via ``@pytest.mark.usefixtures("_isolated_workspace")`` on command test
    classes. WAIT nodes are disabled so CLI runs never sleep.
    """
    monkeypatch.delenv("CRMFLOW_CONFIG", raising=False)
    monkeypatch.setenv("CRMFLOW_EXECUTION__WAIT_ENABLED", "false")
    monkeypatch.chdir(workspace_root)


# ---------------------------------------------------------------------------
# Shared test helpers (used across service and command test modules)
# ---------------------------------------------------------------------------


def node(
    node_id: str,
    node_type: NodeType | str,
    name: str | None = None,
    **data: Any,
) -> dict[str, Any]:
    """Builder-shaped node dict."""
    return {"id": node_id, "type": str(node_type), "name": name, "data": data}


def edge(
    source: str,
    target: str,
    source_handle: str = "main",
    target_handle: str = "main",
) -> dict[str, Any]:
    """Builder-shaped connection dict."""
    return {
        "source": source,
        "target": target,
        "sourceHandle": source_handle,
        "targetHandle": target_handle,
    }


def make_workflow(
    ws: Workspace,
    nodes: list[dict[str, Any]],
    connections: list[dict[str, Any]] | None = None,
    *,
    name: str = "Test workflow",
    bundle: bool = False,
) -> str:
    """Create a workflow and save *nodes*/*connections* as its graph; returns its id."""
    from crmflow.services.workflow import WorkflowService

    svc = WorkflowService(ws)
    created = svc.create_workflow(name, bundle=bundle)
    assert created.ok, created.error
    workflow_id = created.data["id"]
    saved = svc.save_graph(workflow_id, {"nodes": nodes, "connections": connections or []})
    assert saved.ok, saved.error
    return workflow_id


def run_workflow(ws: Workspace, workflow_id: str, **kwargs: Any) -> Any:
    """Execute a workflow with sleeping disabled; returns the ServiceResult."""
    from crmflow.services.execution import ExecutionService

    return ExecutionService(ws, sleeper=lambda _seconds: None).execute(workflow_id, **kwargs)


def create_contact(ws: Workspace, name: str, **fields: Any) -> dict[str, Any]:
    """Create a contact via ContactService (no triggers), asserting success."""
    from crmflow.services.crm import ContactService

    result = ContactService(ws, fire_triggers=False).create_contact(name, **fields)
    assert result.ok, result.error
    return result.data


def create_pipeline(ws: Workspace, name: str = "Sales", stages: list[str] | None = None) -> dict[str, Any]:
    """Create a pipeline via PipelineService, asserting success."""
    from crmflow.services.crm import PipelineService

    result = PipelineService(ws).create_pipeline(
        name, stages or ["Lead", "Qualified", "Won"], is_default=True
    )
    assert result.ok, result.error
    return result.data


def make_request(
    node_type: NodeType | str,
    data: dict[str, Any] | None = None,
    context: dict[str, Any] | None = None,
    *,
    workspace: Workspace | None = None,
    node_id: str = "n1",
    name: str | None = None,
    **runtime: Any,
) -> Any:
    """ExecutionRequest for calling one executor directly."""
    from crmflow.config.models import ExecutionConfig
    from crmflow.domain.workflow import NodeSpec
    from crmflow.executors.base import ExecutionRequest, ExecutionRuntime

    runtime.setdefault("config", ExecutionConfig())
    return ExecutionRequest(
        node=NodeSpec(id=node_id, type=node_type, name=name, data=data or {}),
        context=context or {},
        runtime=ExecutionRuntime(
            workspace=workspace,
            execution_id="RUN-0001",
            workflow_id="wf_test",
            workflow_name="Test workflow",
            **runtime,
        ),
    )
