"""End-to-end performance regression tests.

Uses the telemetry system to capture individual service timings and
wall-clock time for overall scenarios. Thresholds are generous (10-50x
typical) to avoid CI flakes while still catching serious regressions
such as per-step full-table scans or quadratic graph walks.
"""

from __future__ import annotations

import time
from collections.abc import Generator
from typing import Any

import pytest

from crmflow.domain.types import NodeType
from crmflow.infrastructure.workspace import Workspace
from crmflow.services.telemetry import _current_span, disable_telemetry, enable_telemetry
from tests.conftest import edge, node

# ── Thresholds (milliseconds) ────────────────────────────────────────

# Individual service method calls
SINGLE_OP_MS = 200

# Sub-stage spans inside service methods
SUB_STAGE_MS = 200

# Batch operations (creating 10+ records)
BATCH_MS = 2000

# Full multi-step scenarios
WORKFLOW_MS = 5000


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _telemetry_enabled() -> Generator[None]:
    """Enable telemetry for all performance tests, clean up after."""
    enable_telemetry()
    yield
    disable_telemetry()
    _current_span.set(None)


def _get_telemetry(result: Any) -> dict[str, Any]:
    """Extract telemetry dict from a ServiceResult, failing if absent."""
    assert result.ok, f"Operation failed: {result.error}"
    assert result.meta is not None, "No meta — telemetry not captured"
    assert "telemetry" in result.meta, "No telemetry key in meta"
    return result.meta["telemetry"]


def _get_child_durations(telemetry: dict[str, Any]) -> dict[str, float]:
    """Extract {name: duration_ms} for all child spans."""
    return {child["name"]: child["duration_ms"] for child in telemetry.get("children", [])}


# ── CRM record churn ─────────────────────────────────────────────────


@pytest.mark.slow
class TestCrmPerformance:
    """Creates contacts and deals, then moves every deal through a pipeline."""

    def test_batch_crm_operations(self, workspace: Workspace) -> None:
        from crmflow.services.crm import ContactService, DealService, PipelineService

        pipeline = PipelineService(workspace).create_pipeline(
            "Sales", ["Lead", "Qualified", "Won"], is_default=True
        )
        stages = pipeline.data["stages"]
        contacts = ContactService(workspace)
        deals = DealService(workspace)
        durations: list[float] = []
        start = time.perf_counter()

        contact_ids: list[str] = []
        for i in range(10):
            result = contacts.create_contact(f"Contact {i}", email=f"c{i}@example.com")
            durations.append(_get_telemetry(result)["duration_ms"])
            contact_ids.append(result.data["id"])

        for i, contact_id in enumerate(contact_ids[:5]):
            result = deals.create_deal(
                f"Deal {i}", contact_ids=[contact_id], value=100 * i, pipeline_id=pipeline.data["id"]
            )
            durations.append(_get_telemetry(result)["duration_ms"])
            moved = deals.move_deal(result.data["id"], stages[-1]["id"])
            durations.append(_get_telemetry(moved)["duration_ms"])

        listed = contacts.list_contacts(search="contact")
        durations.append(_get_telemetry(listed)["duration_ms"])
        assert listed.data["count"] == 10

        elapsed_ms = (time.perf_counter() - start) * 1000
        for i, dur in enumerate(durations):
            assert dur < SINGLE_OP_MS, f"CRM op #{i} took {dur:.1f}ms (threshold: {SINGLE_OP_MS}ms)"
        assert elapsed_ms < BATCH_MS, (
            f"CRM batch took {elapsed_ms:.1f}ms (threshold: {BATCH_MS}ms)"
        )


# ── Loop-heavy execution ─────────────────────────────────────────────


@pytest.mark.slow
class TestExecutionPerformance:
    """Saves a looping workflow and executes it over a 25-item array."""

    def test_loop_execution(self, workspace: Workspace) -> None:
        from crmflow.services.execution import ExecutionService
        from crmflow.services.workflow import WorkflowService

        svc = WorkflowService(workspace)
        start = time.perf_counter()

        created = svc.create_workflow("Loop heavy")
        workflow_id = created.data["id"]
        saved = svc.save_graph(
            workflow_id,
            {
                "nodes": [
                    node("perf_trigger", NodeType.MANUAL_TRIGGER),
                    node(
                        "perf_loop",
                        NodeType.LOOP,
                        variableName="each",
                        loopType="array",
                        arrayInput="{{ trigger.ids }}",
                    ),
                    node("perf_body", NodeType.SET_VARIABLE, variableName="last", value="{{ item }}"),
                ],
                "connections": [
                    edge("perf_trigger", "perf_loop"),
                    edge("perf_loop", "perf_body", "loop-body"),
                    edge("perf_body", "perf_loop", "main", "loop-back"),
                ],
            },
        )
        save_tel = _get_telemetry(saved)
        for stage_name, stage_ms in _get_child_durations(save_tel).items():
            assert stage_ms < SUB_STAGE_MS, (
                f"save_graph sub-stage '{stage_name}' took {stage_ms:.1f}ms "
                f"(threshold: {SUB_STAGE_MS}ms)"
            )

        result = ExecutionService(workspace, sleeper=lambda _s: None).execute(
            workflow_id, trigger_data={"ids": list(range(25))}
        )
        tel = _get_telemetry(result)
        assert result.data["output"]["variables"]["last"] == 24

        history = ExecutionService(workspace).get_execution(result.data["id"])
        assert _get_telemetry(history)["duration_ms"] < SINGLE_OP_MS

        elapsed_ms = (time.perf_counter() - start) * 1000
        assert tel["duration_ms"] < WORKFLOW_MS, (
            f"Loop execution took {tel['duration_ms']:.1f}ms (threshold: {WORKFLOW_MS}ms)"
        )
        assert elapsed_ms < WORKFLOW_MS, (
            f"Save and execute took {elapsed_ms:.1f}ms (threshold: {WORKFLOW_MS}ms)"
        )
