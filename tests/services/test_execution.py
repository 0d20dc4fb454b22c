"""Tests for ExecutionService — interpreting graphs and recording runs."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from crmflow.config.settings import CrmflowSettings
from crmflow.domain.types import NodeType
from crmflow.infrastructure.workspace import Workspace
from crmflow.services.execution import ExecutionService
from crmflow.services.result import ErrorCode
from crmflow.services.workflow import WorkflowService
from tests.conftest import create_contact, edge, make_workflow, node, run_workflow


def _set(node_id: str, name: str, value: str) -> dict:
    return node(node_id, NodeType.SET_VARIABLE, variableName=name, value=value)


def _if(node_id: str, left: str, operator: str, right: str = "") -> dict:
    return node(
        node_id,
        NodeType.IF_ELSE,
        variableName="check",
        leftOperand=left,
        operator=operator,
        rightOperand=right,
    )


@pytest.fixture
def limited_workspace(workspace_root: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Workspace]:
    """Workspace with tight step and loop limits."""
    monkeypatch.delenv("CRMFLOW_CONFIG", raising=False)
    settings = CrmflowSettings.from_cli(
        workspace_root=workspace_root,
        execution={"max_steps": 5, "max_loop_iterations": 3},
    )
    ws = Workspace(settings)
    try:
        yield ws
    finally:
        ws.close()


class TestLinearRun:
    def test_trigger_data_flows_to_variables(self, workspace: Workspace) -> None:
        wf = make_workflow(
            workspace,
            [
                node("l_trigger", NodeType.MANUAL_TRIGGER),
                _set("l_greet", "greeting", "Hi {{ trigger.name }}"),
            ],
            [edge("l_trigger", "l_greet")],
        )
        result = run_workflow(workspace, wf, trigger_data={"name": "Ada"})
        assert result.ok, result.error
        assert result.op == "execute_workflow"
        data = result.data
        assert data["id"] == "RUN-0001"
        assert data["status"] == "SUCCESS"
        assert data["steps"] == 2
        assert data["output"]["trigger"]["name"] == "Ada"
        assert "triggeredAt" in data["output"]["trigger"]
        assert data["output"]["variables"]["greeting"] == "Hi Ada"
        assert data["error"] is None
        assert data["triggered"] == []

    def test_non_manual_source_keeps_payload(self, workspace: Workspace) -> None:
        wf = make_workflow(workspace, [node("s_trigger", NodeType.MANUAL_TRIGGER)])
        result = run_workflow(workspace, wf, trigger_data={"a": 1}, source="trigger")
        assert result.data["output"]["trigger"] == {"a": 1}

    def test_typed_values(self, workspace: Workspace) -> None:
        wf = make_workflow(
            workspace,
            [_set("t_num", "count", "{{ 2 + 3 }}"), _set("t_list", "tags", '["a", "b"]')],
            [edge("t_num", "t_list")],
        )
        variables = run_workflow(workspace, wf).data["output"]["variables"]
        assert variables["count"] == 5
        assert variables["tags"] == ["a", "b"]

    def test_sequential_ids(self, workspace: Workspace) -> None:
        wf = make_workflow(workspace, [node("q_trigger", NodeType.MANUAL_TRIGGER)])
        first = run_workflow(workspace, wf).data["id"]
        second = run_workflow(workspace, wf).data["id"]
        assert (first, second) == ("RUN-0001", "RUN-0002")


class TestBranching:
    def _workflow(self, workspace: Workspace) -> str:
        return make_workflow(
            workspace,
            [
                node("b_trigger", NodeType.MANUAL_TRIGGER),
                _if("b_if", "{{ trigger.score }}", "greaterThan", "50"),
                _set("b_hot", "segment", "hot"),
                _set("b_cold", "segment", "cold"),
                _set("b_after", "seen", "yes"),
            ],
            [
                edge("b_trigger", "b_if"),
                edge("b_if", "b_hot", "true"),
                edge("b_if", "b_cold", "false"),
                edge("b_hot", "b_after"),
            ],
        )

    def test_true_branch(self, workspace: Workspace) -> None:
        result = run_workflow(workspace, self._workflow(workspace), trigger_data={"score": 80})
        variables = result.data["output"]["variables"]
        assert variables["segment"] == "hot"
        assert variables["seen"] == "yes"
        assert variables["check"]["result"] is True
        assert variables["check"]["branchToFollow"] == "true"
        assert "branchToFollow" not in result.data["output"]
        assert result.data["steps"] == 4

    def test_chosen_branch_visible_downstream(self, workspace: Workspace) -> None:
        wf = make_workflow(
            workspace,
            [
                node("v_trigger", NodeType.MANUAL_TRIGGER),
                _if("v_if", "a", "equals", "a"),
                _set("v_branch", "branch", "took {{ check.branchToFollow }}"),
            ],
            [edge("v_trigger", "v_if"), edge("v_if", "v_branch", "true")],
        )
        variables = run_workflow(workspace, wf).data["output"]["variables"]
        assert variables["branch"] == "took true"

    def test_false_branch_skips_other_side(self, workspace: Workspace) -> None:
        result = run_workflow(workspace, self._workflow(workspace), trigger_data={"score": 10})
        variables = result.data["output"]["variables"]
        assert variables["segment"] == "cold"
        assert "seen" not in variables
        assert result.data["steps"] == 3

    def test_switch_case_and_default(self, workspace: Workspace) -> None:
        wf = make_workflow(
            workspace,
            [
                node("w_trigger", NodeType.MANUAL_TRIGGER),
                node(
                    "w_switch",
                    NodeType.SWITCH,
                    variableName="route",
                    inputValue="{{ trigger.plan }}",
                    cases=[{"value": "pro"}, {"value": "team", "label": "Team"}],
                ),
                _set("w_pro", "owner", "sales"),
                _set("w_team", "owner", "success"),
                _set("w_other", "owner", "nurture"),
            ],
            [
                edge("w_trigger", "w_switch"),
                edge("w_switch", "w_pro", "case-0"),
                edge("w_switch", "w_team", "case-1"),
                edge("w_switch", "w_other", "default"),
            ],
        )
        team = run_workflow(workspace, wf, trigger_data={"plan": "team"}).data["output"]
        assert team["variables"]["owner"] == "success"
        assert team["variables"]["route"]["label"] == "Team"
        assert team["variables"]["route"]["branchToFollow"] == "case-1"
        free = run_workflow(workspace, wf, trigger_data={"plan": "free"}).data["output"]
        assert free["variables"]["owner"] == "nurture"
        assert free["variables"]["route"]["matchedCase"] is None


class TestLoops:
    def _loop_workflow(self, workspace: Workspace, **loop: str) -> str:
        return make_workflow(
            workspace,
            [
                node("p_trigger", NodeType.MANUAL_TRIGGER),
                node("p_loop", NodeType.LOOP, variableName="each", **loop),
                _set("p_body", "last", "{{ item }}"),
                _set("p_done", "finished", "true"),
            ],
            [
                edge("p_trigger", "p_loop"),
                edge("p_loop", "p_body", "loop-body"),
                edge("p_body", "p_loop", "main", "loop-back"),
                edge("p_loop", "p_done", "after-loop"),
            ],
        )

    def test_array_loop(self, workspace: Workspace) -> None:
        wf = self._loop_workflow(workspace, loopType="array", arrayInput="{{ trigger.ids }}")
        result = run_workflow(workspace, wf, trigger_data={"ids": ["a", "b", "c"]})
        assert result.ok, result.error
        output = result.data["output"]
        assert output["variables"]["last"] == "c"
        assert output["variables"]["finished"] is True
        assert output["variables"]["each"]["completed"] is True
        assert output["variables"]["each"]["totalIterations"] == 3
        assert "loopState" not in output
        # trigger + 4 loop visits + 3 body runs + after-loop node
        assert result.data["steps"] == 9

    def test_count_loop(self, workspace: Workspace) -> None:
        wf = self._loop_workflow(workspace, loopType="count", countInput="2")
        output = run_workflow(workspace, wf).data["output"]
        assert output["variables"]["last"] == 1

    def test_empty_loop_goes_straight_to_after(self, workspace: Workspace) -> None:
        wf = self._loop_workflow(workspace, loopType="array", arrayInput="[]")
        result = run_workflow(workspace, wf)
        assert "last" not in result.data["output"]["variables"]
        assert result.data["output"]["variables"]["finished"] is True

    def test_iteration_limit(self, limited_workspace: Workspace) -> None:
        wf = self._loop_workflow(limited_workspace, loopType="count", countInput="10")
        result = run_workflow(limited_workspace, wf)
        assert not result.ok
        assert result.error is not None
        assert result.error.code == ErrorCode.EXECUTION_FAILED
        assert result.data["error_node_id"] == "p_loop"

    def test_nested_loops(self, workspace: Workspace) -> None:
        wf = make_workflow(
            workspace,
            [
                node("nl_trigger", NodeType.MANUAL_TRIGGER),
                node(
                    "nl_outer",
                    NodeType.LOOP,
                    variableName="outer",
                    arrayInput="{{ trigger.groups }}",
                    itemVariableName="group",
                ),
                node(
                    "nl_inner",
                    NodeType.LOOP,
                    variableName="inner",
                    loopType="count",
                    countInput="2",
                    itemVariableName="j",
                ),
                _set("nl_pair", "trail", "{{ trail }}{{ group }}{{ j }},"),
                _set("nl_tally", "afterInner", "{{ afterInner }}{{ group }}"),
                _set("nl_done", "finished", "yes"),
            ],
            [
                edge("nl_trigger", "nl_outer"),
                edge("nl_outer", "nl_inner", "loop-body"),
                edge("nl_inner", "nl_pair", "loop-body"),
                edge("nl_pair", "nl_inner", "main", "loop-back"),
                edge("nl_inner", "nl_tally", "after-loop"),
                edge("nl_tally", "nl_outer", "main", "loop-back"),
                edge("nl_outer", "nl_done", "after-loop"),
            ],
        )
        result = run_workflow(workspace, wf, trigger_data={"groups": ["a", "b"]})
        assert result.ok, result.error
        variables = result.data["output"]["variables"]
        # inner state restarts for every outer item
        assert variables["trail"] == "a0,a1,b0,b1,"
        # after-loop of the inner loop runs inside the outer body, once per item
        assert variables["afterInner"] == "ab"
        assert variables["inner"]["totalIterations"] == 2
        assert variables["outer"]["totalIterations"] == 2
        assert variables["finished"] == "yes"
        assert "loopState" not in result.data["output"]
        # trigger + 3 outer visits + 2 * (3 inner visits + 2 pairs + 1 tally) + done
        assert result.data["steps"] == 17

    def test_branch_inside_body(self, workspace: Workspace) -> None:
        wf = make_workflow(
            workspace,
            [
                node("bl_trigger", NodeType.MANUAL_TRIGGER),
                node(
                    "bl_loop",
                    NodeType.LOOP,
                    variableName="each",
                    arrayInput="{{ trigger.scores }}",
                    itemVariableName="score",
                ),
                _if("bl_if", "{{ score }}", "greaterThan", "50"),
                _set("bl_hot", "trail", "{{ trail }}H"),
                _set("bl_cold", "trail", "{{ trail }}C"),
                _set("bl_done", "finished", "yes"),
            ],
            [
                edge("bl_trigger", "bl_loop"),
                edge("bl_loop", "bl_if", "loop-body"),
                edge("bl_if", "bl_hot", "true"),
                edge("bl_if", "bl_cold", "false"),
                edge("bl_hot", "bl_loop", "main", "loop-back"),
                edge("bl_cold", "bl_loop", "main", "loop-back"),
                edge("bl_loop", "bl_done", "after-loop"),
            ],
        )
        result = run_workflow(workspace, wf, trigger_data={"scores": [80, 10, 60]})
        assert result.ok, result.error
        variables = result.data["output"]["variables"]
        assert variables["trail"] == "HCH"
        assert variables["finished"] == "yes"
        # trigger + 4 loop visits + 3 * (if + one side) + done
        assert result.data["steps"] == 12

    def test_stop_inside_body(self, workspace: Workspace) -> None:
        wf = make_workflow(
            workspace,
            [
                node("sl_trigger", NodeType.MANUAL_TRIGGER),
                node(
                    "sl_loop",
                    NodeType.LOOP,
                    variableName="each",
                    loopType="count",
                    countInput="5",
                    itemVariableName="i",
                ),
                _if("sl_if", "{{ i }}", "equals", "2"),
                node("sl_stop", NodeType.STOP_WORKFLOW, variableName="halt", reason="hit {{ i }}"),
                _set("sl_last", "last", "{{ i }}"),
                _set("sl_done", "finished", "yes"),
            ],
            [
                edge("sl_trigger", "sl_loop"),
                edge("sl_loop", "sl_if", "loop-body"),
                edge("sl_if", "sl_stop", "true"),
                edge("sl_if", "sl_last", "false"),
                edge("sl_last", "sl_loop", "main", "loop-back"),
                edge("sl_loop", "sl_done", "after-loop"),
            ],
        )
        result = run_workflow(workspace, wf)
        assert result.ok, result.error
        assert result.data["status"] == "STOPPED"
        variables = result.data["output"]["variables"]
        assert variables["last"] == 1
        assert variables["halt"] == {"stopped": True, "reason": "hit 2"}
        assert "finished" not in variables

    def test_loop_over_found_contacts(self, workspace: Workspace) -> None:
        create_contact(workspace, "Ada", email="ada@example.com")
        create_contact(workspace, "Grace", email="grace@example.com")
        create_contact(workspace, "Linus", email="linus@kernel.org")
        wf = make_workflow(
            workspace,
            [
                node("fl_trigger", NodeType.MANUAL_TRIGGER),
                node("fl_find", NodeType.FIND_CONTACTS, variableName="found", email="example.com"),
                node("fl_loop", NodeType.LOOP, variableName="each", arrayInput="found"),
                _set("fl_body", "names", "{{ names }}{{ item.name }};"),
            ],
            [
                edge("fl_trigger", "fl_find"),
                edge("fl_find", "fl_loop"),
                edge("fl_loop", "fl_body", "loop-body"),
                edge("fl_body", "fl_loop", "main", "loop-back"),
            ],
        )
        result = run_workflow(workspace, wf)
        assert result.ok, result.error
        output = result.data["output"]
        assert len(output["found"]) == 2
        assert output["variables"]["each"]["totalIterations"] == 2
        assert sorted(output["variables"]["names"].split(";")[:-1]) == ["Ada", "Grace"]


class TestStopAndFailure:
    def test_stop_workflow(self, workspace: Workspace) -> None:
        wf = make_workflow(
            workspace,
            [
                node("x_trigger", NodeType.MANUAL_TRIGGER),
                node("x_stop", NodeType.STOP_WORKFLOW, variableName="halt", reason="done early"),
                _set("x_after", "never", "1"),
            ],
            [edge("x_trigger", "x_stop"), edge("x_stop", "x_after")],
        )
        result = run_workflow(workspace, wf)
        assert result.ok
        assert result.data["status"] == "STOPPED"
        assert result.data["output"]["variables"]["halt"] == {"stopped": True, "reason": "done early"}
        assert "never" not in result.data["output"]["variables"]

    def test_failed_node_recorded(self, workspace: Workspace) -> None:
        wf = make_workflow(
            workspace,
            [
                node("f_trigger", NodeType.MANUAL_TRIGGER),
                node("f_bundle", NodeType.BUNDLE_WORKFLOW, variableName="b", bundleWorkflowId="wf_000000000000"),
                _set("f_after", "never", "1"),
            ],
            [edge("f_trigger", "f_bundle"), edge("f_bundle", "f_after")],
        )
        result = run_workflow(workspace, wf)
        assert not result.ok
        assert result.error is not None
        assert result.error.code == ErrorCode.EXECUTION_FAILED
        assert "not found" in result.error.message
        assert result.error.detail["node_id"] == "f_bundle"
        assert result.data["status"] == "FAILED"
        assert result.data["error_node_id"] == "f_bundle"
        # context up to the failure is kept
        assert "trigger" in result.data["output"]
        assert "never" not in result.data["output"].get("variables", {})

    def test_step_limit(self, limited_workspace: Workspace) -> None:
        nodes = [node("m_trigger", NodeType.MANUAL_TRIGGER)]
        nodes += [_set(f"m_{i}", f"v{i}", str(i)) for i in range(6)]
        ids = [n["id"] for n in nodes]
        wf = make_workflow(limited_workspace, nodes, [edge(a, b) for a, b in zip(ids, ids[1:])])
        result = run_workflow(limited_workspace, wf)
        assert not result.ok
        assert "limit of 5 steps" in result.error.message  # type: ignore[union-attr]


class TestNotRunnable:
    def test_unknown_workflow(self, workspace: Workspace) -> None:
        result = run_workflow(workspace, "wf_000000000000")
        assert result.error is not None
        assert result.error.code == ErrorCode.NOT_FOUND

    def test_archived(self, workspace: Workspace) -> None:
        wf = make_workflow(workspace, [node("a_trigger", NodeType.MANUAL_TRIGGER)])
        WorkflowService(workspace).set_archived(wf, True)
        result = run_workflow(workspace, wf)
        assert result.error is not None
        assert result.error.code == ErrorCode.NOT_EXECUTABLE

    def test_template(self, workspace: Workspace) -> None:
        wf = make_workflow(workspace, [node("tp_trigger", NodeType.MANUAL_TRIGGER)])
        template = WorkflowService(workspace).create_template_from_workflow(wf)
        result = run_workflow(workspace, template.data["id"])
        assert result.error is not None
        assert result.error.code == ErrorCode.NOT_EXECUTABLE

    def test_cycle_is_invalid(self, workspace: Workspace) -> None:
        wf = make_workflow(
            workspace,
            [_set("c_a", "a", "1"), _set("c_b", "b", "2")],
            [edge("c_a", "c_b"), edge("c_b", "c_a")],
        )
        result = run_workflow(workspace, wf)
        assert result.error is not None
        assert result.error.code == ErrorCode.INVALID_GRAPH
        assert result.error.detail["problems"]
        assert ExecutionService(workspace).list_executions().data["count"] == 0


class TestBundles:
    def test_bundle_inputs_and_outputs(self, workspace: Workspace) -> None:
        bundle = make_workflow(
            workspace,
            [_set("u_greet", "greeting", "Hello {{ email }} from {{ parentContext['Test workflow']['Manual Trigger'].email }}")],
            bundle=True,
        )
        configured = WorkflowService(workspace).update_bundle_config(
            bundle,
            inputs=[{"name": "email"}],
            outputs=[{"name": "message", "variablePath": "greeting"}],
        )
        assert configured.ok, configured.error
        parent = make_workflow(
            workspace,
            [
                node("u_trigger", NodeType.MANUAL_TRIGGER, name="Manual Trigger"),
                node(
                    "u_call",
                    NodeType.BUNDLE_WORKFLOW,
                    variableName="enriched",
                    bundleWorkflowId=bundle,
                    inputMappings=[{"bundleInputName": "email", "value": "{{ trigger.email }}"}],
                ),
            ],
            [edge("u_trigger", "u_call")],
        )
        result = run_workflow(workspace, parent, trigger_data={"email": "a@b.co"})
        assert result.ok, result.error
        assert result.data["output"]["variables"]["enriched"] == {
            "message": "Hello a@b.co from a@b.co"
        }

    def test_loop_inside_bundle(self, workspace: Workspace) -> None:
        bundle = make_workflow(
            workspace,
            [
                node(
                    "ul_loop",
                    NodeType.LOOP,
                    variableName="each",
                    arrayInput="{{ emails }}",
                    itemVariableName="address",
                ),
                _set("ul_last", "last", "{{ address }}"),
                _set("ul_sum", "summary", "{{ each.totalIterations }} sent"),
            ],
            [
                edge("ul_loop", "ul_last", "loop-body"),
                edge("ul_last", "ul_loop", "main", "loop-back"),
                edge("ul_loop", "ul_sum", "after-loop"),
            ],
            bundle=True,
        )
        configured = WorkflowService(workspace).update_bundle_config(
            bundle,
            inputs=[{"name": "emails"}],
            outputs=[
                {"name": "count", "variablePath": "each.totalIterations"},
                {"name": "last", "variablePath": "last"},
                {"name": "summary", "variablePath": "summary"},
            ],
        )
        assert configured.ok, configured.error
        parent = make_workflow(
            workspace,
            [
                node("ul_trigger", NodeType.MANUAL_TRIGGER),
                node(
                    "ul_call",
                    NodeType.BUNDLE_WORKFLOW,
                    variableName="sent",
                    bundleWorkflowId=bundle,
                    inputMappings=[{"bundleInputName": "emails", "value": "{{ trigger.emails }}"}],
                ),
            ],
            [edge("ul_trigger", "ul_call")],
        )
        result = run_workflow(workspace, parent, trigger_data={"emails": ["a@x.co", "b@x.co"]})
        assert result.ok, result.error
        output = result.data["output"]
        assert output["variables"]["sent"] == {"count": 2, "last": "b@x.co", "summary": "2 sent"}
        assert "loopState" not in output
        assert "last" not in output["variables"]


class TestHistory:
    def _run(self, workspace: Workspace) -> tuple[str, str]:
        wf = make_workflow(
            workspace,
            [node("h_trigger", NodeType.MANUAL_TRIGGER), _set("h_set", "x", "1")],
            [edge("h_trigger", "h_set")],
        )
        return wf, run_workflow(workspace, wf).data["id"]

    def test_get_execution_has_step_log(self, workspace: Workspace) -> None:
        wf, run_id = self._run(workspace)
        result = ExecutionService(workspace).get_execution(run_id)
        assert result.ok
        record = result.data
        assert record["workflow_id"] == wf
        assert record["status"] == "SUCCESS"
        assert record["source"] == "manual"
        assert record["completed"] is not None
        assert [s["seq"] for s in record["step_log"]] == [1, 2]
        assert [s["node_id"] for s in record["step_log"]] == ["h_trigger", "h_set"]
        assert record["step_log"][1]["output"] == 1
        assert all(s["status"] == "success" for s in record["step_log"])

    def test_get_unknown_execution(self, workspace: Workspace) -> None:
        result = ExecutionService(workspace).get_execution("RUN-9999")
        assert result.error is not None
        assert result.error.code == ErrorCode.NOT_FOUND

    def test_list_filters(self, workspace: Workspace) -> None:
        wf, _ = self._run(workspace)
        other = make_workflow(workspace, [node("h2_trigger", NodeType.MANUAL_TRIGGER)])
        run_workflow(workspace, other)
        svc = ExecutionService(workspace)
        assert svc.list_executions().data["count"] == 2
        only = svc.list_executions(workflow_id=wf).data
        assert only["count"] == 1
        assert only["items"][0]["workflow_id"] == wf
        assert svc.list_executions(status="failed").data["count"] == 0
        assert svc.list_executions(limit=1).data["count"] == 1
