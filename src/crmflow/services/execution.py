"""ExecutionService — run a workflow graph and record what happened.

Pipeline: LOAD → VALIDATE → RECORD START → INTERPRET → RECORD RESULT → EVENT → TRIGGERS

The interpreter walks the graph in topological order. A node runs only
once it is reachable: entry nodes start reachable, a regular node makes
every target reachable, and a branching node (IF/ELSE, SWITCH, LOOP)
only the targets wired to the handle it chose. LOOP nodes run their
body as a nested region once per iteration, then continue on
``after-loop``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from sqlalchemy import insert, select, update

from crmflow.domain.types import (
    BRANCHING_TYPES,
    TRIGGER_TYPES,
    ExecutionStatus,
    Handle,
    NodeStatus,
    NodeType,
)
from crmflow.domain.variables import lookup_variable
from crmflow.domain.workflow import NodeSpec
from crmflow.executors.base import (
    Context,
    ExecutionRequest,
    ExecutionRuntime,
    NodeExecutionError,
)
from crmflow.executors.control import BRANCH_KEY, LOOP_STATE_KEY, SHOULD_STOP_KEY
from crmflow.executors.registry import get_executor
from crmflow.executors.triggers import trigger_variable
from crmflow.infrastructure.database.counters import next_sequential_id
from crmflow.infrastructure.database.schema import execution_steps, executions, workflows
from crmflow.infrastructure.graph.engine import FlowGraph
from crmflow.services._helpers import dumps, now_iso, row_to_dict
from crmflow.services.base import BaseService
from crmflow.services.result import ErrorCode, ServiceResult
from crmflow.services.telemetry import trace_span, traced

if TYPE_CHECKING:
    from crmflow.infrastructure.workspace import Workspace

logger = logging.getLogger(__name__)

_EXECUTION_JSON = ("trigger_data", "output")
_STEP_JSON = ("output",)


def published_value(node: NodeSpec, context: Context) -> Any:
    """The value *node* published into *context*, if it names one."""
    name = node.variable_name
    if name is None and node.type in TRIGGER_TYPES:
        name = trigger_variable(node.type, None)
    if name is None:
        return None
    return lookup_variable(context, name)


def take_branch(node: NodeSpec, context: Context) -> tuple[str | None, Context]:
    """Return the handle a branching node chose, with the root marker cleared.

    LOOP puts ``branchToFollow`` on the context root, which is popped.
    IF/ELSE and SWITCH put it on their result under ``variables``, where it
    stays as part of the node's output.
    """
    cleaned = dict(context)
    handle = cleaned.pop(BRANCH_KEY, None)
    name = node.variable_name
    variables = cleaned.get("variables")
    if handle is None and name and isinstance(variables, dict):
        result = variables.get(name)
        if isinstance(result, dict):
            handle = result.get(BRANCH_KEY)
    return (str(handle) if handle is not None else None), cleaned


class GraphInterpreter:
    """Walks one execution, including any nested bundle runs.

    ``run`` matches the runtime's graph-runner signature, so BUNDLE_WORKFLOW
    re-enters it for the bundle's graph with a child runtime.
    """

    def __init__(
        self,
        *,
        max_steps: int,
        record_step: Callable[[int, NodeSpec, NodeStatus, Any, str | None, str], None],
    ) -> None:
        self._max_steps = max_steps
        self._record_step = record_step
        self.steps = 0
        self.context: Context = {}

    def run(self, graph: FlowGraph, context: Context, runtime: ExecutionRuntime) -> Context:
        order = graph.execution_order()
        bodies = {
            node_id: graph.loop_body(node_id)
            for node_id in order
            if graph.node(node_id).type == NodeType.LOOP
        }
        members = set(order)
        return self._run_region(
            graph, order, members, set(graph.entry_nodes()), bodies, context, runtime
        )

    # ------------------------------------------------------------------
    # Regions
    # ------------------------------------------------------------------

    def _run_region(
        self,
        graph: FlowGraph,
        order: list[str],
        members: set[str],
        reachable: set[str],
        bodies: dict[str, set[str]],
        context: Context,
        runtime: ExecutionRuntime,
    ) -> Context:
        nested: set[str] = set()
        for loop_id, body in bodies.items():
            if loop_id in members:
                nested |= body
        region = [n for n in order if n in members and n not in nested]

        for node_id in region:
            if context.get(SHOULD_STOP_KEY):
                break
            if node_id not in reachable:
                continue
            node = graph.node(node_id)
            if node.type == NodeType.LOOP:
                context = self._run_loop(graph, order, node, bodies, context, runtime)
                if not context.get(SHOULD_STOP_KEY):
                    reachable.update(graph.targets(node_id, Handle.AFTER_LOOP))
                continue

            context = self._step(node, context, runtime)
            if node.type in BRANCHING_TYPES:
                handle, context = take_branch(node, context)
                if handle is None:
                    logger.warning("Node %s chose no branch; nothing follows it", node_id)
                    continue
                reachable.update(graph.targets(node_id, handle))
            else:
                reachable.update(target for target, _ in graph.outgoing(node_id))
        return context

    def _run_loop(
        self,
        graph: FlowGraph,
        order: list[str],
        node: NodeSpec,
        bodies: dict[str, set[str]],
        context: Context,
        runtime: ExecutionRuntime,
    ) -> Context:
        body = bodies.get(node.id, set())
        starts = graph.targets(node.id, Handle.LOOP_BODY)
        while True:
            context = self._step(node, context, runtime)
            handle, context = take_branch(node, context)
            if handle != Handle.LOOP_BODY:
                break
            context = self._run_region(
                graph, order, body, set(starts), bodies, context, runtime
            )
            if context.get(SHOULD_STOP_KEY):
                break
        if not context.get(LOOP_STATE_KEY):
            context = {k: v for k, v in context.items() if k != LOOP_STATE_KEY}
        return context

    # ------------------------------------------------------------------
    # Single node
    # ------------------------------------------------------------------

    def _step(self, node: NodeSpec, context: Context, runtime: ExecutionRuntime) -> Context:
        self.steps += 1
        if self.steps > self._max_steps:
            msg = f"Execution exceeded the limit of {self._max_steps} steps"
            raise NodeExecutionError(msg, node_id=node.id, node_type=node.type)

        started = now_iso()
        executor = get_executor(node.type)
        try:
            result = executor(ExecutionRequest(node=node, context=context, runtime=runtime))
        except NodeExecutionError as exc:
            exc.node_id = exc.node_id or node.id
            self._record_step(self.steps, node, NodeStatus.ERROR, None, exc.message, started)
            raise

        value = published_value(node, result)
        runtime.node_outputs[node.display_name] = value
        self._record_step(self.steps, node, NodeStatus.SUCCESS, value, None, started)
        self.context = result
        return result


class ExecutionService(BaseService):
    """Executes workflows and reads back execution history."""

    def __init__(self, workspace: Workspace, *, sleeper: Callable[[float], None] | None = None) -> None:
        super().__init__(workspace)
        self._sleeper = sleeper or time.sleep

    @traced
    def execute(
        self,
        workflow_id: str,
        *,
        trigger_data: dict[str, Any] | None = None,
        source: str = "manual",
        trigger_depth: int = 0,
    ) -> ServiceResult:
        """Run *workflow_id* to completion and return the execution record."""
        op = "execute_workflow"
        warnings: list[str] = []
        settings = self._workspace.settings.execution

        # ── LOAD → VALIDATE ──────────────────────────────────────
        with trace_span("validate"):
            with self._workspace.engine.connect() as conn:
                row = conn.execute(
                    select(workflows).where(
                        workflows.c.id == workflow_id,
                        workflows.c.organization_id == self._org,
                    )
                ).first()
            if row is None:
                return ServiceResult.failure(
                    op, ErrorCode.NOT_FOUND, f"Workflow not found: {workflow_id}"
                )
            if row.is_template:
                return ServiceResult.failure(
                    op, ErrorCode.NOT_EXECUTABLE, "Templates cannot be executed"
                )
            if row.archived:
                return ServiceResult.failure(
                    op, ErrorCode.NOT_EXECUTABLE, f"Workflow {workflow_id} is archived"
                )
            graph = self._workspace.graph.get(workflow_id)
            problems = graph.validate()
            if problems:
                return ServiceResult.failure(
                    op,
                    ErrorCode.INVALID_GRAPH,
                    problems[0],
                    detail={"problems": problems},
                )

        payload = dict(trigger_data or {})
        if source == "manual":
            payload = {"triggeredAt": now_iso(), **payload}

        # ── RECORD START ─────────────────────────────────────────
        with self._workspace.transaction() as txn:
            execution_id = next_sequential_id(txn.conn, "RUN-")
            txn.conn.execute(
                insert(executions).values(
                    id=execution_id,
                    workflow_id=workflow_id,
                    organization_id=self._org,
                    status=ExecutionStatus.RUNNING,
                    source=source,
                    trigger_data=dumps(payload),
                    started=now_iso(),
                )
            )
        logger.info("Execution %s started for %s (%s)", execution_id, workflow_id, source)

        # ── INTERPRET ────────────────────────────────────────────
        interpreter = GraphInterpreter(
            max_steps=settings.max_steps,
            record_step=self._step_recorder(execution_id),
        )
        runtime = ExecutionRuntime(
            workspace=self._workspace,
            config=settings,
            execution_id=execution_id,
            workflow_id=workflow_id,
            workflow_name=row.name,
            trigger_data=payload,
            publish=self._publisher(execution_id, workflow_id, warnings),
            run_graph=interpreter.run,
            sleeper=self._sleeper,
        )
        error: NodeExecutionError | None = None
        with trace_span("interpret") as span:
            try:
                final = interpreter.run(graph, {}, runtime)
            except NodeExecutionError as exc:
                error = exc
                final = interpreter.context
                logger.info("Execution %s failed at %s: %s", execution_id, exc.node_id, exc.message)
            if span is not None:
                span.annotate("steps", interpreter.steps)

        if error is not None:
            status = ExecutionStatus.FAILED
        elif final.get(SHOULD_STOP_KEY):
            status = ExecutionStatus.STOPPED
        else:
            status = ExecutionStatus.SUCCESS

        # ── RECORD RESULT ────────────────────────────────────────
        with self._workspace.transaction() as txn:
            txn.conn.execute(
                update(executions)
                .where(executions.c.id == execution_id)
                .values(
                    status=status,
                    output=dumps(final),
                    error=error.message if error else None,
                    error_node_id=error.node_id if error else None,
                    steps=interpreter.steps,
                    completed=now_iso(),
                )
            )

        # ── EVENT ────────────────────────────────────────────────
        self._dispatch_event(
            "post_execution",
            {
                "execution_id": execution_id,
                "workflow_id": workflow_id,
                "status": str(status),
                "error": error.message if error else None,
                "steps": interpreter.steps,
            },
            warnings,
            execution_id=execution_id,
        )

        # ── TRIGGERS ─────────────────────────────────────────────
        triggered = self._fire_changes(runtime.crm_changes, trigger_depth + 1, warnings)

        data = {
            "id": execution_id,
            "workflow_id": workflow_id,
            "status": str(status),
            "steps": interpreter.steps,
            "output": final,
            "error": error.message if error else None,
            "error_node_id": error.node_id if error else None,
            "triggered": triggered,
        }
        if error is not None:
            return ServiceResult.failure(
                op,
                ErrorCode.EXECUTION_FAILED,
                error.message,
                detail={"node_id": error.node_id, "node_type": error.node_type},
                data=data,
                warnings=warnings,
            )
        return ServiceResult(ok=True, op=op, data=data, warnings=warnings)

    @traced
    def get_execution(self, execution_id: str) -> ServiceResult:
        """One execution record with its recorded steps."""
        op = "get_execution"
        with self._workspace.engine.connect() as conn:
            row = conn.execute(
                select(executions).where(
                    executions.c.id == execution_id,
                    executions.c.organization_id == self._org,
                )
            ).first()
            if row is None:
                return ServiceResult.failure(
                    op, ErrorCode.NOT_FOUND, f"Execution not found: {execution_id}"
                )
            steps = conn.execute(
                select(execution_steps)
                .where(execution_steps.c.execution_id == execution_id)
                .order_by(execution_steps.c.seq)
            ).all()
        record = row_to_dict(row, json_columns=_EXECUTION_JSON)
        record["step_log"] = [row_to_dict(s, json_columns=_STEP_JSON) for s in steps]
        return ServiceResult(ok=True, op=op, data=record)

    @traced
    def list_executions(
        self,
        *,
        workflow_id: str | None = None,
        status: str | None = None,
        limit: int = 20,
    ) -> ServiceResult:
        """Most recent executions first."""
        stmt = select(
            executions.c.id,
            executions.c.workflow_id,
            executions.c.status,
            executions.c.source,
            executions.c.steps,
            executions.c.error,
            executions.c.started,
            executions.c.completed,
        ).where(executions.c.organization_id == self._org)
        if workflow_id is not None:
            stmt = stmt.where(executions.c.workflow_id == workflow_id)
        if status is not None:
            stmt = stmt.where(executions.c.status == status.upper())
        stmt = stmt.order_by(executions.c.started.desc(), executions.c.id.desc()).limit(limit)

        with self._workspace.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        items = [row_to_dict(r) for r in rows]
        return ServiceResult(
            ok=True, op="list_executions", data={"count": len(items), "items": items}
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _publisher(
        self, execution_id: str, workflow_id: str, warnings: list[str]
    ) -> Callable[..., None]:
        def publish(
            node_id: str, node_type: str, status: NodeStatus, error: str | None = None
        ) -> None:
            logger.debug("[%s] %s %s -> %s", execution_id, node_type, node_id, status)
            self._dispatch_event(
                "node_status",
                {
                    "execution_id": execution_id,
                    "workflow_id": workflow_id,
                    "node_id": node_id,
                    "node_type": str(node_type),
                    "status": str(status),
                    "error": error,
                },
                warnings,
                execution_id=execution_id,
            )

        return publish

    def _step_recorder(
        self, execution_id: str
    ) -> Callable[[int, NodeSpec, NodeStatus, Any, str | None, str], None]:
        def record(
            seq: int,
            node: NodeSpec,
            status: NodeStatus,
            output: Any,
            error: str | None,
            started: str,
        ) -> None:
            with self._workspace.engine.begin() as conn:
                conn.execute(
                    insert(execution_steps).values(
                        execution_id=execution_id,
                        seq=seq,
                        node_id=node.id,
                        node_type=str(node.type),
                        node_name=node.name,
                        status=str(status),
                        output=dumps(output) if output is not None else None,
                        error=error,
                        started=started,
                        completed=now_iso(),
                    )
                )

        return record

    def _fire_changes(
        self,
        changes: list[tuple[str, dict[str, Any]]],
        depth: int,
        warnings: list[str],
    ) -> list[str]:
        if not changes:
            return []
        from crmflow.services.trigger import TriggerService

        triggers = TriggerService(self._workspace, sleeper=self._sleeper)
        started: list[str] = []
        for trigger_type, payload in changes:
            result = triggers.fire(trigger_type, payload, depth=depth)
            started.extend(run["id"] for run in result.data.get("executions", []))
            warnings.extend(result.warnings)
        return started
