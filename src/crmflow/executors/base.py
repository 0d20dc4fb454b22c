"""Executor contract shared by every node type.

An executor is a plain callable taking an :class:`ExecutionRequest` and
returning the new execution context. Executors never mutate the incoming
context in place; helpers here return shallow copies.

Realtime status: :func:`node_status` publishes ``loading`` when a node
starts and ``success`` or ``error`` when it finishes, through the
runtime's publisher.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from crmflow.config.models import ExecutionConfig
from crmflow.domain.types import NodeStatus, NodeType
from crmflow.domain.workflow import NodeSpec

if TYPE_CHECKING:
    from crmflow.infrastructure.graph.engine import FlowGraph
    from crmflow.infrastructure.workspace import Workspace

logger = logging.getLogger(__name__)

type Context = dict[str, Any]

_M = TypeVar("_M", bound=BaseModel)


class NodeExecutionError(Exception):
    """A node failed in a way retrying cannot fix.

    Carries the failing node so the execution record can point at it.
    """

    def __init__(
        self,
        message: str,
        *,
        node_id: str | None = None,
        node_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.node_id = node_id
        self.node_type = node_type


class StatusPublisher(Protocol):
    def __call__(
        self,
        node_id: str,
        node_type: str,
        status: NodeStatus,
        error: str | None = None,
    ) -> None: ...


def _no_publish(
    node_id: str, node_type: str, status: NodeStatus, error: str | None = None
) -> None:
    return None


# Runs a bundle's graph against an isolated context with a child runtime.
type GraphRunner = Callable[[FlowGraph, Context, ExecutionRuntime], Context]


@dataclass
class ExecutionRuntime:
    """Everything an executor may need beyond its node and context.

    Attributes:
        workspace: Database access for CRM and bundle executors.
        config: ``[execution]`` limits.
        execution_id: The run this node belongs to.
        workflow_id: Workflow whose graph is being interpreted (a bundle's
            id inside a bundle).
        workflow_name: Name of that workflow.
        trigger_data: Payload the run was started with.
        publish: Realtime node status sink.
        run_graph: Interpreter entry used by BUNDLE_WORKFLOW.
        sleeper: Blocking sleep used by WAIT.
        bundle_depth: Nesting level, 0 for the top-level workflow.
        node_outputs: Output of every node run so far, keyed by node name.
        crm_changes: ``(trigger_type, payload)`` pairs recorded by CRM
            actions, fired as triggers after the run.
    """

    workspace: Workspace | None
    config: ExecutionConfig
    execution_id: str
    workflow_id: str
    workflow_name: str
    trigger_data: dict[str, Any] = field(default_factory=dict)
    publish: StatusPublisher = _no_publish
    run_graph: GraphRunner | None = None
    sleeper: Callable[[float], None] = time.sleep
    bundle_depth: int = 0
    node_outputs: dict[str, Any] = field(default_factory=dict)
    crm_changes: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    @property
    def organization_id(self) -> str:
        if self.workspace is None:
            return "default"
        return self.workspace.organization_id

    def for_bundle(self, workflow_id: str, workflow_name: str) -> ExecutionRuntime:
        """Child runtime for a nested bundle run; CRM changes stay shared."""
        return replace(
            self,
            workflow_id=workflow_id,
            workflow_name=workflow_name,
            bundle_depth=self.bundle_depth + 1,
            node_outputs={},
        )


@dataclass(frozen=True)
class ExecutionRequest:
    """Input to a node executor."""

    node: NodeSpec
    context: Context
    runtime: ExecutionRuntime

    @property
    def node_id(self) -> str:
        return self.node.id

    @property
    def node_type(self) -> NodeType:
        return self.node.type

    @property
    def data(self) -> dict[str, Any]:
        return self.node.data


type NodeExecutor = Callable[[ExecutionRequest], Context]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def node_label(node_type: NodeType | str) -> str:
    """``CREATE_CONTACT`` -> ``"Create Contact"`` for error messages."""
    return str(node_type).replace("_", " ").title().replace("If Else", "IF/ELSE")


def fail(request: ExecutionRequest, reason: str) -> NodeExecutionError:
    """Build a NodeExecutionError named after the node type."""
    return NodeExecutionError(
        f"{node_label(request.node_type)} Node error: {reason}",
        node_id=request.node_id,
        node_type=request.node_type,
    )


def parse_config(model: type[_M], request: ExecutionRequest) -> _M:  # noqa: UP047
    """Validate the node's ``data`` against *model*.

    Raises:
        NodeExecutionError: Naming the first invalid field.
    """
    try:
        return model.model_validate(request.data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "data"
        raise fail(request, f"{location}: {first['msg']}") from exc


@contextmanager
def node_status(request: ExecutionRequest) -> Iterator[None]:
    """Publish loading, then success or error around an executor body."""
    publish = request.runtime.publish
    publish(request.node_id, request.node_type, NodeStatus.LOADING)
    try:
        yield
    except NodeExecutionError as exc:
        exc.node_id = exc.node_id or request.node_id
        exc.node_type = exc.node_type or request.node_type
        publish(request.node_id, request.node_type, NodeStatus.ERROR, exc.message)
        raise
    except Exception as exc:
        publish(request.node_id, request.node_type, NodeStatus.ERROR, str(exc))
        raise NodeExecutionError(
            f"{node_label(request.node_type)} Node error: {exc}",
            node_id=request.node_id,
            node_type=request.node_type,
        ) from exc
    publish(request.node_id, request.node_type, NodeStatus.SUCCESS)


def with_variable(context: Context, name: str, value: Any) -> Context:
    """Copy of *context* with ``variables[name] = value``."""
    variables = dict(context.get("variables") or {})
    variables[name] = value
    return {**context, "variables": variables}


def with_output(context: Context, name: str | None, value: Any) -> Context:
    """Copy of *context* with ``context[name] = value`` (no-op without a name)."""
    if not name:
        return dict(context)
    return {**context, name: value}
