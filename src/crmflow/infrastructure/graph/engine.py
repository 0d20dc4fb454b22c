"""Workflow graphs as NetworkX multigraphs.

:class:`FlowGraph` wraps one workflow's nodes and connections. Connections
into a LOOP node's ``loop-back`` handle close a loop; they are kept in the
graph but ignored for ordering and reachability, so the rest of the graph
must be acyclic.

:class:`GraphEngine` builds a :class:`FlowGraph` per workflow from the
``nodes``/``connections`` tables on first access and caches it until
:meth:`GraphEngine.invalidate` is called (the workspace does this at the
end of every transaction).
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import networkx as nx

from crmflow.domain.types import Handle, NodeType
from crmflow.domain.workflow import ConnectionSpec, NodeSpec, Position, WorkflowGraph

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

type _Graph = nx.MultiDiGraph


class GraphCycleError(ValueError):
    """The workflow contains a cycle that is not closed through ``loop-back``."""


class FlowGraph:
    """Read-only graph queries over one workflow."""

    def __init__(self, nodes: Iterable[NodeSpec], connections: Iterable[ConnectionSpec]) -> None:
        self._nodes: dict[str, NodeSpec] = {}
        self._ordinal: dict[str, int] = {}
        g: _Graph = nx.MultiDiGraph()
        for i, node in enumerate(nodes):
            self._nodes[node.id] = node
            self._ordinal[node.id] = i
            g.add_node(node.id, type=node.type)
        for conn in connections:
            g.add_edge(
                conn.source,
                conn.target,
                source_handle=conn.source_handle,
                target_handle=conn.target_handle,
            )
        self._graph = g
        self._flow: nx.DiGraph | None = None

    @classmethod
    def from_spec(cls, spec: WorkflowGraph) -> FlowGraph:
        return cls(spec.nodes, spec.connections)

    @property
    def graph(self) -> _Graph:
        """The full multigraph, loop-back connections included."""
        return self._graph

    @property
    def flow(self) -> nx.DiGraph:
        """Forward-only view: a simple digraph without loop-back connections."""
        if self._flow is None:
            flow = nx.DiGraph()
            flow.add_nodes_from(self._graph.nodes)
            for src, dst, attrs in self._graph.edges(data=True):
                if attrs["target_handle"] != Handle.LOOP_BACK:
                    flow.add_edge(src, dst)
            self._flow = flow
        return self._flow

    # ------------------------------------------------------------------
    # Nodes and connections
    # ------------------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, node_id: str) -> NodeSpec:
        return self._nodes[node_id]

    @property
    def nodes(self) -> list[NodeSpec]:
        return list(self._nodes.values())

    def outgoing(self, node_id: str) -> list[tuple[str, str]]:
        """``(target_id, source_handle)`` for each forward connection from *node_id*."""
        out = [
            (dst, attrs["source_handle"])
            for _, dst, attrs in self._graph.out_edges(node_id, data=True)
            if attrs["target_handle"] != Handle.LOOP_BACK
        ]
        return sorted(out, key=lambda pair: (self._ordinal[pair[0]], pair[1]))

    def targets(self, node_id: str, handle: str) -> list[str]:
        """Targets wired to *handle* on *node_id*."""
        return [dst for dst, src_handle in self.outgoing(node_id) if src_handle == handle]

    # ------------------------------------------------------------------
    # Ordering and reachability
    # ------------------------------------------------------------------

    def execution_order(self) -> list[str]:
        """Deterministic topological order; ties broken by node order.

        Raises:
            GraphCycleError: If a cycle exists outside ``loop-back`` connections.
        """
        try:
            return list(nx.lexicographical_topological_sort(self.flow, key=self._ordinal.__getitem__))
        except nx.NetworkXUnfeasible as exc:
            cycle = nx.find_cycle(self.flow)
            path = " -> ".join(src for src, _ in cycle)
            msg = f"Workflow contains a cycle: {path}"
            raise GraphCycleError(msg) from exc

    def upstream(self, node_id: str) -> set[str]:
        """Every node with a forward path to *node_id*."""
        return set(nx.ancestors(self.flow, node_id))

    def downstream(self, node_id: str) -> set[str]:
        """Every node reachable from *node_id* along forward connections."""
        return set(nx.descendants(self.flow, node_id))

    def entry_nodes(self) -> list[str]:
        """Nodes with no incoming forward connection, in node order."""
        return [n for n in self._nodes if self.flow.in_degree(n) == 0]

    def loop_body(self, loop_id: str) -> set[str]:
        """Nodes executed once per iteration of LOOP *loop_id*.

        Reachable from the ``loop-body`` handle, excluding anything also
        reachable from ``after-loop`` and the loop node itself.
        """
        body: set[str] = set()
        for start in self.targets(loop_id, Handle.LOOP_BODY):
            body.add(start)
            body |= self.downstream(start)
        after: set[str] = set()
        for start in self.targets(loop_id, Handle.AFTER_LOOP):
            after.add(start)
            after |= self.downstream(start)
        body -= after
        body.discard(loop_id)
        return body

    def validate(self) -> list[str]:
        """Structural problems that prevent execution (empty when runnable)."""
        problems: list[str] = []
        try:
            self.execution_order()
        except GraphCycleError as exc:
            problems.append(str(exc))
        for src, dst, attrs in self._graph.edges(data=True):
            if attrs["target_handle"] == Handle.LOOP_BACK and self._nodes[dst].type != NodeType.LOOP:
                problems.append(f"loop-back connection from {src} targets non-LOOP node {dst}")
        if self._nodes and not self.entry_nodes():
            problems.append("Workflow has no entry node")
        return problems


class GraphEngine:
    """Lazy, per-workflow cache of :class:`FlowGraph` built from SQLite."""

    def __init__(self, db: Engine) -> None:
        self._db = db
        self._graphs: dict[str, FlowGraph] = {}

    def get(self, workflow_id: str) -> FlowGraph:
        """Return the graph for *workflow_id*, building from DB on first access."""
        graph = self._graphs.get(workflow_id)
        if graph is None:
            graph = self._build_from_db(workflow_id)
            self._graphs[workflow_id] = graph
        return graph

    def invalidate(self, workflow_id: str | None = None) -> None:
        """Drop cached graphs (one workflow, or all when *workflow_id* is None)."""
        if workflow_id is None:
            self._graphs.clear()
        else:
            self._graphs.pop(workflow_id, None)

    def _build_from_db(self, workflow_id: str) -> FlowGraph:
        from sqlalchemy import select

        from crmflow.infrastructure.database.schema import connections, nodes

        with self._db.connect() as conn:
            node_rows = conn.execute(
                select(nodes).where(nodes.c.workflow_id == workflow_id).order_by(nodes.c.ordinal)
            ).all()
            conn_rows = conn.execute(
                select(connections)
                .where(connections.c.workflow_id == workflow_id)
                .order_by(connections.c.id)
            ).all()
        return FlowGraph(
            (node_from_row(row) for row in node_rows),
            (
                ConnectionSpec(
                    source=row.source_id,
                    target=row.target_id,
                    source_handle=row.source_handle,
                    target_handle=row.target_handle,
                )
                for row in conn_rows
            ),
        )


def node_from_row(row: Any) -> NodeSpec:
    """Convert a ``nodes`` row into a :class:`NodeSpec`."""
    return NodeSpec(
        id=row.id,
        type=row.type,
        name=row.name,
        position=Position(x=row.position_x or 0.0, y=row.position_y or 0.0),
        data=json.loads(row.data) if row.data else {},
    )
