"""WorkflowService — workflow definitions, graphs, bundles and templates.

All reads and writes are scoped to the workspace tenant. Saving a graph
replaces every node and connection of the workflow in one transaction.
"""

from __future__ import annotations

import io
import json
import logging
from typing import Any

from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError

from crmflow.domain.ids import generate_id, generate_slug
from crmflow.domain.types import NodeType
from crmflow.domain.variables import is_valid_variable_name, rename_references
from crmflow.domain.workflow import (
    BundleInput,
    BundleOutput,
    ConnectionSpec,
    NodeSpec,
    Position,
    WorkflowGraph,
)
from crmflow.infrastructure.database.schema import connections, nodes, workflows
from crmflow.infrastructure.graph.engine import FlowGraph, node_from_row
from crmflow.services._helpers import dumps, now_iso, row_to_dict
from crmflow.services.base import BaseService
from crmflow.services.result import ErrorCode, ServiceResult
from crmflow.services.telemetry import trace_span, traced

logger = logging.getLogger(__name__)

_WORKFLOW_JSON = ("bundle_inputs", "bundle_outputs")
EXPORT_VERSION = 1


def _new_yaml() -> YAML:
    """Fresh round-trip YAML instance (the emitter is stateful)."""
    y = YAML()
    y.default_flow_style = False
    return y


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else str(first["msg"])


def graph_payload(graph: WorkflowGraph) -> dict[str, Any]:
    """Builder-shaped ``{"nodes": [...], "connections": [...]}`` for *graph*."""
    return {
        "nodes": [node.model_dump(mode="json") for node in graph.nodes],
        "connections": [conn.model_dump(mode="json", by_alias=True) for conn in graph.connections],
    }


class WorkflowService(BaseService):
    """CRUD over workflows and their node graphs."""

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    @traced
    def create_workflow(
        self,
        name: str | None = None,
        *,
        description: str | None = None,
        bundle: bool = False,
    ) -> ServiceResult:
        """Create a workflow seeded with a single INITIAL trigger node."""
        op = "create_workflow"
        workflow_id = generate_id("workflow")
        initial = NodeSpec(id=generate_id("node"), type=NodeType.INITIAL, name="Start")
        now = now_iso()
        with self._workspace.transaction() as txn:
            txn.conn.execute(
                insert(workflows).values(
                    id=workflow_id,
                    name=name or generate_slug(),
                    description=description,
                    organization_id=self._org,
                    subaccount_id=self._workspace.subaccount_id,
                    is_bundle=int(bundle),
                    bundle_inputs="[]" if bundle else None,
                    bundle_outputs="[]" if bundle else None,
                    created=now,
                    modified=now,
                )
            )
            self._insert_graph(txn.conn, workflow_id, WorkflowGraph(nodes=[initial]))
        logger.info("Created workflow %s", workflow_id)
        return self.get_workflow(workflow_id).model_copy(update={"op": op})

    @traced
    def get_workflow(self, workflow_id: str) -> ServiceResult:
        """A workflow with its full graph."""
        op = "get_workflow"
        with self._workspace.engine.connect() as conn:
            row = self._fetch(conn, workflow_id)
            if row is None:
                return self._not_found(op, workflow_id)
            graph = self._load_graph(conn, workflow_id)
        data = row_to_dict(row, json_columns=_WORKFLOW_JSON)
        data.update(graph_payload(graph))
        return ServiceResult(ok=True, op=op, data=data)

    @traced
    def list_workflows(
        self,
        *,
        search: str | None = None,
        archived: bool = False,
        bundles: bool | None = None,
        templates: bool = False,
        limit: int = 50,
    ) -> ServiceResult:
        """Workflows in the tenant, most recently modified first."""
        stmt = self._scoped(select(workflows)).where(
            workflows.c.archived == int(archived),
            workflows.c.is_template == int(templates),
        )
        if bundles is not None:
            stmt = stmt.where(workflows.c.is_bundle == int(bundles))
        if search:
            stmt = stmt.where(workflows.c.name.icontains(search, autoescape=True))
        stmt = stmt.order_by(workflows.c.modified.desc(), workflows.c.id).limit(limit)

        with self._workspace.engine.connect() as conn:
            rows = conn.execute(stmt).all()
            counts = self._node_counts(conn, [r.id for r in rows])
        items = []
        for row in rows:
            item = row_to_dict(row, json_columns=_WORKFLOW_JSON)
            item["node_count"] = counts.get(row.id, 0)
            items.append(item)
        return ServiceResult(
            ok=True, op="list_workflows", data={"count": len(items), "items": items}
        )

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    @traced
    def save_graph(self, workflow_id: str, graph: WorkflowGraph | dict[str, Any]) -> ServiceResult:
        """Replace the workflow's nodes and connections.

        Missing or empty connection handles are stored as ``main``.
        Structural problems (cycles, missing entry) are reported as
        warnings; a draft may be saved in any shape.
        """
        op = "save_graph"
        warnings: list[str] = []
        with trace_span("validate"):
            if not isinstance(graph, WorkflowGraph):
                try:
                    graph = WorkflowGraph.model_validate(graph)
                except ValidationError as exc:
                    return ServiceResult.failure(
                        op, ErrorCode.VALIDATION_ERROR, _validation_message(exc)
                    )
            warnings.extend(FlowGraph.from_spec(graph).validate())

        with trace_span("persist"):
            try:
                with self._workspace.transaction() as txn:
                    row = self._fetch(txn.conn, workflow_id)
                    if row is None:
                        return self._not_found(op, workflow_id)
                    self._replace_graph(txn.conn, workflow_id, graph)
            except IntegrityError as exc:
                return ServiceResult.failure(
                    op,
                    ErrorCode.CONFLICT,
                    "Node ids must be unique across workflows",
                    detail={"reason": str(exc.orig)},
                )

        self._dispatch_event(
            "post_workflow_save",
            {
                "workflow_id": workflow_id,
                "name": row.name,
                "node_count": len(graph.nodes),
                "connection_count": len(graph.connections),
            },
            warnings,
        )
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "id": workflow_id,
                "node_count": len(graph.nodes),
                "connection_count": len(graph.connections),
            },
            warnings=warnings,
        )

    @traced
    def rename_variable(self, workflow_id: str, node_id: str, new_name: str) -> ServiceResult:
        """Rename a node's ``variableName`` and rewrite references downstream.

        Only nodes reachable from *node_id* are rewritten; upstream nodes
        cannot see the variable, so a same-named reference there belongs
        to something else.
        """
        op = "rename_variable"
        if not is_valid_variable_name(new_name):
            return ServiceResult.failure(
                op, ErrorCode.VALIDATION_ERROR, f"Invalid variable name: {new_name!r}"
            )
        with self._workspace.transaction() as txn:
            if self._fetch(txn.conn, workflow_id) is None:
                return self._not_found(op, workflow_id)
            graph = self._load_graph(txn.conn, workflow_id)
            source = graph.node(node_id)
            if source is None:
                return ServiceResult.failure(
                    op, ErrorCode.NOT_FOUND, f"Node not found: {node_id}"
                )
            old_name = source.variable_name
            if old_name is None:
                return ServiceResult.failure(
                    op, ErrorCode.VALIDATION_ERROR, f"Node {node_id} has no variable name"
                )
            if old_name == new_name:
                return ServiceResult(
                    ok=True, op=op, data={"id": node_id, "name": new_name, "updated": []}
                )

            downstream = FlowGraph.from_spec(graph).downstream(node_id)
            updated: list[str] = []
            for node in graph.nodes:
                if node.id == node_id:
                    data = {**node.data, "variableName": new_name}
                elif node.id in downstream:
                    data = rename_references(node.data, old_name, new_name)
                    if data == node.data:
                        continue
                    updated.append(node.id)
                else:
                    continue
                txn.conn.execute(
                    update(nodes).where(nodes.c.id == node.id).values(data=dumps(data))
                )
            self._touch(txn.conn, workflow_id)

        return ServiceResult(
            ok=True,
            op=op,
            data={"id": node_id, "old_name": old_name, "name": new_name, "updated": updated},
        )

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    @traced
    def rename_workflow(
        self, workflow_id: str, name: str, *, description: str | None = None
    ) -> ServiceResult:
        op = "rename_workflow"
        if not name.strip():
            return ServiceResult.failure(op, ErrorCode.VALIDATION_ERROR, "Name is required")
        values: dict[str, Any] = {"name": name.strip(), "modified": now_iso()}
        if description is not None:
            values["description"] = description
        return self._update_row(op, workflow_id, values)

    @traced
    def set_archived(self, workflow_id: str, archived: bool = True) -> ServiceResult:
        op = "archive_workflow" if archived else "unarchive_workflow"
        return self._update_row(op, workflow_id, {"archived": int(archived), "modified": now_iso()})

    @traced
    def delete_workflow(self, workflow_id: str, *, force: bool = False) -> ServiceResult:
        """Delete a workflow, its graph and its executions.

        A bundle still referenced by other workflows is kept unless *force*.
        """
        op = "delete_workflow"
        with self._workspace.transaction() as txn:
            row = self._fetch(txn.conn, workflow_id)
            if row is None:
                return self._not_found(op, workflow_id)
            parents = self._parents(txn.conn, workflow_id) if row.is_bundle else []
            if parents and not force:
                return ServiceResult.failure(
                    op,
                    ErrorCode.CONFLICT,
                    f"Bundle {workflow_id} is used by {len(parents)} workflow(s)",
                    detail={"parents": [p["id"] for p in parents]},
                )
            txn.conn.execute(delete(workflows).where(workflows.c.id == workflow_id))
        return ServiceResult(ok=True, op=op, data={"id": workflow_id, "deleted": True})

    # ------------------------------------------------------------------
    # Bundles
    # ------------------------------------------------------------------

    @traced
    def toggle_bundle(self, workflow_id: str, enabled: bool) -> ServiceResult:
        """Mark a workflow as a reusable bundle, or turn that off."""
        op = "toggle_bundle"
        values: dict[str, Any] = {"is_bundle": int(enabled), "modified": now_iso()}
        if not enabled:
            with self._workspace.engine.connect() as conn:
                parents = self._parents(conn, workflow_id)
            if parents:
                return ServiceResult.failure(
                    op,
                    ErrorCode.CONFLICT,
                    "Bundle is still used by other workflows",
                    detail={"parents": [p["id"] for p in parents]},
                )
        return self._update_row(op, workflow_id, values)

    @traced
    def update_bundle_config(
        self,
        workflow_id: str,
        *,
        inputs: list[dict[str, Any]] | None = None,
        outputs: list[dict[str, Any]] | None = None,
    ) -> ServiceResult:
        """Replace the declared inputs and/or outputs of a bundle."""
        op = "update_bundle_config"
        values: dict[str, Any] = {"modified": now_iso()}
        try:
            if inputs is not None:
                parsed_in = [BundleInput.model_validate(item) for item in inputs]
                names = [item.name for item in parsed_in]
                if len(names) != len(set(names)):
                    return ServiceResult.failure(
                        op, ErrorCode.VALIDATION_ERROR, "Bundle input names must be unique"
                    )
                values["bundle_inputs"] = dumps(
                    [item.model_dump(by_alias=True) for item in parsed_in]
                )
            if outputs is not None:
                parsed_out = [BundleOutput.model_validate(item) for item in outputs]
                values["bundle_outputs"] = dumps(
                    [item.model_dump(by_alias=True) for item in parsed_out]
                )
        except ValidationError as exc:
            return ServiceResult.failure(op, ErrorCode.VALIDATION_ERROR, _validation_message(exc))

        with self._workspace.engine.connect() as conn:
            row = self._fetch(conn, workflow_id)
        if row is not None and not row.is_bundle:
            return ServiceResult.failure(
                op, ErrorCode.VALIDATION_ERROR, f"Workflow {workflow_id} is not a bundle"
            )
        return self._update_row(op, workflow_id, values)

    @traced
    def list_bundles(self) -> ServiceResult:
        """Active bundles available to BUNDLE_WORKFLOW nodes."""
        result = self.list_workflows(bundles=True, limit=500)
        return ServiceResult(ok=True, op="list_bundles", data=result.data)

    @traced
    def parent_workflows(self, bundle_id: str) -> ServiceResult:
        """Workflows containing a BUNDLE_WORKFLOW node that calls *bundle_id*."""
        with self._workspace.engine.connect() as conn:
            parents = self._parents(conn, bundle_id)
        return ServiceResult(
            ok=True,
            op="parent_workflows",
            data={"id": bundle_id, "count": len(parents), "items": parents},
        )

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    @traced
    def create_template_from_workflow(
        self, workflow_id: str, *, name: str | None = None
    ) -> ServiceResult:
        """Snapshot a workflow as a template (new ids, never executable)."""
        return self._copy("create_template", workflow_id, name=name, as_template=True)

    @traced
    def create_workflow_from_template(
        self, template_id: str, *, name: str | None = None
    ) -> ServiceResult:
        """Instantiate a template as a regular workflow with fresh node ids."""
        op = "create_from_template"
        with self._workspace.engine.connect() as conn:
            row = self._fetch(conn, template_id)
        if row is None:
            return self._not_found(op, template_id)
        if not row.is_template:
            return ServiceResult.failure(
                op, ErrorCode.VALIDATION_ERROR, f"Workflow {template_id} is not a template"
            )
        return self._copy(op, template_id, name=name, as_template=False)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    @traced
    def export_workflow(self, workflow_id: str) -> ServiceResult:
        """Serialize a workflow and its graph to a YAML document."""
        op = "export_workflow"
        fetched = self.get_workflow(workflow_id)
        if not fetched.ok:
            return fetched.model_copy(update={"op": op})
        wf = fetched.data
        document: dict[str, Any] = {
            "version": EXPORT_VERSION,
            "name": wf["name"],
            "description": wf["description"],
            "bundle": wf["is_bundle"],
            "nodes": wf["nodes"],
            "connections": wf["connections"],
        }
        if wf["is_bundle"]:
            document["bundleInputs"] = wf["bundle_inputs"] or []
            document["bundleOutputs"] = wf["bundle_outputs"] or []

        buf = io.StringIO()
        _new_yaml().dump(json.loads(json.dumps(document)), buf)
        return ServiceResult(ok=True, op=op, data={"id": workflow_id, "yaml": buf.getvalue()})

    @traced
    def import_workflow(self, text: str, *, name: str | None = None) -> ServiceResult:
        """Create a new workflow from an exported YAML document.

        Node ids are regenerated so the same document can be imported twice.
        """
        op = "import_workflow"
        try:
            document = _new_yaml().load(text)
        except YAMLError as exc:
            return ServiceResult.failure(op, ErrorCode.IMPORT_ERROR, f"Invalid YAML: {exc}")
        if not isinstance(document, dict) or "nodes" not in document:
            return ServiceResult.failure(
                op, ErrorCode.IMPORT_ERROR, "Document has no 'nodes' section"
            )
        document = json.loads(json.dumps(document))
        try:
            graph = WorkflowGraph.model_validate(
                {"nodes": document["nodes"], "connections": document.get("connections") or []}
            )
        except ValidationError as exc:
            return ServiceResult.failure(op, ErrorCode.IMPORT_ERROR, _validation_message(exc))

        bundle = bool(document.get("bundle"))
        created = self.create_workflow(
            name or document.get("name"),
            description=document.get("description"),
            bundle=bundle,
        )
        if not created.ok:
            return created.model_copy(update={"op": op})
        workflow_id = created.data["id"]
        saved = self.save_graph(workflow_id, _with_fresh_ids(graph))
        if saved.ok and bundle:
            saved = self.update_bundle_config(
                workflow_id,
                inputs=document.get("bundleInputs") or [],
                outputs=document.get("bundleOutputs") or [],
            ).model_copy(update={"warnings": saved.warnings})
        if not saved.ok:
            # Nothing half-imported is left behind.
            self.delete_workflow(workflow_id, force=True)
            message = saved.error.message if saved.error else "unknown error"
            return ServiceResult.failure(op, ErrorCode.IMPORT_ERROR, f"Import failed: {message}")
        result = self.get_workflow(workflow_id)
        return ServiceResult(ok=True, op=op, data=result.data, warnings=saved.warnings)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _scoped(self, stmt: Any) -> Any:
        stmt = stmt.where(workflows.c.organization_id == self._org)
        if self._workspace.subaccount_id is not None:
            stmt = stmt.where(workflows.c.subaccount_id == self._workspace.subaccount_id)
        return stmt

    def _fetch(self, conn: Any, workflow_id: str) -> Any:
        return conn.execute(self._scoped(select(workflows)).where(workflows.c.id == workflow_id)).first()

    def _not_found(self, op: str, workflow_id: str) -> ServiceResult:
        return ServiceResult.failure(op, ErrorCode.NOT_FOUND, f"Workflow not found: {workflow_id}")

    def _touch(self, conn: Any, workflow_id: str) -> None:
        conn.execute(
            update(workflows).where(workflows.c.id == workflow_id).values(modified=now_iso())
        )

    def _update_row(self, op: str, workflow_id: str, values: dict[str, Any]) -> ServiceResult:
        with self._workspace.transaction() as txn:
            if self._fetch(txn.conn, workflow_id) is None:
                return self._not_found(op, workflow_id)
            txn.conn.execute(update(workflows).where(workflows.c.id == workflow_id).values(**values))
            row = self._fetch(txn.conn, workflow_id)
        return ServiceResult(ok=True, op=op, data=row_to_dict(row, json_columns=_WORKFLOW_JSON))

    def _load_graph(self, conn: Any, workflow_id: str) -> WorkflowGraph:
        node_rows = conn.execute(
            select(nodes).where(nodes.c.workflow_id == workflow_id).order_by(nodes.c.ordinal)
        ).all()
        conn_rows = conn.execute(
            select(connections)
            .where(connections.c.workflow_id == workflow_id)
            .order_by(connections.c.id)
        ).all()
        return WorkflowGraph(
            nodes=[node_from_row(row) for row in node_rows],
            connections=[
                ConnectionSpec(
                    source=row.source_id,
                    target=row.target_id,
                    source_handle=row.source_handle,
                    target_handle=row.target_handle,
                )
                for row in conn_rows
            ],
        )

    def _insert_graph(self, conn: Any, workflow_id: str, graph: WorkflowGraph) -> None:
        if graph.nodes:
            conn.execute(
                insert(nodes),
                [
                    {
                        "id": node.id,
                        "workflow_id": workflow_id,
                        "name": node.name,
                        "type": str(node.type),
                        "position_x": node.position.x,
                        "position_y": node.position.y,
                        "data": dumps(node.data),
                        "ordinal": index,
                    }
                    for index, node in enumerate(graph.nodes)
                ],
            )
        seen: set[tuple[str, str, str, str]] = set()
        rows = []
        for c in graph.connections:
            key = (c.source, c.target, c.source_handle, c.target_handle)
            if key in seen:
                continue
            seen.add(key)
            rows.append(
                {
                    "workflow_id": workflow_id,
                    "source_id": c.source,
                    "target_id": c.target,
                    "source_handle": c.source_handle,
                    "target_handle": c.target_handle,
                }
            )
        if rows:
            conn.execute(insert(connections), rows)

    def _replace_graph(self, conn: Any, workflow_id: str, graph: WorkflowGraph) -> None:
        conn.execute(delete(connections).where(connections.c.workflow_id == workflow_id))
        conn.execute(delete(nodes).where(nodes.c.workflow_id == workflow_id))
        self._insert_graph(conn, workflow_id, graph)
        self._touch(conn, workflow_id)

    def _node_counts(self, conn: Any, workflow_ids: list[str]) -> dict[str, int]:
        if not workflow_ids:
            return {}
        rows = conn.execute(
            select(nodes.c.workflow_id, func.count())
            .where(nodes.c.workflow_id.in_(workflow_ids))
            .group_by(nodes.c.workflow_id)
        ).all()
        return {workflow_id: count for workflow_id, count in rows}

    def _parents(self, conn: Any, bundle_id: str) -> list[dict[str, Any]]:
        rows = conn.execute(
            self._scoped(select(workflows.c.id, workflows.c.name, nodes.c.data))
            .join(nodes, nodes.c.workflow_id == workflows.c.id)
            .where(
                nodes.c.type == NodeType.BUNDLE_WORKFLOW,
                workflows.c.id != bundle_id,
                workflows.c.is_template == 0,
            )
            .order_by(workflows.c.name)
        ).all()
        parents: dict[str, dict[str, Any]] = {}
        for row in rows:
            data = json.loads(row.data or "{}")
            if data.get("bundleWorkflowId") == bundle_id:
                parents.setdefault(row.id, {"id": row.id, "name": row.name})
        return list(parents.values())

    def _copy(
        self, op: str, source_id: str, *, name: str | None, as_template: bool
    ) -> ServiceResult:
        with self._workspace.engine.connect() as conn:
            row = self._fetch(conn, source_id)
            if row is None:
                return self._not_found(op, source_id)
            graph = self._load_graph(conn, source_id)

        new_id = generate_id("workflow")
        now = now_iso()
        suffix = " (template)" if as_template else ""
        with self._workspace.transaction() as txn:
            txn.conn.execute(
                insert(workflows).values(
                    id=new_id,
                    name=name or f"{row.name}{suffix}",
                    description=row.description,
                    organization_id=self._org,
                    subaccount_id=self._workspace.subaccount_id,
                    is_bundle=row.is_bundle,
                    is_template=int(as_template),
                    bundle_inputs=row.bundle_inputs,
                    bundle_outputs=row.bundle_outputs,
                    template_source_id=source_id,
                    created=now,
                    modified=now,
                )
            )
            self._insert_graph(txn.conn, new_id, _with_fresh_ids(graph))
        result = self.get_workflow(new_id)
        return ServiceResult(ok=True, op=op, data=result.data)


def _with_fresh_ids(graph: WorkflowGraph) -> WorkflowGraph:
    """Copy of *graph* with new node ids, connections remapped."""
    mapping = {node.id: generate_id("node") for node in graph.nodes}
    return WorkflowGraph(
        nodes=[
            NodeSpec(
                id=mapping[node.id],
                type=node.type,
                name=node.name,
                position=Position(x=node.position.x, y=node.position.y),
                data=node.data,
            )
            for node in graph.nodes
        ],
        connections=[
            ConnectionSpec(
                source=mapping[c.source],
                target=mapping[c.target],
                source_handle=c.source_handle,
                target_handle=c.target_handle,
            )
            for c in graph.connections
        ],
    )
