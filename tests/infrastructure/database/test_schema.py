"""Tests for database schema definitions."""

import pytest
from sqlalchemy import delete, insert, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from crmflow.infrastructure.database.schema import (
    connections,
    contacts,
    deal_contacts,
    deals,
    metadata,
    nodes,
    workflows,
)

_NOW = "2025-01-01T00:00:00+00:00"


def _workflow(conn, workflow_id: str = "wf_1") -> None:  # type: ignore[no-untyped-def]
    conn.execute(
        insert(workflows).values(
            id=workflow_id, name="wf", organization_id="org", created=_NOW, modified=_NOW
        )
    )


class TestSchemaCreation:
    def test_all_tables_registered(self) -> None:
        expected = {
            "workflows",
            "nodes",
            "connections",
            "executions",
            "execution_steps",
            "contacts",
            "pipelines",
            "pipeline_stages",
            "deals",
            "deal_contacts",
            "deal_notes",
            "id_counters",
            "event_wal",
        }
        assert expected == set(metadata.tables)

    def test_create_all_is_idempotent(self, db_engine: Engine) -> None:
        metadata.create_all(db_engine)
        assert "workflows" in inspect(db_engine).get_table_names()


class TestWorkflowTables:
    def test_flag_defaults(self, db_engine: Engine) -> None:
        with db_engine.begin() as conn:
            _workflow(conn)
            row = conn.execute(select(workflows)).one()
        assert (row.is_bundle, row.is_template, row.archived) == (0, 0, 0)

    def test_deleting_workflow_cascades_to_graph(self, db_engine: Engine) -> None:
        with db_engine.begin() as conn:
            _workflow(conn)
            for node_id in ("a", "b"):
                conn.execute(
                    insert(nodes).values(id=node_id, workflow_id="wf_1", type="INITIAL", data="{}")
                )
            conn.execute(
                insert(connections).values(workflow_id="wf_1", source_id="a", target_id="b")
            )
            conn.execute(delete(workflows).where(workflows.c.id == "wf_1"))
            assert conn.execute(select(nodes)).all() == []
            assert conn.execute(select(connections)).all() == []

    def test_connection_handles_default_to_main(self, db_engine: Engine) -> None:
        with db_engine.begin() as conn:
            _workflow(conn)
            for node_id in ("a", "b"):
                conn.execute(
                    insert(nodes).values(id=node_id, workflow_id="wf_1", type="WAIT", data="{}")
                )
            conn.execute(
                insert(connections).values(workflow_id="wf_1", source_id="a", target_id="b")
            )
            row = conn.execute(select(connections)).one()
        assert row.source_handle == "main"
        assert row.target_handle == "main"

    def test_node_ids_are_global(self, db_engine: Engine) -> None:
        with pytest.raises(IntegrityError):
            with db_engine.begin() as conn:
                _workflow(conn, "wf_1")
                _workflow(conn, "wf_2")
                conn.execute(insert(nodes).values(id="n", workflow_id="wf_1", type="WAIT", data="{}"))
                conn.execute(insert(nodes).values(id="n", workflow_id="wf_2", type="WAIT", data="{}"))


class TestCrmTables:
    def test_contact_type_defaults_to_lead(self, db_engine: Engine) -> None:
        with db_engine.begin() as conn:
            conn.execute(
                insert(contacts).values(
                    id="ct_1", organization_id="org", name="Ada", created=_NOW, modified=_NOW
                )
            )
            assert conn.execute(select(contacts.c.type)).scalar() == "LEAD"

    def test_deal_contact_link_requires_contact(self, db_engine: Engine) -> None:
        with pytest.raises(IntegrityError):
            with db_engine.begin() as conn:
                conn.execute(
                    insert(deals).values(
                        id="dl_1", organization_id="org", name="D", created=_NOW, modified=_NOW
                    )
                )
                conn.execute(insert(deal_contacts).values(deal_id="dl_1", contact_id="ct_ghost"))
