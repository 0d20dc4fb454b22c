"""SQLite database engine, schema, and ID counters via SQLAlchemy Core."""

from crmflow.infrastructure.database.counters import next_sequential_id
from crmflow.infrastructure.database.engine import create_db_engine, init_database
from crmflow.infrastructure.database.schema import (
    connections,
    contacts,
    deal_contacts,
    deal_notes,
    deals,
    event_wal,
    execution_steps,
    executions,
    id_counters,
    metadata,
    nodes,
    pipeline_stages,
    pipelines,
    workflows,
)

__all__ = [
    "connections",
    "contacts",
    "create_db_engine",
    "deal_contacts",
    "deal_notes",
    "deals",
    "event_wal",
    "execution_steps",
    "executions",
    "id_counters",
    "init_database",
    "metadata",
    "next_sequential_id",
    "nodes",
    "pipeline_stages",
    "pipelines",
    "workflows",
]
