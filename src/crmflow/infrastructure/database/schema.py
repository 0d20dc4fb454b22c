"""SQLAlchemy Core table definitions for the crmflow database.

Three groups of tables:

- Workflow graph: ``workflows``, ``nodes``, ``connections``.
- Runs: ``executions`` and their per-node ``execution_steps``.
- CRM records: ``contacts``, ``pipelines``, ``pipeline_stages``, ``deals``,
  ``deal_contacts``, ``deal_notes``.

Every workflow and CRM row carries ``organization_id`` (and optionally
``subaccount_id``); services always filter on them.
"""

from __future__ import annotations

from sqlalchemy import (
    REAL,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

# ---------------------------------------------------------------------------
# Workflow graph
# ---------------------------------------------------------------------------

workflows = Table(
    "workflows",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("description", Text),
    Column("organization_id", Text, nullable=False),
    Column("subaccount_id", Text),
    Column("is_bundle", Integer, default=0, server_default="0"),
    Column("is_template", Integer, default=0, server_default="0"),
    Column("archived", Integer, default=0, server_default="0"),
    Column("bundle_inputs", Text),  # JSON array of BundleInput
    Column("bundle_outputs", Text),  # JSON array of BundleOutput
    Column("template_source_id", Text),
    Column("created", Text, nullable=False),
    Column("modified", Text, nullable=False),
)

nodes = Table(
    "nodes",
    metadata,
    Column("id", Text, primary_key=True),
    Column(
        "workflow_id",
        Text,
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", Text),
    Column("type", Text, nullable=False),
    Column("position_x", REAL, default=0.0, server_default="0.0"),
    Column("position_y", REAL, default=0.0, server_default="0.0"),
    Column("data", Text, nullable=False),  # JSON object
    Column("ordinal", Integer, nullable=False, default=0, server_default="0"),
)

connections = Table(
    "connections",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "workflow_id",
        Text,
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("source_id", Text, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False),
    Column("target_id", Text, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False),
    Column("source_handle", Text, nullable=False, default="main", server_default="main"),
    Column("target_handle", Text, nullable=False, default="main", server_default="main"),
    UniqueConstraint("source_id", "target_id", "source_handle", "target_handle"),
)

# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------

executions = Table(
    "executions",
    metadata,
    Column("id", Text, primary_key=True),  # RUN-NNNN
    Column(
        "workflow_id",
        Text,
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("organization_id", Text, nullable=False),
    Column("status", Text, nullable=False),
    Column("source", Text, nullable=False),  # manual | trigger type
    Column("trigger_data", Text),  # JSON
    Column("output", Text),  # JSON final context
    Column("error", Text),
    Column("error_node_id", Text),
    Column("steps", Integer, default=0, server_default="0"),
    Column("started", Text, nullable=False),
    Column("completed", Text),
)

execution_steps = Table(
    "execution_steps",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "execution_id",
        Text,
        ForeignKey("executions.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("seq", Integer, nullable=False),
    Column("node_id", Text, nullable=False),
    Column("node_type", Text, nullable=False),
    Column("node_name", Text),
    Column("status", Text, nullable=False),
    Column("output", Text),  # JSON snapshot of the node's published value
    Column("error", Text),
    Column("started", Text, nullable=False),
    Column("completed", Text),
)

# ---------------------------------------------------------------------------
# CRM
# ---------------------------------------------------------------------------

contacts = Table(
    "contacts",
    metadata,
    Column("id", Text, primary_key=True),
    Column("organization_id", Text, nullable=False),
    Column("subaccount_id", Text),
    Column("name", Text, nullable=False),
    Column("email", Text),
    Column("phone", Text),
    Column("company_name", Text),
    Column("position", Text),
    Column("type", Text, nullable=False, default="LEAD", server_default="LEAD"),
    Column("lifecycle_stage", Text),
    Column("source", Text),
    Column("website", Text),
    Column("linkedin", Text),
    Column("country", Text),
    Column("city", Text),
    Column("notes", Text),
    Column("created", Text, nullable=False),
    Column("modified", Text, nullable=False),
)

pipelines = Table(
    "pipelines",
    metadata,
    Column("id", Text, primary_key=True),
    Column("organization_id", Text, nullable=False),
    Column("subaccount_id", Text),
    Column("name", Text, nullable=False),
    Column("description", Text),
    Column("is_default", Integer, default=0, server_default="0"),
    Column("is_active", Integer, default=1, server_default="1"),
    Column("created", Text, nullable=False),
    Column("modified", Text, nullable=False),
)

pipeline_stages = Table(
    "pipeline_stages",
    metadata,
    Column("id", Text, primary_key=True),
    Column(
        "pipeline_id",
        Text,
        ForeignKey("pipelines.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("name", Text, nullable=False),
    Column("position", Integer, nullable=False),
    Column("probability", Integer, default=0, server_default="0"),
    Column("color", Text),
)

deals = Table(
    "deals",
    metadata,
    Column("id", Text, primary_key=True),
    Column("organization_id", Text, nullable=False),
    Column("subaccount_id", Text),
    Column("name", Text, nullable=False),
    Column("value", REAL),
    Column("currency", Text),
    Column("deadline", Text),
    Column("source", Text),
    Column("description", Text),
    Column("pipeline_id", Text, ForeignKey("pipelines.id", ondelete="SET NULL")),
    Column("pipeline_stage_id", Text, ForeignKey("pipeline_stages.id", ondelete="SET NULL")),
    Column("created", Text, nullable=False),
    Column("modified", Text, nullable=False),
)

deal_contacts = Table(
    "deal_contacts",
    metadata,
    Column("deal_id", Text, ForeignKey("deals.id", ondelete="CASCADE"), nullable=False),
    Column("contact_id", Text, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False),
    UniqueConstraint("deal_id", "contact_id"),
)

deal_notes = Table(
    "deal_notes",
    metadata,
    Column("id", Text, primary_key=True),
    Column("deal_id", Text, ForeignKey("deals.id", ondelete="CASCADE"), nullable=False),
    Column("note", Text, nullable=False),
    Column("created", Text, nullable=False),
)

# ---------------------------------------------------------------------------
# Indexes for frequently filtered columns
# ---------------------------------------------------------------------------

Index("ix_workflows_org", workflows.c.organization_id)
Index("ix_nodes_workflow", nodes.c.workflow_id)
Index("ix_connections_workflow", connections.c.workflow_id)
Index("ix_executions_workflow", executions.c.workflow_id)
Index("ix_execution_steps_execution", execution_steps.c.execution_id)
Index("ix_contacts_org", contacts.c.organization_id)
Index("ix_contacts_email", contacts.c.email)
Index("ix_deals_org", deals.c.organization_id)
Index("ix_deals_stage", deals.c.pipeline_stage_id)

# ---------------------------------------------------------------------------
# Bookkeeping
# ---------------------------------------------------------------------------

id_counters = Table(
    "id_counters",
    metadata,
    Column("type_prefix", Text, primary_key=True),
    Column("next_value", Integer, nullable=False, default=1, server_default="1"),
)

event_wal = Table(
    "event_wal",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("hook_name", Text, nullable=False),
    Column("payload", Text, nullable=False),  # JSON
    Column("status", Text, nullable=False),
    Column("error", Text),
    Column("retries", Integer, default=0, server_default="0"),
    Column("execution_id", Text),
    Column("created", Text, nullable=False),
    Column("completed", Text),
)
