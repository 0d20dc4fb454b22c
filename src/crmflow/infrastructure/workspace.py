"""Workspace — repository pattern with transaction coordination.

The Workspace is the single dependency injected into every service. It
owns the database engine, the workflow graph cache, and the plugin event
bus. :meth:`Workspace.transaction` wraps ``engine.begin()`` and
invalidates cached graphs when the block ends (success or failure), so
the next graph access reflects committed state.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from crmflow.infrastructure.database.engine import DATA_DIR, init_database
from crmflow.infrastructure.graph.engine import GraphEngine

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy import Connection
    from sqlalchemy.engine import Engine

    from crmflow.config.settings import CrmflowSettings

logger = logging.getLogger(__name__)


@dataclass
class WorkspaceTransaction:
    """Active transaction handed to callers of :meth:`Workspace.transaction`."""

    conn: Connection
    workspace: Workspace

    @property
    def organization_id(self) -> str:
        return self.workspace.organization_id


class Workspace:
    """Repository encapsulating database, graph, and event-bus access.

    Constructed once at CLI startup from :class:`CrmflowSettings` and held
    by the command context. Services receive it via :class:`BaseService`.
    """

    def __init__(self, settings: CrmflowSettings) -> None:
        self._settings = settings
        self._engine: Engine = init_database(self.root)
        self._graph = GraphEngine(self._engine)
        self._event_bus: Any | None = None

    @property
    def root(self) -> Path:
        """The workspace root directory."""
        return self._settings.workspace_root

    @property
    def data_dir(self) -> Path:
        return self.root / DATA_DIR

    @property
    def engine(self) -> Engine:
        """The underlying SQLAlchemy engine (for direct access when needed)."""
        return self._engine

    @property
    def graph(self) -> GraphEngine:
        """Per-workflow graph cache."""
        return self._graph

    @property
    def settings(self) -> CrmflowSettings:
        return self._settings

    @property
    def organization_id(self) -> str:
        """Tenant organization every query is scoped to."""
        return self._settings.tenant.organization_id

    @property
    def subaccount_id(self) -> str | None:
        return self._settings.tenant.subaccount_id

    @property
    def event_bus(self) -> Any | None:
        """The plugin event bus (None if not initialized)."""
        return self._event_bus

    def init_event_bus(self, *, sync: bool = False) -> None:
        """Initialize the plugin event bus.

        Creates a PluginManager, discovers entry-point and local plugins,
        registers the built-in status log, and wires up the EventBus.
        """
        from crmflow.plugins.builtins.status_log import StatusLogPlugin
        from crmflow.plugins.event_bus import EventBus
        from crmflow.plugins.manager import PluginManager

        pm = PluginManager()
        pm.discover_and_load(local_dir=self.data_dir / "plugins")

        status_config = self._settings.plugins.status_log
        if status_config.get("enabled", True):
            filename = status_config.get("path", "status.jsonl")
            pm.register_plugin(
                StatusLogPlugin(self.data_dir / filename),
                name="status-log-builtin",
            )

        self._event_bus = EventBus(
            self._engine,
            pm,
            sync=sync,
            max_retries=self._settings.events.max_retries,
            max_workers=self._settings.events.max_workers,
        )

    @contextmanager
    def transaction(self) -> Iterator[WorkspaceTransaction]:
        """Run a block inside one database transaction.

        Commits on success, rolls back on exception. The graph cache is
        invalidated either way; do not read ``workspace.graph`` for a
        workflow you are writing until the block has exited.
        """
        with self._engine.begin() as conn:
            try:
                yield WorkspaceTransaction(conn=conn, workspace=self)
            finally:
                self._graph.invalidate()

    def close(self) -> None:
        """Drain pending events and release the engine's connections."""
        if self._event_bus is not None:
            self._event_bus.shutdown()
        self._engine.dispose()
